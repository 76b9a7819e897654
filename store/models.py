from django.db import models


class StoreSetting(models.Model):
    """Key/value store configuration owned by the admin console"""
    key = models.CharField(max_length=100, unique=True, db_index=True)
    value = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'store_settings'
        ordering = ['key']

    def __str__(self):
        return self.key
