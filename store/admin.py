from django.contrib import admin

from .models import StoreSetting
from .services import GATEWAY_CREDENTIALS_KEY


@admin.register(StoreSetting)
class StoreSettingAdmin(admin.ModelAdmin):
    list_display = ("key", "updated_at")
    search_fields = ("key",)

    def get_queryset(self, request):
        # Raw gateway secrets are managed through the gateway connect endpoint only.
        return super().get_queryset(request).exclude(key=GATEWAY_CREDENTIALS_KEY)
