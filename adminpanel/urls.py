from django.urls import path
from .import views

app_name = "adminpanel"

urlpatterns = [
    # Orders
    path("orders/<str:order_number>/refund/", views.refund_order, name="refund_order"),
    path("orders/<str:order_number>/status/", views.update_order_status, name="update_order_status"),
    path("orders/<str:order_number>/delivery/", views.update_delivery, name="update_delivery"),
    path("orders/<str:order_number>/cod-collected/", views.mark_cod_collected, name="mark_cod_collected"),

    # Payment gateway
    path("payments/gateway/", views.gateway_status, name="gateway_status"),
    path("payments/gateway/connect/", views.gateway_connect, name="gateway_connect"),
    path("payments/gateway/disconnect/", views.gateway_disconnect, name="gateway_disconnect"),
]
