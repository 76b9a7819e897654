# orders/urls.py
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    # Checkout
    path('quote/', views.checkout_quote, name='checkout_quote'),
    path('place/', views.place_order, name='place_order'),

    # Razorpay Payment
    path('payment/callback/', views.payment_callback, name='payment_callback'),
    path('payment/webhook/', views.payment_webhook, name='payment_webhook'),
    path('<str:order_number>/pay/', views.initiate_payment, name='initiate_payment'),

    # AJAX
    path('<str:order_number>/status/', views.get_order_status, name='get_order_status'),
]
