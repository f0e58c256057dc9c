from django.urls import path
from . import views

urlpatterns = [
    path('', views.orders_collection, name='orders'),
    path('from-cart', views.create_order_from_cart, name='order-from-cart'),
    path('gateway/success', views.gateway_success, name='gateway-success'),
    path('gateway/failure', views.gateway_failure, name='gateway-failure'),
    path('user/<str:owner_key>', views.orders_for_owner, name='orders-for-owner'),
    path('stats/<str:owner_key>', views.order_stats, name='order-stats'),
    path('<str:order_id>/payment-status', views.payment_status, name='order-payment-status'),
    path('<str:order_id>/status', views.update_order_status, name='order-status'),
    path('<str:order_id>', views.order_detail, name='order-detail'),
]
