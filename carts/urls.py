from django.urls import path
from . import views

urlpatterns = [
    path('add', views.add_to_cart, name='cart-add'),
    path('update', views.update_cart_item, name='cart-update'),
    path('remove', views.remove_from_cart, name='cart-remove'),
    path('clear/<str:owner_key>', views.clear_cart, name='cart-clear'),
    path('count/<str:owner_key>', views.cart_count, name='cart-count'),
    path('<str:owner_key>', views.get_cart, name='cart-detail'),
]
