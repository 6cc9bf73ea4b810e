from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    CartView, CartItemsView, CartItemDetailView, CheckoutView, BeginCheckoutView,
    DeliveryView, SelectPointsView, PayView, GoBackView, RestartView,
    MyOrderViewSet, AdminOrderViewSet
)

router = DefaultRouter()
router.register(r'mine', MyOrderViewSet, basename='my-orders')
router.register(r'admin', AdminOrderViewSet, basename='admin-orders')

urlpatterns = [
    path('cart/', CartView.as_view(), name='cart'),
    path('cart/items/', CartItemsView.as_view(), name='cart-items'),
    path('cart/items/<int:menu_item_id>/', CartItemDetailView.as_view(), name='cart-item-detail'),
    path('checkout/', CheckoutView.as_view(), name='checkout'),
    path('checkout/begin/', BeginCheckoutView.as_view(), name='checkout-begin'),
    path('checkout/delivery/', DeliveryView.as_view(), name='checkout-delivery'),
    path('checkout/points/', SelectPointsView.as_view(), name='checkout-points'),
    path('checkout/pay/', PayView.as_view(), name='checkout-pay'),
    path('checkout/back/', GoBackView.as_view(), name='checkout-back'),
    path('checkout/restart/', RestartView.as_view(), name='checkout-restart'),
    path('', include(router.urls)),
]
