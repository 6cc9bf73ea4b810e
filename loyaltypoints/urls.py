from django.urls import path
from .views import (
    LoyaltyPointDetailView, LoyaltyHistoryView, SpinStatusView, SpinView,
    UserBalanceListView, PointsAdjustmentView, SpinHistoryView
)

urlpatterns = [
    path('me/', LoyaltyPointDetailView.as_view(), name='loyaltypoint-detail'),
    path('history/', LoyaltyHistoryView.as_view(), name='loyaltypoint-history'),
    path('spin/status/', SpinStatusView.as_view(), name='spin-status'),
    path('spin/', SpinView.as_view(), name='spin'),
    path('users/', UserBalanceListView.as_view(), name='loyalty-users'),
    path('users/<int:user_id>/adjust/', PointsAdjustmentView.as_view(), name='loyalty-adjust'),
    path('spins/', SpinHistoryView.as_view(), name='spin-history'),
]
