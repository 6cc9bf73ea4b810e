from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView, TokenVerifyView
from .views import NotificationViewSet, UserProfileView, AddressViewSet

router = DefaultRouter()
router.register(r'notifications', NotificationViewSet, basename='notification')
router.register(r'addresses', AddressViewSet, basename='address')

urlpatterns = [
    # JWT Authentication endpoints
    path('auth/jwt/create/', TokenObtainPairView.as_view(), name='jwt-create'),
    path('auth/jwt/refresh/', TokenRefreshView.as_view(), name='jwt-refresh'),
    path('auth/jwt/verify/', TokenVerifyView.as_view(), name='jwt-verify'),
    path('profile/me/', UserProfileView.as_view(), name='user-profile'),
    # Router URLs
    path('', include(router.urls)),
]
