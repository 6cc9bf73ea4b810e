from django.contrib.auth import get_user_model
from django.db.models import Value
from django.db.models.functions import Coalesce
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema, OpenApiResponse
from rest_framework import generics, status, filters
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsShopAdmin
from .models import LoyaltyPointLog
from .serializers import (
    LoyaltyPointSerializer, LoyaltyPointLogSerializer, SpinHistorySerializer,
    SpinStatusSerializer, SpinResultSerializer, UserBalanceSerializer,
    PointsAdjustmentSerializer
)
from . import services

User = get_user_model()


class LoyaltyPointDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses=LoyaltyPointSerializer)
    def get(self, request):
        account = services.get_account(request.user)
        return Response(LoyaltyPointSerializer(account).data, status=status.HTTP_200_OK)


class LoyaltyHistoryView(generics.ListAPIView):
    serializer_class = LoyaltyPointLogSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return services.get_history(self.request.user)


class SpinStatusView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses=SpinStatusSerializer)
    def get(self, request):
        return Response(SpinStatusSerializer(services.spin_status(request.user)).data)


class SpinView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        request=None,
        responses={
            200: SpinResultSerializer,
            409: OpenApiResponse(description="Already spun today, or no order with a pending spin."),
            503: OpenApiResponse(description="Points could not be recorded; the spin is kept for a retry."),
        },
    )
    def post(self, request):
        result = services.spin_the_wheel(request.user)
        return Response(SpinResultSerializer(result).data, status=status.HTTP_200_OK)


class UserBalanceListView(generics.ListAPIView):
    """Admin list of customers with their current balance."""
    serializer_class = UserBalanceSerializer
    permission_classes = [IsShopAdmin]
    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['email', 'first_name', 'last_name', 'phone']
    ordering_fields = ['points', 'date_joined', 'email']
    ordering = ['-date_joined']

    def get_queryset(self):
        return User.objects.annotate(points=Coalesce('loyalty_points__points', Value(0)))


class PointsAdjustmentView(APIView):
    permission_classes = [IsShopAdmin]

    @extend_schema(
        request=PointsAdjustmentSerializer,
        responses={200: LoyaltyPointSerializer, 400: OpenApiResponse(description="Invalid adjustment.")},
    )
    def post(self, request, user_id):
        user = get_object_or_404(User, pk=user_id)
        serializer = PointsAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        services.admin_adjust(user, serializer.validated_data['points'], serializer.validated_data['reason'])
        account = services.get_account(user)
        return Response(LoyaltyPointSerializer(account).data, status=status.HTTP_200_OK)


class SpinHistoryView(generics.ListAPIView):
    serializer_class = SpinHistorySerializer
    permission_classes = [IsShopAdmin]

    def get_queryset(self):
        queryset = LoyaltyPointLog.objects.filter(
            kind=LoyaltyPointLog.KIND_WHEEL_SPIN
        ).select_related('loyalty_account__user')
        user_id = self.request.query_params.get('user')
        if user_id:
            queryset = queryset.filter(loyalty_account__user_id=user_id)
        return queryset
