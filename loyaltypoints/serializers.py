from rest_framework import serializers
from django.contrib.auth import get_user_model
from .models import LoyaltyPoint, LoyaltyPointLog
from .services import points_value

User = get_user_model()


class LoyaltyPointSerializer(serializers.ModelSerializer):
    value = serializers.SerializerMethodField()

    class Meta:
        model = LoyaltyPoint
        fields = ['points', 'value', 'updated_at']
        read_only_fields = fields

    def get_value(self, obj):
        return str(points_value(obj.points))


class LoyaltyPointLogSerializer(serializers.ModelSerializer):
    order_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = LoyaltyPointLog
        fields = ['id', 'points', 'kind', 'description', 'order_id', 'created_at']
        read_only_fields = fields


class SpinHistorySerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(source='loyalty_account.user_id', read_only=True)
    user_email = serializers.EmailField(source='loyalty_account.user.email', read_only=True)
    order_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = LoyaltyPointLog
        fields = ['id', 'user_id', 'user_email', 'points', 'description', 'order_id', 'created_at']
        read_only_fields = fields


class SpinStatusSerializer(serializers.Serializer):
    has_pending_spin = serializers.BooleanField()
    has_spun_today = serializers.BooleanField()
    can_spin = serializers.BooleanField()
    reason = serializers.CharField(allow_null=True)
    order_id = serializers.IntegerField(allow_null=True)


class SpinResultSerializer(serializers.Serializer):
    recorded = serializers.BooleanField()
    points = serializers.IntegerField()
    label = serializers.CharField()
    balance = serializers.IntegerField()
    order_id = serializers.IntegerField(allow_null=True)


class UserBalanceSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(source='get_full_name', read_only=True)
    points = serializers.IntegerField(read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'full_name', 'phone', 'is_staff', 'date_joined', 'points']
        read_only_fields = fields


class PointsAdjustmentSerializer(serializers.Serializer):
    points = serializers.IntegerField(
        help_text="Signed number of points to add (positive) or remove (negative)."
    )
    reason = serializers.CharField(max_length=255)

    def validate_points(self, value):
        if value == 0:
            raise serializers.ValidationError("Adjustment must not be zero.")
        return value
