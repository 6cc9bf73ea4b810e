from rest_framework import serializers
from .models import Order, OrderItem
from .payments import PAYMENT_METHODS


class OrderItemSerializer(serializers.ModelSerializer):
    line_total = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = OrderItem
        fields = ['id', 'menu_item', 'name', 'unit_price', 'quantity', 'line_total']
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    customer_email = serializers.EmailField(source='user.email', read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'user', 'customer_email', 'status', 'payment_method',
            'subtotal', 'delivery_fee', 'discount', 'points_redeemed', 'total_amount',
            'pending_spin', 'full_name', 'street_address', 'city', 'postal_code',
            'phone', 'notes', 'items', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderStatusSerializer(serializers.ModelSerializer):
    class Meta:
        model = Order
        fields = ['status']


# ------------------------- Cart / checkout ------------------------------------

class CartItemSerializer(serializers.Serializer):
    menu_item = serializers.IntegerField()
    quantity = serializers.IntegerField(default=1)


class CartQuantitySerializer(serializers.Serializer):
    quantity = serializers.IntegerField()


class CartLineSerializer(serializers.Serializer):
    menu_item = serializers.IntegerField(source='menu_item.pk')
    name = serializers.CharField(source='menu_item.name')
    unit_price = serializers.DecimalField(source='menu_item.price', max_digits=8, decimal_places=2)
    quantity = serializers.IntegerField()
    line_total = serializers.DecimalField(max_digits=10, decimal_places=2)


class DeliveryInfoSerializer(serializers.Serializer):
    full_name = serializers.CharField(required=False, allow_blank=True)
    street_address = serializers.CharField(required=False, allow_blank=True)
    city = serializers.CharField(required=False, allow_blank=True)
    postal_code = serializers.CharField(required=False, allow_blank=True)
    phone = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class SelectPointsSerializer(serializers.Serializer):
    points = serializers.IntegerField(min_value=0)


class PaymentSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=PAYMENT_METHODS)
    card_name = serializers.CharField(required=False, allow_blank=True)
    card_number = serializers.CharField(required=False, allow_blank=True)
    expiry_date = serializers.CharField(required=False, allow_blank=True)
    cvc = serializers.CharField(required=False, allow_blank=True)
