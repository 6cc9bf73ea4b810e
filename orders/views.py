from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema, OpenApiResponse
from rest_framework import viewsets, mixins, filters, status
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsShopAdmin
from . import checkout as checkout_flow
from .cart import Cart
from .exceptions import InvalidTransition
from .models import Order
from .payments import capture_payment
from .serializers import (
    OrderSerializer, OrderStatusSerializer, CartItemSerializer, CartQuantitySerializer,
    CartLineSerializer, DeliveryInfoSerializer, SelectPointsSerializer, PaymentSerializer
)


def _cart_payload(cart):
    lines = cart.lines()
    return {
        'items': CartLineSerializer(lines, many=True).data,
        'item_count': sum(line.quantity for line in lines),
        'subtotal': str(cart.subtotal(lines)),
    }


def _checkout_payload(checkout, cart, user):
    quote = checkout_flow.quote(checkout, cart, user)
    payload = checkout.to_dict()
    payload['cart'] = _cart_payload(cart)
    payload['quote'] = {key: str(value) if key != 'points_to_redeem' else value for key, value in quote.items()}
    if checkout.order_id:
        order = Order.objects.prefetch_related('items').filter(pk=checkout.order_id).first()
        payload['order'] = OrderSerializer(order).data if order else None
    return payload


# ------------------------- Cart ----------------------------------------------

class CartView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response(_cart_payload(Cart(request.session)))

    def delete(self, request):
        cart = Cart(request.session)
        cart.clear()
        return Response(_cart_payload(cart))


class CartItemsView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(request=CartItemSerializer)
    def post(self, request):
        serializer = CartItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = Cart(request.session)
        cart.add(serializer.validated_data['menu_item'], serializer.validated_data['quantity'])
        return Response(_cart_payload(cart), status=status.HTTP_201_CREATED)


class CartItemDetailView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(request=CartQuantitySerializer)
    def patch(self, request, menu_item_id):
        serializer = CartQuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = Cart(request.session)
        cart.update(menu_item_id, serializer.validated_data['quantity'])
        return Response(_cart_payload(cart))

    def delete(self, request, menu_item_id):
        cart = Cart(request.session)
        cart.remove(menu_item_id)
        return Response(_cart_payload(cart))


# ------------------------- Checkout ------------------------------------------

class CheckoutView(APIView):
    """Current checkout state, cart and price quote."""
    permission_classes = [AllowAny]

    def get(self, request):
        checkout = checkout_flow.sync_spin(checkout_flow.load(request.session), request.user)
        checkout_flow.save(request.session, checkout)
        return Response(_checkout_payload(checkout, Cart(request.session), request.user))


class CheckoutStepView(APIView):
    permission_classes = [AllowAny]

    def apply(self, request, *events):
        cart = Cart(request.session)
        checkout = checkout_flow.load(request.session)
        for event in events:
            checkout = checkout_flow.transition(checkout, event, user=request.user, cart=cart)
        checkout_flow.save(request.session, checkout)
        return Response(_checkout_payload(checkout, cart, request.user))


class BeginCheckoutView(CheckoutStepView):
    @extend_schema(request=None)
    def post(self, request):
        return self.apply(request, checkout_flow.BeginCheckout())


class DeliveryView(CheckoutStepView):
    @extend_schema(request=DeliveryInfoSerializer)
    def post(self, request):
        serializer = DeliveryInfoSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.apply(request, checkout_flow.SubmitDelivery(data=dict(serializer.validated_data)))


class SelectPointsView(CheckoutStepView):
    @extend_schema(request=SelectPointsSerializer)
    def post(self, request):
        serializer = SelectPointsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.apply(request, checkout_flow.SelectPoints(points=serializer.validated_data['points']))


class PayView(CheckoutStepView):
    @extend_schema(
        request=PaymentSerializer,
        responses={
            200: OpenApiResponse(description="Order placed; checkout moves on to the spin offer or done."),
            400: OpenApiResponse(description="Invalid card details or declined payment."),
            409: OpenApiResponse(description="Checkout is not awaiting payment."),
        },
    )
    def post(self, request):
        serializer = PaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        checkout = checkout_flow.load(request.session)
        if checkout.state != checkout_flow.State.AWAITING_PAYMENT:
            raise InvalidTransition("Checkout is not awaiting payment.")
        cart = Cart(request.session)
        if cart.is_empty():
            raise ValidationError({'cart': "Your cart is empty."})

        amount = checkout_flow.quote(checkout, cart, request.user)['total']
        receipt = capture_payment(data['payment_method'], amount, card=data)
        return self.apply(
            request,
            checkout_flow.PaymentCaptured(receipt=receipt),
            checkout_flow.Acknowledge(),
        )


class GoBackView(CheckoutStepView):
    @extend_schema(request=None)
    def post(self, request):
        return self.apply(request, checkout_flow.GoBack())


class RestartView(CheckoutStepView):
    @extend_schema(request=None)
    def post(self, request):
        checkout = checkout_flow.sync_spin(checkout_flow.load(request.session), request.user)
        checkout_flow.save(request.session, checkout)
        return self.apply(request, checkout_flow.StartOver())


# ------------------------- Orders --------------------------------------------

class MyOrderViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return Order.objects.filter(user=self.request.user).prefetch_related('items')


class AdminOrderViewSet(mixins.ListModelMixin,
                        mixins.RetrieveModelMixin,
                        viewsets.GenericViewSet):
    queryset = Order.objects.select_related('user').prefetch_related('items')
    serializer_class = OrderSerializer
    permission_classes = [IsShopAdmin]
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['status', 'payment_method', 'pending_spin']
    search_fields = ['full_name', 'phone', 'user__email', 'city']
    ordering_fields = ['created_at', 'total_amount']

    @extend_schema(request=OrderStatusSerializer, responses=OrderSerializer)
    @action(detail=True, methods=['patch'], url_path='status')
    def update_status(self, request, pk=None):
        order = self.get_object()
        serializer = OrderStatusSerializer(order, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(OrderSerializer(order).data)
