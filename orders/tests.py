from decimal import Decimal
import random
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.contrib.sessions.backends.db import SessionStore
from django.core.exceptions import ValidationError
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated
from rest_framework.test import APITestCase

from core.models import Address, Notification
from loyaltypoints import services as loyalty
from loyaltypoints.exceptions import LedgerWriteFailure
from loyaltypoints.models import LoyaltyPoint, LoyaltyPointLog
from menu.models import Category, MenuItem
from . import checkout as flow
from .cart import Cart
from .exceptions import InvalidTransition, PaymentDeclined
from .models import Order
from .payments import capture_payment
from .services import place_order, grant_pending_spin, consume_pending_spin
from .tasks import format_order_message, notify_order_placed_task

User = get_user_model()

DELIVERY = {
    'full_name': 'Jane Doe',
    'street_address': '1 Main St',
    'city': 'Springfield',
    'postal_code': '12345',
    'phone': '5551234',
}
CARD = {
    'card_name': 'Jane Doe',
    'card_number': '4242 4242 4242 4242',
    'expiry_date': '12/29',
    'cvc': '123',
}


class MenuFixtureMixin:
    @classmethod
    def setUpTestData(cls):
        cls.category = Category.objects.create(name='Pizzas')
        cls.margherita = MenuItem.objects.create(category=cls.category, name='Margherita', price=Decimal('10.00'))
        cls.pepperoni = MenuItem.objects.create(category=cls.category, name='Pepperoni', price=Decimal('12.50'))
        cls.retired = MenuItem.objects.create(category=cls.category, name='Hawaii', price=Decimal('11.00'), is_available=False)


class CartTests(MenuFixtureMixin, TestCase):
    def setUp(self):
        self.session = SessionStore()
        self.cart = Cart(self.session)

    def test_add_increments_quantity(self):
        self.cart.add(self.margherita.pk)
        self.cart.add(self.margherita.pk, 2)

        lines = self.cart.lines()
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].quantity, 3)
        self.assertEqual(self.cart.subtotal(), Decimal('30.00'))

    def test_cart_is_kept_in_session(self):
        self.cart.add(self.pepperoni.pk, 2)

        self.assertEqual(Cart(self.session).subtotal(), Decimal('25.00'))

    def test_unavailable_item_rejected(self):
        with self.assertRaises(ValidationError):
            self.cart.add(self.retired.pk)

    def test_update_to_zero_removes(self):
        self.cart.add(self.margherita.pk)
        self.cart.update(self.margherita.pk, 0)

        self.assertTrue(self.cart.is_empty())

    def test_update_sets_quantity(self):
        self.cart.add(self.margherita.pk)
        self.cart.update(self.margherita.pk, 4)

        self.assertEqual(len(self.cart), 4)

    def test_item_withdrawn_from_menu_drops_out(self):
        self.cart.add(self.pepperoni.pk)
        MenuItem.objects.filter(pk=self.pepperoni.pk).update(is_available=False)

        self.assertTrue(self.cart.is_empty())

    def test_clear(self):
        self.cart.add(self.margherita.pk)
        self.cart.clear()

        self.assertEqual(len(self.cart), 0)


class PaymentTests(TestCase):
    def test_card_payment_captured(self):
        receipt = capture_payment('card', Decimal('13.99'), card=CARD)

        self.assertEqual(receipt.method, 'card')
        self.assertEqual(receipt.amount, Decimal('13.99'))

    def test_bad_card_details(self):
        with self.assertRaises(ValidationError) as ctx:
            capture_payment('card', Decimal('13.99'), card={'card_name': 'Jo', 'card_number': '1234', 'expiry_date': '13/29', 'cvc': '12'})

        self.assertEqual(set(ctx.exception.message_dict), {'card_name', 'card_number', 'expiry_date', 'cvc'})

    def test_cash_needs_no_card(self):
        self.assertEqual(capture_payment('cash', Decimal('5.00')).method, 'cash')

    def test_negative_amount_declined(self):
        with self.assertRaises(PaymentDeclined):
            capture_payment('cash', Decimal('-1.00'))


class DeliveryInfoTests(TestCase):
    def test_valid_form(self):
        info = flow.DeliveryInfo.from_data(dict(DELIVERY, notes='Ring twice'))

        self.assertEqual(info.city, 'Springfield')
        self.assertEqual(info.notes, 'Ring twice')

    def test_missing_fields_and_short_phone(self):
        with self.assertRaises(ValidationError) as ctx:
            flow.DeliveryInfo.from_data({'full_name': 'Jane', 'phone': '123'})

        errors = ctx.exception.message_dict
        self.assertIn('street_address', errors)
        self.assertIn('phone', errors)
        self.assertNotIn('notes', errors)


class SpinEntitlementTests(TestCase):
    def test_grant_requires_owner_and_consume_is_once(self):
        user = User.objects.create_user(email='buyer@example.com', password='pass1234')
        order = Order.objects.create(
            user=user, status='paid', payment_method='cash', subtotal=Decimal('10.00'),
            total_amount=Decimal('10.00'), **DELIVERY
        )
        guest_order = Order.objects.create(
            status='paid', payment_method='cash', subtotal=Decimal('10.00'),
            total_amount=Decimal('10.00'), **DELIVERY
        )

        self.assertTrue(grant_pending_spin(order.pk))
        self.assertFalse(grant_pending_spin(guest_order.pk))
        self.assertTrue(consume_pending_spin(order.pk))
        self.assertFalse(consume_pending_spin(order.pk))


class CheckoutFlowTests(MenuFixtureMixin, TestCase):
    def setUp(self):
        self.session = SessionStore()
        self.cart = Cart(self.session)
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')

    def advance_to_payment(self, user=None):
        checkout = flow.CheckoutSession()
        checkout = flow.transition(checkout, flow.BeginCheckout(), user=user, cart=self.cart)
        return flow.transition(checkout, flow.SubmitDelivery(data=DELIVERY), user=user, cart=self.cart)

    def pay(self, checkout, user=None, method='cash'):
        amount = flow.quote(checkout, self.cart, user)['total']
        receipt = capture_payment(method, amount, card=CARD)
        checkout = flow.transition(checkout, flow.PaymentCaptured(receipt=receipt), user=user, cart=self.cart)
        return flow.transition(checkout, flow.Acknowledge(), user=user, cart=self.cart)

    def test_empty_cart_cannot_begin(self):
        checkout = flow.CheckoutSession()

        with self.assertRaises(ValidationError):
            flow.transition(checkout, flow.BeginCheckout(), cart=self.cart)
        self.assertEqual(checkout.state, flow.State.CART)

    def test_event_not_allowed_in_state(self):
        with self.assertRaises(InvalidTransition):
            flow.transition(flow.CheckoutSession(), flow.Acknowledge(), cart=self.cart)

    def test_invalid_delivery_keeps_state(self):
        self.cart.add(self.margherita.pk)
        checkout = flow.transition(flow.CheckoutSession(), flow.BeginCheckout(), cart=self.cart)

        with self.assertRaises(ValidationError):
            flow.transition(checkout, flow.SubmitDelivery(data={'full_name': 'Jane'}), cart=self.cart)
        self.assertEqual(checkout.state, flow.State.AWAITING_DELIVERY_INFO)

    def test_go_back(self):
        self.cart.add(self.margherita.pk)
        checkout = self.advance_to_payment()

        checkout = flow.transition(checkout, flow.GoBack(), cart=self.cart)
        self.assertEqual(checkout.state, flow.State.AWAITING_DELIVERY_INFO)
        checkout = flow.transition(checkout, flow.GoBack(), cart=self.cart)
        self.assertEqual(checkout.state, flow.State.CART)

    def test_delivery_prefilled_from_default_address(self):
        Address.objects.create(
            user=self.user, full_name='Jane Doe', address_line1='1 Main St', address_line2='Apt 4',
            city='Springfield', state='IL', postal_code='12345', phone='5551234'
        )
        self.cart.add(self.margherita.pk)
        checkout = flow.transition(flow.CheckoutSession(), flow.BeginCheckout(), user=self.user, cart=self.cart)

        checkout = flow.transition(
            checkout, flow.SubmitDelivery(data={'city': 'Shelbyville', 'notes': 'Ring twice'}),
            user=self.user, cart=self.cart
        )

        self.assertEqual(checkout.state, flow.State.AWAITING_PAYMENT)
        self.assertEqual(checkout.delivery, flow.DeliveryInfo(
            full_name='Jane Doe', street_address='1 Main St, Apt 4', city='Shelbyville',
            postal_code='12345', phone='5551234', notes='Ring twice'
        ))

    def test_guest_delivery_is_not_prefilled(self):
        Address.objects.create(
            user=self.user, full_name='Jane Doe', address_line1='1 Main St',
            city='Springfield', state='IL', postal_code='12345', phone='5551234'
        )
        self.cart.add(self.margherita.pk)
        checkout = flow.transition(flow.CheckoutSession(), flow.BeginCheckout(), cart=self.cart)

        with self.assertRaises(ValidationError):
            flow.transition(checkout, flow.SubmitDelivery(data={}), cart=self.cart)

    def test_guest_cannot_select_points(self):
        self.cart.add(self.margherita.pk)
        checkout = self.advance_to_payment()

        with self.assertRaises(NotAuthenticated):
            flow.transition(checkout, flow.SelectPoints(points=100), cart=self.cart)

    def test_session_round_trip(self):
        self.cart.add(self.margherita.pk)
        checkout = self.advance_to_payment()

        flow.save(self.session, checkout)

        self.assertEqual(flow.load(self.session), checkout)

    def test_guest_checkout(self):
        self.cart.add(self.margherita.pk, 2)
        checkout = self.advance_to_payment()

        checkout = self.pay(checkout)

        self.assertEqual(checkout.state, flow.State.DONE)
        self.assertEqual(checkout.notice, flow.SIGNUP_PROMPT)
        order = Order.objects.get(pk=checkout.order_id)
        self.assertIsNone(order.user)
        self.assertFalse(order.pending_spin)
        self.assertEqual(order.subtotal, Decimal('20.00'))
        self.assertEqual(order.total_amount, Decimal('23.99'))
        self.assertEqual(order.status, 'paid')
        self.assertTrue(self.cart.is_empty())

    def test_authenticated_checkout_with_redemption(self):
        loyalty.earn_points(self.user, 500, "Bonus")
        self.cart.add(self.margherita.pk)
        checkout = self.advance_to_payment(self.user)

        checkout = flow.transition(checkout, flow.SelectPoints(points=1000), user=self.user, cart=self.cart)
        self.assertEqual(checkout.points_to_redeem, 500)
        self.assertEqual(flow.quote(checkout, self.cart, self.user)['total'], Decimal('8.99'))

        checkout = self.pay(checkout, user=self.user, method='card')

        self.assertEqual(checkout.state, flow.State.SPIN_OFFERED)
        order = Order.objects.get(pk=checkout.order_id)
        self.assertTrue(order.pending_spin)
        self.assertEqual(order.discount, Decimal('5.00'))
        self.assertEqual(order.points_redeemed, 500)
        self.assertEqual(order.total_amount, Decimal('8.99'))
        self.assertEqual(loyalty.get_balance(self.user), 0)

    def test_item_prices_are_copied(self):
        self.cart.add(self.pepperoni.pk)
        checkout = self.pay(self.advance_to_payment())

        MenuItem.objects.filter(pk=self.pepperoni.pk).update(price=Decimal('99.00'), name='Renamed')

        item = Order.objects.get(pk=checkout.order_id).items.get()
        self.assertEqual(item.unit_price, Decimal('12.50'))
        self.assertEqual(item.name, 'Pepperoni')

    def test_spin_offer_ends_once_spin_is_used(self):
        self.cart.add(self.margherita.pk)
        checkout = self.pay(self.advance_to_payment(self.user), user=self.user)

        self.assertEqual(flow.sync_spin(checkout).state, flow.State.SPIN_OFFERED)
        loyalty.record_spin_result(self.user, checkout.order_id, 0)
        checkout = flow.sync_spin(checkout)

        self.assertEqual(checkout.state, flow.State.DONE)
        self.assertEqual(flow.transition(checkout, flow.StartOver()).state, flow.State.CART)

    def test_spin_offer_ends_when_older_order_spin_is_used(self):
        self.cart.add(self.margherita.pk)
        first = self.pay(self.advance_to_payment(self.user), user=self.user)
        self.cart.add(self.pepperoni.pk)
        second = self.pay(self.advance_to_payment(self.user), user=self.user)

        result = loyalty.spin_the_wheel(self.user, rng=random.Random(7))

        self.assertEqual(result.order_id, first.order_id)
        self.assertTrue(Order.objects.get(pk=second.order_id).pending_spin)
        self.assertEqual(flow.sync_spin(second, self.user).state, flow.State.DONE)

    def test_quote_does_not_create_an_account(self):
        self.cart.add(self.margherita.pk)

        quote = flow.quote(flow.CheckoutSession(points_to_redeem=100), self.cart, self.user)

        self.assertEqual(quote['points_to_redeem'], 0)
        self.assertFalse(LoyaltyPoint.objects.filter(user=self.user).exists())


class PlaceOrderTests(MenuFixtureMixin, TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')
        self.cart = Cart(SessionStore())
        self.cart.add(self.margherita.pk)
        self.delivery = flow.DeliveryInfo.from_data(DELIVERY)
        self.receipt = capture_payment('cash', Decimal('13.99'))

    def test_failed_redemption_keeps_order_without_discount(self):
        loyalty.earn_points(self.user, 500, "Bonus")

        with patch('orders.services.redeem_points', side_effect=LedgerWriteFailure()):
            placed = place_order(self.cart.lines(), self.delivery, self.receipt, user=self.user, points_to_redeem=300)

        self.assertIsNotNone(placed.notice)
        self.assertEqual(placed.order.discount, Decimal('0.00'))
        self.assertEqual(placed.order.total_amount, Decimal('13.99'))
        self.assertTrue(placed.order.pending_spin)
        self.assertEqual(loyalty.get_balance(self.user), 500)

    def test_notification_enqueued_after_commit(self):
        with patch('orders.services.notify_order_placed_task') as task:
            with self.captureOnCommitCallbacks(execute=True):
                placed = place_order(self.cart.lines(), self.delivery, self.receipt)

        task.delay.assert_called_once_with(placed.order.pk)

    def test_enqueue_failure_does_not_fail_order(self):
        with patch('orders.services.notify_order_placed_task') as task:
            task.delay.side_effect = ConnectionError("redis down")
            with self.captureOnCommitCallbacks(execute=True):
                placed = place_order(self.cart.lines(), self.delivery, self.receipt)

        self.assertTrue(Order.objects.filter(pk=placed.order.pk).exists())

    def test_empty_cart_rejected(self):
        with self.assertRaises(ValidationError):
            place_order([], self.delivery, self.receipt)


class NotifierTests(MenuFixtureMixin, TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')
        self.staff = User.objects.create_user(email='staff@example.com', password='pass1234', is_staff=True)
        loyalty.earn_points(self.user, 200, "Bonus")
        cart = Cart(SessionStore())
        cart.add(self.margherita.pk, 2)
        placed = place_order(
            cart.lines(), flow.DeliveryInfo.from_data(dict(DELIVERY, notes='Ring twice')),
            capture_payment('cash', Decimal('21.99')), user=self.user, points_to_redeem=200
        )
        self.order = placed.order

    def test_message_lists_items_discount_and_address(self):
        text = format_order_message(self.order)

        self.assertIn(f"Order #{self.order.pk}", text)
        self.assertIn("- Margherita x2 ($10.00)", text)
        self.assertIn("Loyalty Points: $2.00", text)
        self.assertIn("Total: $21.99", text)
        self.assertIn("Springfield, 1 Main St", text)
        self.assertIn("Ring twice", text)

    def test_task_notifies_staff_and_customer(self):
        with patch('orders.tasks.send_telegram_message', return_value=True) as send:
            result = notify_order_placed_task(self.order.pk)

        send.assert_called_once()
        self.assertIn("telegram=sent", result)
        self.assertTrue(Notification.objects.filter(recipient=self.staff, notification_type='order_placed').exists())
        self.assertTrue(Notification.objects.filter(recipient=self.user, notification_type='order_placed').exists())

    def test_telegram_failure_propagates_for_retry(self):
        with patch('orders.tasks.send_telegram_message', side_effect=TimeoutError("slow")):
            with self.assertRaises(TimeoutError):
                notify_order_placed_task(self.order.pk)
        self.assertFalse(Notification.objects.exists())


class CheckoutApiTests(MenuFixtureMixin, APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')

    def fill_cart_and_deliver(self):
        self.client.post(reverse('cart-items'), {'menu_item': self.margherita.pk, 'quantity': 1}, format='json')
        self.client.post(reverse('checkout-begin'))
        return self.client.post(reverse('checkout-delivery'), DELIVERY, format='json')

    def test_cart_endpoints(self):
        response = self.client.post(reverse('cart-items'), {'menu_item': self.pepperoni.pk, 'quantity': 2}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['subtotal'], '25.00')

        response = self.client.patch(reverse('cart-item-detail', args=[self.pepperoni.pk]), {'quantity': 1}, format='json')
        self.assertEqual(response.data['item_count'], 1)

        response = self.client.delete(reverse('cart-item-detail', args=[self.pepperoni.pk]))
        self.assertEqual(response.data['items'], [])

    def test_unavailable_item_is_bad_request(self):
        response = self.client.post(reverse('cart-items'), {'menu_item': self.retired.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_guest_checkout(self):
        response = self.fill_cart_and_deliver()
        self.assertEqual(response.data['state'], 'awaiting_payment')

        response = self.client.post(reverse('checkout-pay'), {'payment_method': 'cash'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'done')
        self.assertEqual(response.data['notice'], flow.SIGNUP_PROMPT)
        self.assertFalse(response.data['order']['pending_spin'])

    def test_pay_before_delivery_conflicts(self):
        self.client.post(reverse('cart-items'), {'menu_item': self.margherita.pk}, format='json')

        response = self.client.post(reverse('checkout-pay'), {'payment_method': 'cash'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(Order.objects.exists())

    def test_bad_card_keeps_awaiting_payment(self):
        self.fill_cart_and_deliver()

        response = self.client.post(
            reverse('checkout-pay'), dict(CARD, payment_method='card', cvc='1'), format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('cvc', response.data)
        self.assertEqual(self.client.get(reverse('checkout')).data['state'], 'awaiting_payment')

    def test_guest_points_selection_unauthorized(self):
        self.fill_cart_and_deliver()

        response = self.client.post(reverse('checkout-points'), {'points': 100}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_member_checkout_then_spin(self):
        loyalty.earn_points(self.user, 500, "Bonus")
        self.client.force_authenticate(self.user)
        self.fill_cart_and_deliver()

        response = self.client.post(reverse('checkout-points'), {'points': 1000}, format='json')
        self.assertEqual(response.data['quote']['points_to_redeem'], 500)
        self.assertEqual(response.data['quote']['total'], '8.99')

        response = self.client.post(reverse('checkout-pay'), dict(CARD, payment_method='card'), format='json')
        self.assertEqual(response.data['state'], 'spin_offered')
        self.assertEqual(response.data['order']['total_amount'], '8.99')

        response = self.client.post(reverse('spin'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.assertEqual(self.client.get(reverse('checkout')).data['state'], 'done')
        self.assertEqual(self.client.post(reverse('checkout-restart')).data['state'], 'cart')
        self.assertEqual(LoyaltyPointLog.objects.filter(kind=LoyaltyPointLog.KIND_WHEEL_SPIN).count(), 1)

    def test_spin_with_older_pending_order_finishes_checkout(self):
        self.client.force_authenticate(self.user)
        self.fill_cart_and_deliver()
        first = self.client.post(reverse('checkout-pay'), {'payment_method': 'cash'}, format='json').data
        self.client.post(reverse('checkout-restart'))
        self.fill_cart_and_deliver()
        second = self.client.post(reverse('checkout-pay'), {'payment_method': 'cash'}, format='json').data
        self.assertEqual(second['state'], 'spin_offered')

        response = self.client.post(reverse('spin'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order_id'], first['order_id'])
        self.assertEqual(self.client.get(reverse('checkout')).data['state'], 'done')

    def test_pay_with_emptied_cart_does_not_charge(self):
        self.fill_cart_and_deliver()
        self.client.delete(reverse('cart'))

        with patch('orders.views.capture_payment') as capture:
            response = self.client.post(reverse('checkout-pay'), dict(CARD, payment_method='card'), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('cart', response.data)
        capture.assert_not_called()
        self.assertFalse(Order.objects.exists())
        self.assertEqual(self.client.get(reverse('checkout')).data['state'], 'awaiting_payment')


class OrderApiTests(MenuFixtureMixin, APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')
        self.other = User.objects.create_user(email='other@example.com', password='pass1234')
        self.admin = User.objects.create_user(email='admin@example.com', password='pass1234', is_staff=True)
        cart = Cart(SessionStore())
        cart.add(self.margherita.pk)
        self.order = place_order(
            cart.lines(), flow.DeliveryInfo.from_data(DELIVERY), capture_payment('cash', Decimal('13.99')), user=self.user
        ).order

    def test_customers_see_only_their_orders(self):
        self.client.force_authenticate(self.other)

        response = self.client.get(reverse('my-orders-list'))

        self.assertEqual(response.data['count'], 0)

    def test_admin_updates_status(self):
        self.client.force_authenticate(self.admin)

        response = self.client.patch(
            reverse('admin-orders-update-status', args=[self.order.pk]), {'status': 'completed'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, 'completed')

    def test_admin_list_forbidden_to_customers(self):
        self.client.force_authenticate(self.user)

        response = self.client.get(reverse('admin-orders-list'))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_filters_by_status(self):
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('admin-orders-list'), {'status': 'cancelled'})

        self.assertEqual(response.data['count'], 0)
