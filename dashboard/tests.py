from decimal import Decimal

from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from loyaltypoints import services as loyalty
from menu.models import Category, MenuItem
from orders.models import Order, OrderItem

User = get_user_model()


class DashboardApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.admin = User.objects.create_user(email='admin@example.com', password='pass1234', is_staff=True)
        cls.customer = User.objects.create_user(email='buyer@example.com', first_name='Jane', last_name='Doe', password='pass1234')
        pizzas = Category.objects.create(name='Pizzas')
        margherita = MenuItem.objects.create(category=pizzas, name='Margherita', price=Decimal('10.00'))
        MenuItem.objects.create(category=pizzas, name='Pepperoni', price=Decimal('12.00'))

        for user, quantity, order_status in ((cls.customer, 2, 'paid'), (None, 1, 'completed'), (None, 5, 'cancelled')):
            subtotal = Decimal('10.00') * quantity
            order = Order.objects.create(
                user=user, status=order_status, payment_method='cash',
                subtotal=subtotal, delivery_fee=Decimal('0.00'), total_amount=subtotal,
                pending_spin=user is not None,
                full_name='Jane Doe', street_address='1 Main St', city='Springfield',
                postal_code='12345', phone='5551234',
            )
            OrderItem.objects.create(order=order, menu_item=margherita, name='Margherita', unit_price=Decimal('10.00'), quantity=quantity)
        cls.spun_order = Order.objects.filter(user=cls.customer).get()

        loyalty.earn_points(cls.customer, 300, "Bonus")
        loyalty.redeem_points(cls.customer, 100)
        loyalty.record_spin_result(cls.customer, cls.spun_order.pk, 50)

    def test_requires_admin(self):
        self.client.force_authenticate(self.customer)

        response = self.client.get(reverse('dashboard-list'))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_kpis(self):
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('dashboard-list'), {'period': 'today'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data
        # Cancelled orders are not sales
        self.assertEqual(data['orders_in_period'], 2)
        self.assertEqual(Decimal(data['revenue_in_period']), Decimal('30.00'))
        self.assertEqual(Decimal(data['average_order_value_in_period']), Decimal('15.00'))
        self.assertEqual(data['menu_items_total'], 2)
        self.assertEqual(data['top_selling_items'], [{'name': 'Margherita', 'quantity': 3}])
        self.assertEqual(data['sales_by_category'][0]['name'], 'Pizzas')
        self.assertEqual(Decimal(data['sales_by_category'][0]['total']), Decimal('30.00'))
        self.assertEqual(data['points_issued_in_period'], 350)
        self.assertEqual(data['points_redeemed_in_period'], 100)
        self.assertEqual(data['spins_in_period'], 1)
        self.assertEqual(data['spin_wins_in_period'], 1)
        self.assertEqual(len(data['recent_orders']), 3)

    def test_custom_period_needs_dates(self):
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('dashboard-list'), {'period': 'custom', 'start_date': 'yesterday'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_period(self):
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('dashboard-list'), {'period': 'decade'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
