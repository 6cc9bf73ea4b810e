from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from .models import Category, MenuItem

User = get_user_model()


class MenuApiTests(APITestCase):
    @classmethod
    def setUpTestData(cls):
        cls.pizzas = Category.objects.create(name='Pizzas', sort_order=1)
        cls.drinks = Category.objects.create(name='Drinks', sort_order=2)
        cls.margherita = MenuItem.objects.create(category=cls.pizzas, name='Margherita', price=Decimal('10.00'), is_popular=True)
        cls.cola = MenuItem.objects.create(category=cls.drinks, name='Cola', price=Decimal('2.50'))
        cls.retired = MenuItem.objects.create(category=cls.pizzas, name='Hawaii', price=Decimal('11.00'), is_available=False)
        cls.admin = User.objects.create_user(email='admin@example.com', password='pass1234', is_staff=True)
        cls.customer = User.objects.create_user(email='buyer@example.com', password='pass1234')

    def test_public_menu_hides_unavailable_items(self):
        response = self.client.get(reverse('menuitem-list'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        names = [item['name'] for item in response.data['results']]
        self.assertEqual(names, ['Margherita', 'Cola'])
        self.assertEqual(response.data['results'][0]['category_name'], 'Pizzas')

    def test_admin_sees_unavailable_items(self):
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('menuitem-list'))

        self.assertEqual(response.data['count'], 3)

    def test_filter_popular(self):
        response = self.client.get(reverse('menuitem-list'), {'is_popular': 'true'})

        self.assertEqual([item['name'] for item in response.data['results']], ['Margherita'])

    def test_categories_are_ordered(self):
        response = self.client.get(reverse('category-list'))

        self.assertEqual([c['name'] for c in response.data], ['Pizzas', 'Drinks'])

    def test_customer_cannot_edit_menu(self):
        self.client.force_authenticate(self.customer)

        response = self.client.patch(reverse('menuitem-detail', args=[self.cola.pk]), {'price': '0.10'})

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_creates_item(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('menuitem-list'),
            {'category': self.pizzas.pk, 'name': 'Diavola', 'price': '13.00'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(MenuItem.objects.filter(name='Diavola', is_available=True).exists())


class SeedMenuCommandTests(TestCase):
    def test_seeding_is_idempotent(self):
        out = StringIO()
        call_command('seed_menu', stdout=out)
        call_command('seed_menu', stdout=out)

        self.assertEqual(Category.objects.count(), 4)
        self.assertEqual(MenuItem.objects.filter(name='Margherita').count(), 1)
        self.assertIn("0 new items", out.getvalue())
