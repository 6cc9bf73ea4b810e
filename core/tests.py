from unittest.mock import patch

from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.core.exceptions import ValidationError
from django.test import TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import AccessToken

from loyaltypoints.exceptions import IneligibleSpin, LedgerWriteFailure
from .consumers import UNAUTHENTICATED
from .exceptions import custom_exception_handler
from .middleware import JWTAuthMiddleware
from .models import User, Notification, Address
from .routing import websocket_urlpatterns
from .tasks import send_telegram_message, dispatch_notification, create_notification


class UserManagerTests(TestCase):
    def test_email_is_required(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='pass1234')

    def test_superuser_flags(self):
        admin = User.objects.create_superuser(email='Admin@Example.COM', password='pass1234')

        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_superuser)
        self.assertEqual(admin.email, 'Admin@example.com')

    def test_full_name(self):
        user = User(email='jane@example.com', first_name='Jane', last_name='Doe')
        self.assertEqual(user.get_full_name(), 'Jane Doe')
        self.assertEqual(str(User(email='anon@example.com')), 'anon@example.com')


class ExceptionHandlerTests(TestCase):
    def test_ineligible_spin_maps_to_conflict(self):
        response = custom_exception_handler(IneligibleSpin(IneligibleSpin.ALREADY_SPUN_TODAY), {})

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'already_spun_today')
        self.assertIn('error_id', response.data)

    def test_ledger_failure_maps_to_unavailable(self):
        response = custom_exception_handler(LedgerWriteFailure(), {})
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)

    def test_django_validation_error_maps_to_bad_request(self):
        response = custom_exception_handler(ValidationError({'phone': 'Too short.'}), {})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['phone'], ['Too short.'])

    def test_unexpected_error_is_hidden(self):
        with self.assertLogs('core.exceptions', level='ERROR'):
            response = custom_exception_handler(RuntimeError("boom"), {})

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertNotIn('boom', str(response.data))


class NotificationTaskTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')

    @override_settings(TELEGRAM_BOT_TOKEN='')
    def test_telegram_skipped_when_not_configured(self):
        self.assertFalse(send_telegram_message('12345', 'hello'))

    @override_settings(TELEGRAM_BOT_TOKEN='token')
    def test_telegram_message_sent(self):
        with patch('core.tasks.Bot') as bot_class:
            bot_class.return_value.send_message = self._async_noop
            self.assertTrue(send_telegram_message('12345', 'hello'))

        self.assertEqual(bot_class.call_args.kwargs['token'], 'token')

    @staticmethod
    async def _async_noop(**kwargs):
        return None

    def test_create_notification(self):
        notification = create_notification(self.user.id, 'points_earned', 'Points!', '50 points', {'points': 50})

        self.assertEqual(notification.recipient, self.user)
        self.assertEqual(notification.data, {'points': 50})

    def test_dispatch_swallows_enqueue_errors(self):
        with patch('core.tasks.send_notification_task') as task:
            task.delay.side_effect = ConnectionError("redis down")
            with self.assertLogs('core.tasks', level='ERROR'):
                dispatch_notification(self.user.id, 'points_earned', 'Points!', '50 points')


class NotificationApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')
        self.other = User.objects.create_user(email='other@example.com', password='pass1234')
        for title in ('One', 'Two'):
            Notification.objects.create(recipient=self.user, notification_type='order_placed', title=title, message='m')
        Notification.objects.create(recipient=self.other, notification_type='order_placed', title='Other', message='m')
        self.client.force_authenticate(self.user)

    def test_lists_own_notifications(self):
        response = self.client.get(reverse('notification-list'))

        self.assertEqual(response.data['count'], 2)

    def test_mark_all_read(self):
        response = self.client.post(reverse('notification-mark-all-read'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.get(reverse('notification-unread-count')).data['unread_count'], 0)
        self.assertFalse(Notification.objects.get(recipient=self.other).is_read)

    def test_cannot_mark_someone_elses_notification(self):
        other_notification = Notification.objects.get(recipient=self.other)

        response = self.client.post(reverse('notification-mark-read', args=[other_notification.pk]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_profile(self):
        response = self.client.patch(reverse('user-profile'), {'first_name': 'Jane', 'phone': '5551234'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['full_name'], 'Jane')


class NotificationSocketTests(TransactionTestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')
        self.other = User.objects.create_user(email='other@example.com', password='pass1234')
        self.notification = Notification.objects.create(
            recipient=self.user, notification_type='order_placed', title='Order #1', message='Thanks!'
        )
        self.token = str(AccessToken.for_user(self.user))
        self.other_token = str(AccessToken.for_user(self.other))
        self.application = JWTAuthMiddleware(URLRouter(websocket_urlpatterns))

    def communicator(self, query='', headers=None):
        return WebsocketCommunicator(self.application, f'/ws/notifications/{query}', headers=headers or [])

    async def connect(self, communicator):
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return await communicator.receive_json_from()

    async def test_rejects_missing_or_invalid_token(self):
        for communicator in (self.communicator(), self.communicator('?token=garbage')):
            connected, code = await communicator.connect()

            self.assertFalse(connected)
            self.assertEqual(code, UNAUTHENTICATED)

    async def test_query_token_connects_with_unread_count(self):
        communicator = self.communicator(f'?token={self.token}')

        greeting = await self.connect(communicator)

        self.assertEqual(greeting, {'type': 'connection_established', 'unread_count': 1})
        await communicator.disconnect()

    async def test_bearer_header_connects(self):
        communicator = self.communicator(headers=[(b'authorization', f'Bearer {self.token}'.encode())])

        greeting = await self.connect(communicator)

        self.assertEqual(greeting['type'], 'connection_established')
        await communicator.disconnect()

    async def test_spin_result_is_pushed(self):
        communicator = self.communicator(f'?token={self.token}')
        await self.connect(communicator)

        await database_sync_to_async(create_notification)(
            self.user.id, 'spin_result', 'Won 50 points', 'You won 50 points on the wheel!',
            {'points': 50, 'order_id': 7, 'new_total': 50}
        )

        self.assertEqual(await communicator.receive_json_from(), {'type': 'counter', 'unread_count': 2})
        pushed = await communicator.receive_json_from()
        self.assertEqual(pushed['type'], 'notification')
        self.assertEqual(pushed['notification']['type'], 'spin_result')
        self.assertEqual(pushed['notification']['data'], {'points': 50, 'order_id': 7, 'new_total': 50})
        await communicator.disconnect()

    async def test_other_users_do_not_receive_pushes(self):
        communicator = self.communicator(f'?token={self.other_token}')
        self.assertEqual((await self.connect(communicator))['unread_count'], 0)

        await database_sync_to_async(create_notification)(self.user.id, 'order_placed', 'Order #2', 'Thanks!')

        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_mark_read_and_mark_all_read(self):
        await database_sync_to_async(Notification.objects.create)(
            recipient=self.user, notification_type='points_earned', title='Points', message='50 points'
        )
        communicator = self.communicator(f'?token={self.token}')
        self.assertEqual((await self.connect(communicator))['unread_count'], 2)

        await communicator.send_json_to({'type': 'mark_read', 'id': self.notification.id})
        self.assertEqual(await communicator.receive_json_from(), {'type': 'counter', 'unread_count': 1})

        await communicator.send_json_to({'type': 'mark_all_read'})
        self.assertEqual(await communicator.receive_json_from(), {'type': 'counter', 'unread_count': 0})

        unread = await database_sync_to_async(
            Notification.objects.filter(recipient=self.user, is_read=False).count
        )()
        self.assertEqual(unread, 0)
        await communicator.disconnect()

    async def test_cannot_mark_someone_elses_notification(self):
        foreign = await database_sync_to_async(Notification.objects.create)(
            recipient=self.other, notification_type='order_placed', title='Order #9', message='Thanks!'
        )
        communicator = self.communicator(f'?token={self.token}')
        await self.connect(communicator)

        await communicator.send_json_to({'type': 'mark_read', 'id': foreign.id})

        self.assertEqual((await communicator.receive_json_from())['type'], 'error')
        self.assertFalse((await database_sync_to_async(Notification.objects.get)(pk=foreign.pk)).is_read)
        await communicator.disconnect()


ADDRESS = {
    'full_name': 'Jane Doe',
    'address_line1': '1 Main St',
    'address_line2': 'Apt 4',
    'city': 'Springfield',
    'state': 'IL',
    'postal_code': '12345',
    'country': 'United States',
    'phone': '5551234',
}


class AddressModelTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')

    def test_first_address_becomes_default(self):
        address = Address.objects.create(user=self.user, **ADDRESS)

        self.assertTrue(address.is_default)
        self.assertEqual(address.street_address, '1 Main St, Apt 4')

    def test_new_default_moves_the_flag(self):
        first = Address.objects.create(user=self.user, **ADDRESS)
        second = Address.objects.create(user=self.user, **dict(ADDRESS, city='Shelbyville'), is_default=True)
        third = Address.objects.create(user=self.user, **dict(ADDRESS, city='Ogdenville'))

        first.refresh_from_db()
        self.assertFalse(first.is_default)
        self.assertFalse(third.is_default)
        self.assertEqual(list(self.user.addresses.all()), [second, third, first])

    def test_deleting_default_promotes_newest(self):
        first = Address.objects.create(user=self.user, **ADDRESS)
        second = Address.objects.create(user=self.user, **dict(ADDRESS, city='Shelbyville'))

        first.delete()

        second.refresh_from_db()
        self.assertTrue(second.is_default)


class AddressApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')
        self.other = User.objects.create_user(email='other@example.com', password='pass1234')
        self.foreign = Address.objects.create(user=self.other, **ADDRESS)
        self.client.force_authenticate(self.user)

    def test_requires_authentication(self):
        self.client.force_authenticate(None)

        response = self.client.get(reverse('address-list'))

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_create_and_list_own_addresses(self):
        response = self.client.post(reverse('address-list'), ADDRESS, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['is_default'])
        listing = self.client.get(reverse('address-list'))
        self.assertEqual([a['id'] for a in listing.data['results']], [response.data['id']])

    def test_set_default(self):
        first = Address.objects.create(user=self.user, **ADDRESS)
        second = Address.objects.create(user=self.user, **dict(ADDRESS, city='Shelbyville'))

        response = self.client.post(reverse('address-set-default', args=[second.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_default'])
        self.assertEqual(self.user.addresses.get(is_default=True), second)
        first.refresh_from_db()
        self.assertFalse(first.is_default)

    def test_short_phone_rejected(self):
        response = self.client.post(reverse('address-list'), dict(ADDRESS, phone='123'), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('phone', response.data)

    def test_other_users_addresses_are_hidden(self):
        self.assertEqual(self.client.get(reverse('address-detail', args=[self.foreign.pk])).status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(self.client.delete(reverse('address-detail', args=[self.foreign.pk])).status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(Address.objects.filter(pk=self.foreign.pk).exists())
