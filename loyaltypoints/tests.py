from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.db.models import ProtectedError
from django.test import RequestFactory, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from orders.models import Order
from .exceptions import IneligibleSpin, LedgerWriteFailure
from .models import LoyaltyPoint, LoyaltyPointLog
from .rewards import SpinReward, draw, reward_for_sample, label_for_points
from .tasks import award_points_task
from . import services

User = get_user_model()


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def make_order(user=None, subtotal='10.00', pending_spin=None):
    subtotal = Decimal(subtotal)
    fee = Decimal('3.99')
    return Order.objects.create(
        user=user,
        status='paid',
        payment_method='cash',
        subtotal=subtotal,
        delivery_fee=fee,
        total_amount=subtotal + fee,
        pending_spin=user is not None if pending_spin is None else pending_spin,
        full_name='Jane Doe',
        street_address='1 Main St',
        city='Springfield',
        postal_code='12345',
        phone='5551234',
    )


def assert_balance_consistent(test, user):
    account = LoyaltyPoint.objects.get(user=user)
    test.assertEqual(account.points, services.get_balance(user))


class RewardDrawTests(TestCase):
    def test_tier_boundaries(self):
        expected = {
            0: 300, 0.0199: 300, 0.02: 100, 0.0999: 100,
            0.10: 50, 0.1999: 50, 0.20: 0, 0.9999: 0,
        }
        for sample, points in expected.items():
            with self.subTest(sample=sample):
                self.assertEqual(reward_for_sample(sample).points, points)

    def test_labels(self):
        self.assertEqual(reward_for_sample(0.01).label, "Won 300 points")
        self.assertEqual(reward_for_sample(0.5).label, "Try Again")
        self.assertEqual(label_for_points(50), "Won 50 points")

    def test_draw_uses_injected_source(self):
        self.assertEqual(draw(FixedRandom(0.05)), SpinReward(points=100, label="Won 100 points"))

    def test_sample_outside_unit_interval_rejected(self):
        with self.assertRaises(ValueError):
            reward_for_sample(1.0)


class LedgerTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')

    def test_earn_points_appends_log_and_updates_balance(self):
        balance = services.earn_points(self.user, 120, "Welcome bonus")

        self.assertEqual(balance, 120)
        log = LoyaltyPointLog.objects.get()
        self.assertEqual(log.kind, LoyaltyPointLog.KIND_EARNED)
        self.assertEqual(log.points, 120)
        assert_balance_consistent(self, self.user)

    def test_earn_points_must_be_positive(self):
        with self.assertRaises(ValidationError):
            services.earn_points(self.user, 0, "Nothing")
        self.assertFalse(LoyaltyPointLog.objects.exists())

    def test_balance_of_new_account_is_zero(self):
        self.assertEqual(services.get_balance(self.user), 0)

    def test_unknown_kind_rejected(self):
        with self.assertRaises(ValidationError):
            services.apply_transaction(self.user, 10, 'gift', 'Gift')

    def test_history_is_newest_first(self):
        services.earn_points(self.user, 10, "First")
        services.earn_points(self.user, 20, "Second")
        services.admin_adjust(self.user, -5, "Correction")

        history = list(services.get_history(self.user))
        self.assertEqual([log.description for log in history], ["Correction", "Second", "First"])

    def test_log_entries_are_immutable(self):
        services.earn_points(self.user, 10, "First")
        log = LoyaltyPointLog.objects.get()

        log.points = 1000
        with self.assertRaises(ValueError):
            log.save()
        with self.assertRaises(ValueError):
            log.delete()
        self.assertEqual(LoyaltyPointLog.objects.get().points, 10)

    def test_accounts_and_orders_with_ledger_rows_cannot_be_deleted(self):
        order = make_order(self.user)
        services.apply_transaction(self.user, 10, LoyaltyPointLog.KIND_EARNED, "First", order=order)
        account = LoyaltyPoint.objects.get(user=self.user)

        with self.assertRaises(ProtectedError):
            account.delete()
        with self.assertRaises(ProtectedError):
            order.delete()
        self.assertEqual(LoyaltyPointLog.objects.count(), 1)

    def test_admin_cannot_delete_accounts_or_orders(self):
        superuser = User.objects.create_superuser(email='admin@example.com', password='pass1234')
        request = RequestFactory().get('/admin/')
        request.user = superuser
        order = make_order(self.user)
        services.earn_points(self.user, 10, "First")
        account = LoyaltyPoint.objects.get(user=self.user)

        self.assertFalse(admin.site._registry[LoyaltyPoint].has_delete_permission(request, account))
        self.assertFalse(admin.site._registry[LoyaltyPointLog].has_delete_permission(request))
        self.assertFalse(admin.site._registry[Order].has_delete_permission(request, order))

    def test_database_error_becomes_ledger_failure(self):
        with patch.object(LoyaltyPointLog.objects, 'create', side_effect=DatabaseError("disk full")):
            with self.assertRaises(LedgerWriteFailure):
                services.earn_points(self.user, 10, "Bonus")
        self.assertEqual(services.get_account(self.user).points, 0)


class RedemptionTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')

    def test_quote_clamps_to_balance_and_payable_total(self):
        self.assertEqual(services.quote_redemption(1000, 500, Decimal('13.99')), 500)
        self.assertEqual(services.quote_redemption(5000, 9000, Decimal('13.99')), 1399)
        self.assertEqual(services.quote_redemption(200, 500), 200)
        self.assertEqual(services.quote_redemption(200, -50), 0)

    def test_redeem_clamped_to_balance(self):
        services.earn_points(self.user, 500, "Bonus")
        order = make_order(self.user)

        redemption = services.redeem_points(self.user, 1000, order=order)

        self.assertEqual(redemption.points, 500)
        self.assertEqual(redemption.discount, Decimal('5.00'))
        self.assertEqual(redemption.balance, 0)
        log = LoyaltyPointLog.objects.get(kind=LoyaltyPointLog.KIND_REDEEMED)
        self.assertEqual(log.points, -500)
        self.assertEqual(log.order, order)
        assert_balance_consistent(self, self.user)

    def test_redeem_clamped_to_order_total(self):
        services.earn_points(self.user, 5000, "Bonus")
        order = make_order(self.user)

        redemption = services.redeem_points(self.user, 5000, order=order)

        self.assertEqual(redemption.points, 1399)
        self.assertEqual(redemption.discount, Decimal('13.99'))
        self.assertEqual(redemption.balance, 3601)

    def test_non_positive_request_rejected(self):
        for requested in (0, -10):
            with self.subTest(requested=requested):
                with self.assertRaises(ValidationError):
                    services.redeem_points(self.user, requested)

    def test_empty_balance_writes_nothing(self):
        redemption = services.redeem_points(self.user, 300)

        self.assertEqual(redemption.points, 0)
        self.assertEqual(redemption.discount, Decimal('0.00'))
        self.assertFalse(LoyaltyPointLog.objects.exists())

    def test_points_value(self):
        self.assertEqual(services.points_value(250), Decimal('2.50'))


class AdminAdjustTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')

    def test_negative_adjustment_is_not_clamped(self):
        services.earn_points(self.user, 100, "Bonus")

        balance = services.admin_adjust(self.user, -250, "Chargeback")

        self.assertEqual(balance, -150)
        self.assertEqual(services.get_balance(self.user), -150)
        self.assertTrue(LoyaltyPointLog.objects.filter(kind=LoyaltyPointLog.KIND_ADMIN_ADJUSTMENT, points=-250).exists())

    def test_zero_adjustment_rejected(self):
        with self.assertRaises(ValidationError):
            services.admin_adjust(self.user, 0, "Nothing")

    def test_customer_is_notified_after_commit(self):
        with patch('loyaltypoints.services.dispatch_notification') as dispatch:
            with self.captureOnCommitCallbacks(execute=True):
                services.admin_adjust(self.user, 75, "Goodwill")

        dispatch.assert_called_once()
        self.assertEqual(dispatch.call_args.kwargs['notification_type'], 'points_adjusted')
        self.assertEqual(dispatch.call_args.kwargs['data'], {'points': 75, 'new_total': 75})


class SpinTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')

    def test_no_pending_order_is_denied(self):
        self.assertEqual(
            services.check_spin_eligibility(self.user),
            services.Denied(IneligibleSpin.NO_PENDING_SPIN)
        )

    def test_earliest_pending_order_is_chosen(self):
        first = make_order(self.user)
        make_order(self.user)
        make_order(self.user, pending_spin=False)

        self.assertEqual(services.check_spin_eligibility(self.user), services.Eligible(first.pk))

    def test_spin_win_then_repeat_same_day(self):
        first = make_order(self.user)

        result = services.spin_the_wheel(self.user, rng=FixedRandom(0.05))

        self.assertTrue(result.recorded)
        self.assertEqual(result.points, 100)
        self.assertEqual(result.balance, 100)
        first.refresh_from_db()
        self.assertFalse(first.pending_spin)
        log = LoyaltyPointLog.objects.get()
        self.assertEqual(log.kind, LoyaltyPointLog.KIND_WHEEL_SPIN)
        self.assertEqual(log.description, "Won 100 points")

        second = make_order(self.user)
        with self.assertRaises(IneligibleSpin) as ctx:
            services.spin_the_wheel(self.user, rng=FixedRandom(0.01))
        self.assertEqual(ctx.exception.reason, IneligibleSpin.ALREADY_SPUN_TODAY)
        second.refresh_from_db()
        self.assertTrue(second.pending_spin)
        self.assertEqual(services.get_balance(self.user), 100)

    def test_losing_spin_still_records_zero_row(self):
        make_order(self.user)

        result = services.spin_the_wheel(self.user, rng=FixedRandom(0.5))

        self.assertTrue(result.recorded)
        self.assertEqual(result.label, "Try Again")
        log = LoyaltyPointLog.objects.get()
        self.assertEqual(log.points, 0)
        self.assertTrue(services.has_spun_today(self.user))

    def test_record_is_idempotent_per_order(self):
        order = make_order(self.user)

        first = services.record_spin_result(self.user, order.pk, 50)
        second = services.record_spin_result(self.user, order.pk, 50)

        self.assertTrue(first.recorded)
        self.assertFalse(second.recorded)
        self.assertEqual(LoyaltyPointLog.objects.count(), 1)
        self.assertEqual(services.get_balance(self.user), 50)

    def test_second_order_cannot_be_spun_on_same_day(self):
        first = make_order(self.user)
        second = make_order(self.user)
        services.record_spin_result(self.user, first.pk, 0)

        with self.assertRaises(IneligibleSpin):
            services.record_spin_result(self.user, second.pk, 300)

        second.refresh_from_db()
        self.assertTrue(second.pending_spin)
        self.assertEqual(LoyaltyPointLog.objects.count(), 1)

    def test_other_users_order_is_not_consumed(self):
        other = User.objects.create_user(email='other@example.com', password='pass1234')
        order = make_order(other)

        result = services.record_spin_result(self.user, order.pk, 100)

        self.assertFalse(result.recorded)
        order.refresh_from_db()
        self.assertTrue(order.pending_spin)

    def test_yesterdays_spin_does_not_block(self):
        first = make_order(self.user)
        services.record_spin_result(self.user, first.pk, 50)
        LoyaltyPointLog.objects.update(created_at=timezone.now() - timedelta(days=1))
        second = make_order(self.user)

        self.assertEqual(services.check_spin_eligibility(self.user), services.Eligible(second.pk))

    def test_ledger_failure_keeps_entitlement(self):
        order = make_order(self.user)

        with patch.object(LoyaltyPointLog.objects, 'create', side_effect=DatabaseError("boom")):
            with self.assertRaises(LedgerWriteFailure):
                services.spin_the_wheel(self.user, rng=FixedRandom(0.05))

        order.refresh_from_db()
        self.assertTrue(order.pending_spin)
        self.assertFalse(services.has_spun_today(self.user))

    def test_spin_status(self):
        order = make_order(self.user)

        status_before = services.spin_status(self.user)
        self.assertTrue(status_before['can_spin'])
        self.assertEqual(status_before['order_id'], order.pk)

        services.record_spin_result(self.user, order.pk, 0)
        status_after = services.spin_status(self.user)
        self.assertFalse(status_after['can_spin'])
        self.assertTrue(status_after['has_spun_today'])
        self.assertEqual(status_after['reason'], IneligibleSpin.ALREADY_SPUN_TODAY)


class AwardPointsTaskTests(TestCase):
    def test_awards_and_notifies(self):
        user = User.objects.create_user(email='buyer@example.com', password='pass1234')

        with patch('loyaltypoints.tasks.dispatch_notification') as dispatch:
            message = award_points_task(user.id, 40, "Birthday treat")

        self.assertIn("Awarded 40 points", message)
        self.assertEqual(services.get_balance(user), 40)
        dispatch.assert_called_once()

    def test_unknown_user(self):
        self.assertIn("not found", award_points_task(999, 40, "Nobody"))


class LoyaltyApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(email='buyer@example.com', password='pass1234')
        self.admin = User.objects.create_user(email='admin@example.com', password='pass1234', is_staff=True)

    def test_balance_endpoint(self):
        services.earn_points(self.user, 250, "Bonus")
        self.client.force_authenticate(self.user)

        response = self.client.get(reverse('loyaltypoint-detail'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['points'], 250)
        self.assertEqual(response.data['value'], '2.50')

    def test_history_requires_authentication(self):
        response = self.client.get(reverse('loyaltypoint-history'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_spin_endpoint(self):
        order = make_order(self.user)
        self.client.force_authenticate(self.user)

        with patch('loyaltypoints.services.draw', return_value=SpinReward(300, "Won 300 points")):
            response = self.client.post(reverse('spin'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['points'], 300)
        self.assertEqual(response.data['order_id'], order.pk)

    def test_spin_without_pending_order_conflicts(self):
        self.client.force_authenticate(self.user)

        response = self.client.post(reverse('spin'))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], IneligibleSpin.NO_PENDING_SPIN)

    def test_spin_status_endpoint(self):
        make_order(self.user)
        self.client.force_authenticate(self.user)

        response = self.client.get(reverse('spin-status'))

        self.assertTrue(response.data['can_spin'])

    def test_adjust_requires_admin(self):
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('loyalty-adjust', args=[self.user.pk]), {'points': 500, 'reason': 'Self-service'}
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_adjusts_balance(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('loyalty-adjust', args=[self.user.pk]), {'points': -30, 'reason': 'Correction'}
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['points'], -30)

    def test_admin_zero_adjustment_is_bad_request(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('loyalty-adjust', args=[self.user.pk]), {'points': 0, 'reason': 'Nothing'}
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_admin_user_list_includes_balances(self):
        services.earn_points(self.user, 80, "Bonus")
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('loyalty-users'), {'search': 'buyer'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['points'], 80)

    def test_admin_spin_history(self):
        order = make_order(self.user)
        services.record_spin_result(self.user, order.pk, 50)
        self.client.force_authenticate(self.admin)

        response = self.client.get(reverse('spin-history'))

        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['user_email'], 'buyer@example.com')
