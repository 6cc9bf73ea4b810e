# loyaltypoints/models.py
from django.db import models
from django.conf import settings


class LoyaltyPoint(models.Model):
    """
    Cached running balance of one account. Only ever changed together with a
    ledger row, inside the same transaction (see services.apply_transaction).
    """
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='loyalty_points')
    points = models.IntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} - {self.points} points"


class LoyaltyPointLog(models.Model):
    """Append-only log of every point movement. Rows are never edited or removed."""
    KIND_EARNED = 'earned'
    KIND_REDEEMED = 'redeemed'
    KIND_WHEEL_SPIN = 'wheel_spin'
    KIND_ADMIN_ADJUSTMENT = 'admin_adjustment'

    KIND_CHOICES = (
        (KIND_EARNED, 'Earned'),
        (KIND_REDEEMED, 'Redeemed'),
        (KIND_WHEEL_SPIN, 'Wheel Spin'),
        (KIND_ADMIN_ADJUSTMENT, 'Admin Adjustment'),
    )

    loyalty_account = models.ForeignKey(LoyaltyPoint, on_delete=models.PROTECT, related_name='logs')
    # Positive for awards, negative for redemptions
    points = models.IntegerField()
    kind = models.CharField(max_length=20, choices=KIND_CHOICES)
    description = models.CharField(max_length=255, blank=True)
    order = models.ForeignKey(
        'orders.Order',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='loyalty_logs'
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['loyalty_account', 'kind', 'created_at'], name='loyaltylog_acct_kind_date_idx'),
        ]

    def __str__(self):
        return f"{self.loyalty_account.user}: {self.points} points ({self.kind})"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Loyalty point log entries are immutable.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Loyalty point log entries cannot be deleted.")
