from django.db import models, transaction
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.core.validators import MinLengthValidator


class CustomUserManager(BaseUserManager):
    def create_user(self, email, first_name='', last_name='', password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')

        user = self.model(
            email=self.normalize_email(email),
            first_name=first_name,
            last_name=last_name,
            **extra_fields
        )
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, first_name='', last_name='', password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        return self.create_user(email, first_name, last_name, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    A customer or shop administrator. Accounts are provisioned by the identity
    provider; the shop only references them (orders, loyalty balance).
    """
    email = models.EmailField(unique=True)
    first_name = models.CharField(max_length=150, blank=True)
    last_name = models.CharField(max_length=150, blank=True)
    phone = models.CharField(
        max_length=20,
        blank=True,
        validators=[MinLengthValidator(6)]
    )

    # Role and Permissions
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    # Timestamps
    last_login = models.DateTimeField(null=True, blank=True)
    date_joined = models.DateTimeField(auto_now_add=True)

    objects = CustomUserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    def __str__(self):
        return self.get_full_name() or self.email

    def get_full_name(self):
        return ' '.join(filter(None, [self.first_name, self.last_name])).strip()

    def get_short_name(self):
        return self.first_name or self.email


class Notification(models.Model):
    NOTIFICATION_TYPES = (
        ('order_placed', 'Order Placed'),
        ('points_earned', 'Points Earned'),
        ('spin_result', 'Spin Result'),
        ('points_adjusted', 'Points Adjusted'),
    )

    recipient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    notification_type = models.CharField(max_length=20, choices=NOTIFICATION_TYPES)
    title = models.CharField(max_length=255)
    message = models.TextField()
    data = models.JSONField(default=dict, blank=True)  # e.g. order_id, points awarded
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.title} -> {self.recipient}"


class Address(models.Model):
    """
    Saved delivery address. Whenever a user has addresses, exactly one of them
    is the default: the first one saved becomes it, and marking another as
    default moves the flag over.
    """
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='addresses')
    full_name = models.CharField(max_length=150)
    address_line1 = models.CharField(max_length=255)
    address_line2 = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100)
    postal_code = models.CharField(max_length=20)
    country = models.CharField(max_length=100, default='United States')
    phone = models.CharField(max_length=20, blank=True, validators=[MinLengthValidator(6)])
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-is_default', '-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=models.Q(is_default=True),
                name='address_one_default_per_user',
            ),
        ]

    def __str__(self):
        return f"{self.full_name}, {self.street_address}, {self.city}"

    @property
    def street_address(self):
        return ', '.join(filter(None, [self.address_line1, self.address_line2]))

    def save(self, *args, **kwargs):
        with transaction.atomic():
            siblings = Address.objects.select_for_update().filter(user_id=self.user_id).exclude(pk=self.pk)
            if not siblings.filter(is_default=True).exists():
                self.is_default = True
            elif self.is_default:
                siblings.filter(is_default=True).update(is_default=False)
            super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        with transaction.atomic():
            was_default = self.is_default
            result = super().delete(*args, **kwargs)
            if was_default:
                successor = Address.objects.filter(user_id=self.user_id).order_by('-created_at', '-id').first()
                if successor is not None:
                    successor.is_default = True
                    successor.save(update_fields=['is_default', 'updated_at'])
        return result
