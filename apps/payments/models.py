from django.conf import settings
from django.db import models
from django.db.models import Q


class Transaction(models.Model):
    """
    A single charge attempt and its outcome.

    `user` is NULL for guest checkouts; the API reports those as userId 0.
    Status changes go through `can_transition_to` so terminal records
    cannot be reopened.
    """
    STATUS_PROCESSING = 'processing'
    STATUS_PENDING = 'pending'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'

    STATUS_CHOICES = [
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_PENDING, 'Pending'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
    ]

    TRANSITIONS = {
        STATUS_PROCESSING: {STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING},
        STATUS_PENDING: {STATUS_COMPLETED, STATUS_FAILED},
        STATUS_COMPLETED: set(),
        STATUS_FAILED: set(),
    }

    METHOD_STRIPE = 'stripe'
    METHOD_PAYPAL = 'paypal'
    METHOD_BANK = 'bank'
    METHOD_CARD_VIA_PAYPAL = 'card_via_paypal'

    code = models.CharField(max_length=32, unique=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='transactions',
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default='USD')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES)
    payment_method = models.CharField(max_length=30)
    card_last4 = models.CharField(max_length=4, blank=True, null=True)
    card_brand = models.CharField(max_length=50, blank=True, null=True)
    description = models.TextField(blank=True)
    customer_name = models.CharField(max_length=255, blank=True)
    customer_email = models.EmailField(blank=True)
    processor_intent_id = models.CharField(max_length=255, blank=True, null=True, unique=True)
    processor_order_id = models.CharField(max_length=255, blank=True, null=True, unique=True)
    processor_payer_id = models.CharField(max_length=255, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'transactions'
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"{self.code} — {self.amount} {self.currency} — {self.status}"

    @property
    def is_guest(self):
        return self.user_id is None

    @property
    def is_terminal(self):
        return not self.TRANSITIONS[self.status]

    @property
    def contact_email(self):
        if self.user_id:
            return self.user.email
        return self.customer_email or None

    @property
    def contact_name(self):
        if self.user_id:
            return self.user.full_name
        return self.customer_name or 'Customer'

    def can_transition_to(self, status):
        return status in self.TRANSITIONS.get(self.status, set())


class PaymentMethod(models.Model):
    """
    A reusable payment method saved by a user.
    At most one row per user has is_default=True.
    """
    TYPE_CARD = 'card'
    TYPE_PAYPAL = 'paypal'
    TYPE_CARD_VIA_PAYPAL = 'card_via_paypal'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='payment_methods',
    )
    type = models.CharField(max_length=30)
    card_last4 = models.CharField(max_length=4, blank=True, null=True)
    card_brand = models.CharField(max_length=50, blank=True, null=True)
    expiry_month = models.CharField(max_length=2, blank=True, null=True)
    expiry_year = models.CharField(max_length=4, blank=True, null=True)
    is_default = models.BooleanField(default=False)
    processor_payment_method_id = models.CharField(max_length=255, blank=True, null=True)
    processor_account_email = models.EmailField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'payment_methods'
        ordering = ['-is_default', 'created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=Q(is_default=True),
                name='payment_methods_one_default_per_user',
            ),
        ]

    def __str__(self):
        label = f"{self.card_brand} ****{self.card_last4}" if self.card_last4 else self.type
        return f"{self.user} — {label}"
