"""
Transaction and payment-method repository.

Every write to Transaction and PaymentMethod goes through PaymentStore:
transaction codes are generated and checked for uniqueness here, status
changes are validated against Transaction.TRANSITIONS, a processor
order or intent id is recorded on at most one transaction, and the
default-payment-method swap runs under a row lock.
"""
import logging
import secrets
import time

from django.db import IntegrityError, transaction as db_transaction

from .exceptions import DuplicatePaymentReference, InvalidTransition, RecordNotFound
from .models import Transaction, PaymentMethod

logger = logging.getLogger(__name__)

CODE_ATTEMPTS = 10

DETAIL_FIELDS = (
    'card_last4', 'card_brand', 'processor_intent_id',
    'processor_order_id', 'processor_payer_id',
)


def generate_transaction_code():
    """Short human-readable code, e.g. TRX-48213-90412."""
    random_part = 10000 + secrets.randbelow(90000)
    clock_part = str(time.time_ns() // 1_000_000)[-5:]
    return f"TRX-{random_part}-{clock_part}"


class PaymentStore:

    # ─── Transactions ─────────────────────────────────────────────────────────

    def get_transactions(self, user_id):
        """
        All transactions owned by `user_id`, newest first.
        `user_id` of 0 or None returns guest transactions.
        """
        queryset = Transaction.objects.select_related('user')
        if user_id:
            queryset = queryset.filter(user_id=user_id)
        else:
            queryset = queryset.filter(user__isnull=True)
        return list(queryset.order_by('-created_at', '-id'))

    def get_transaction(self, transaction_id):
        return Transaction.objects.select_related('user').filter(pk=transaction_id).first()

    def get_transaction_by_code(self, code):
        return Transaction.objects.select_related('user').filter(code=code).first()

    def get_transaction_by_intent_id(self, intent_id):
        return Transaction.objects.select_related('user').filter(processor_intent_id=intent_id).first()

    def get_transaction_by_order_id(self, order_id):
        return Transaction.objects.select_related('user').filter(processor_order_id=order_id).first()

    def new_transaction_code(self):
        for _ in range(CODE_ATTEMPTS):
            code = generate_transaction_code()
            if not Transaction.objects.filter(code=code).exists():
                return code
            logger.warning(f"[Store] Transaction code collision on {code}, regenerating")
        raise RuntimeError('Could not allocate a unique transaction code')

    def create_transaction(self, code=None, **fields):
        status = fields.get('status')
        if status not in Transaction.TRANSITIONS:
            raise InvalidTransition(f"Unknown transaction status: {status}")

        try:
            with db_transaction.atomic():
                transaction = Transaction.objects.create(code=code or self.new_transaction_code(), **fields)
        except IntegrityError:
            order_id = fields.get('processor_order_id')
            intent_id = fields.get('processor_intent_id')
            if order_id and self.get_transaction_by_order_id(order_id):
                raise DuplicatePaymentReference(reference=order_id)
            if intent_id and self.get_transaction_by_intent_id(intent_id):
                raise DuplicatePaymentReference(reference=intent_id)
            raise
        logger.info(
            f"[Store] Created transaction {transaction.code} | status={transaction.status} | "
            f"owner={transaction.user_id or 'guest'}"
        )
        return transaction

    def update_transaction_status(self, transaction_id, status):
        """
        Move a transaction to `status`.
        Re-applying the current status is a no-op; illegal moves raise InvalidTransition.
        """
        if status not in Transaction.TRANSITIONS:
            raise InvalidTransition(f"Unknown transaction status: {status}")

        with db_transaction.atomic():
            transaction = (
                Transaction.objects.select_for_update()
                .filter(pk=transaction_id)
                .first()
            )
            if transaction is None:
                raise RecordNotFound(f"Transaction with id {transaction_id} not found")

            if transaction.status == status:
                return transaction

            if not transaction.can_transition_to(status):
                raise InvalidTransition(
                    f"Cannot change transaction {transaction.code} from {transaction.status} to {status}",
                    currentStatus=transaction.status,
                )

            previous = transaction.status
            transaction.status = status
            transaction.save(update_fields=['status', 'updated_at'])

        logger.info(f"[Store] Transaction {transaction.code}: {previous} → {status}")
        return transaction

    def update_transaction_details(self, transaction_id, **details):
        unknown = set(details) - set(DETAIL_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update transaction fields: {', '.join(sorted(unknown))}")

        updated = Transaction.objects.filter(pk=transaction_id).update(**details)
        if not updated:
            raise RecordNotFound(f"Transaction with id {transaction_id} not found")
        return self.get_transaction(transaction_id)

    # ─── Payment methods ──────────────────────────────────────────────────────

    def get_payment_methods(self, user_id):
        return list(PaymentMethod.objects.filter(user_id=user_id))

    def get_payment_method(self, payment_method_id):
        return PaymentMethod.objects.filter(pk=payment_method_id).first()

    def create_payment_method(self, user_id, type, is_default=False, **fields):
        payment_method = PaymentMethod.objects.create(user_id=user_id, type=type, is_default=False, **fields)
        if is_default:
            self.set_default_payment_method(user_id, payment_method.pk)
            payment_method.refresh_from_db()
        logger.info(f"[Store] Saved {type} payment method {payment_method.pk} for user {user_id}")
        return payment_method

    def delete_payment_method(self, payment_method_id):
        deleted, _ = PaymentMethod.objects.filter(pk=payment_method_id).delete()
        return deleted > 0

    def set_default_payment_method(self, user_id, payment_method_id):
        """
        Make `payment_method_id` the user's only default.
        Returns False, changing nothing, when the method is not the user's.
        """
        with db_transaction.atomic():
            owned = list(
                PaymentMethod.objects.select_for_update()
                .filter(user_id=user_id)
                .values_list('pk', flat=True)
            )
            if payment_method_id not in owned:
                return False

            PaymentMethod.objects.filter(user_id=user_id, is_default=True).exclude(
                pk=payment_method_id
            ).update(is_default=False)
            PaymentMethod.objects.filter(pk=payment_method_id).update(is_default=True)

        return True


payments = PaymentStore()
