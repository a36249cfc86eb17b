"""
Payment orchestration.

    initiate_payment_intent  - Stripe intent + local "processing" record
    verify_paypal_order      - re-check a client-reported PayPal capture
    verify_stripe_intent     - same discipline for card PaymentIntents
    reconcile_payment        - the one place a payment outcome is written
    guest_checkout           - the flow above without an account

Steps are not wrapped in a shared database transaction: a processor call
that succeeds followed by a failed local write is logged and surfaced,
not compensated.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from django.conf import settings

from apps.accounts.store import users
from tasks.email_tasks import send_payment_receipt_email, send_payment_failed_email

from . import processors
from .exceptions import DuplicatePaymentReference, PaymentVerificationError, ProcessorError, RecordNotFound
from .models import Transaction, PaymentMethod
from .store import payments

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal('0.01')
PAYPAL_COMPLETED = 'COMPLETED'
STRIPE_SUCCEEDED = 'succeeded'


@dataclass
class VerifiedPayment:
    """What the processor itself reports about a payment."""
    reference: str
    amount: Decimal
    currency: str
    payer_id: Optional[str] = None
    payer_email: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None
    payment_method_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class PaymentOutcome:
    """Input to reconcile_payment: the status to record and everything known about the charge."""
    status: str
    amount: Optional[Decimal] = None
    currency: str = 'USD'
    payment_method: str = ''
    owner: object = None
    description: str = ''
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None
    processor_intent_id: Optional[str] = None
    processor_order_id: Optional[str] = None
    processor_payer_id: Optional[str] = None
    processor_payment_method_id: Optional[str] = None
    processor_account_email: Optional[str] = None
    customer_name: str = ''
    customer_email: str = ''
    save_payment_method: bool = False
    saved_method_type: Optional[str] = None


def _amount_matches(claimed, reported):
    return abs(Decimal(claimed) - Decimal(reported)) <= AMOUNT_TOLERANCE


def _ensure_unrecorded(order_id=None, intent_id=None):
    """A processor payment may back at most one transaction."""
    if order_id and payments.get_transaction_by_order_id(order_id):
        logger.warning(f"[Payment] PayPal order {order_id} is already recorded")
        raise DuplicatePaymentReference(reference=order_id)
    if intent_id and payments.get_transaction_by_intent_id(intent_id):
        logger.warning(f"[Payment] Payment intent {intent_id} is already recorded")
        raise DuplicatePaymentReference(reference=intent_id)


# ─── Initiator ────────────────────────────────────────────────────────────────

def _ensure_billing_customer(user):
    if user.external_billing_id:
        return user.external_billing_id

    customer = processors.create_customer(
        email=user.email,
        name=user.full_name,
        metadata={'userId': str(user.pk)},
    )
    users.set_external_billing_id(user.pk, customer['id'])
    logger.info(f"[Payment] Created billing customer {customer['id']} for user {user.pk}")
    return customer['id']


def initiate_payment_intent(user, amount, currency, payment_method, description='', save_card=False):
    """
    Create a Stripe PaymentIntent and a local "processing" transaction.

    Returns (client_secret, transaction). No local record is written when
    Stripe rejects the request.
    """
    description = description or settings.PAYMENT_DEFAULT_DESCRIPTION
    code = payments.new_transaction_code()

    customer = _ensure_billing_customer(user) if save_card else None
    intent = processors.create_payment_intent(
        amount=amount,
        currency=currency,
        description=description,
        metadata={
            'userId': str(user.pk),
            'transactionId': code,
            'savePaymentMethod': 'true' if save_card else 'false',
        },
        customer=customer,
        save_card=save_card,
    )

    try:
        transaction = payments.create_transaction(
            code=code,
            user=user,
            amount=amount,
            currency=currency,
            status=Transaction.STATUS_PROCESSING,
            payment_method=payment_method,
            description=description,
            processor_intent_id=intent['id'],
        )
    except Exception:
        logger.exception(f"[Payment] Intent {intent['id']} created but transaction {code} was not stored")
        raise

    logger.info(
        f"[Payment] Created payment intent for transaction {code} | "
        f"Amount: {amount} {currency} | Method: {payment_method}"
    )
    return intent['client_secret'], transaction


# ─── Verifier ─────────────────────────────────────────────────────────────────

def verify_paypal_order(order_id, claimed_amount):
    """
    Confirm with PayPal that `order_id` is captured for `claimed_amount`.
    Raises PaymentVerificationError when the order is not COMPLETED or the
    amount differs by more than one cent.
    """
    logger.info(f"[PayPal] Verifying payment for order {order_id} with amount {claimed_amount}")
    order = processors.get_paypal_order(order_id)

    order_status = order.get('status')
    if order_status != PAYPAL_COMPLETED:
        logger.error(f"[PayPal] Payment not completed. Status: {order_status}")
        raise PaymentVerificationError('PayPal payment not completed', status=order_status)

    try:
        reported = order['purchase_units'][0]['amount']
        reported_amount = Decimal(str(reported['value']))
    except (KeyError, IndexError, TypeError, ArithmeticError):
        logger.error(f"[PayPal] Order {order_id} has no readable amount")
        raise ProcessorError('PayPal order response is missing an amount', status_code=500)

    if not _amount_matches(claimed_amount, reported_amount):
        logger.error(f"[PayPal] Amount mismatch: {reported_amount} vs {claimed_amount}")
        raise PaymentVerificationError(
            "PayPal payment amount doesn't match",
            paypalAmount=str(reported_amount),
            requestAmount=str(claimed_amount),
        )

    payer = order.get('payer') or {}
    logger.info(f"[PayPal] Payment verification successful for order {order_id}")
    return VerifiedPayment(
        reference=order.get('id', order_id),
        amount=reported_amount,
        currency=reported.get('currency_code', settings.PAYMENT_DEFAULT_CURRENCY),
        payer_id=payer.get('payer_id'),
        payer_email=payer.get('email_address'),
    )


def check_stripe_intent(intent, claimed_amount, currency):
    """Validate an already-fetched PaymentIntent against the amount we expect."""
    intent_status = intent.get('status')
    if intent_status != STRIPE_SUCCEEDED:
        logger.error(f"[Stripe] Intent {intent.get('id')} not succeeded. Status: {intent_status}")
        raise PaymentVerificationError('Card payment not completed', status=intent_status)

    claimed_currency = (currency or settings.PAYMENT_DEFAULT_CURRENCY).upper()
    currency = (intent.get('currency') or claimed_currency).upper()
    if currency != claimed_currency:
        logger.error(f"[Stripe] Currency mismatch on {intent.get('id')}: {currency} vs {claimed_currency}")
        raise PaymentVerificationError(
            "Card payment currency doesn't match",
            processorCurrency=currency,
            requestCurrency=claimed_currency,
        )

    reported_units = intent.get('amount_received') or intent.get('amount') or 0
    if abs(reported_units - processors.to_minor_units(claimed_amount, currency)) > 1:
        reported = processors.from_minor_units(reported_units, currency)
        logger.error(f"[Stripe] Amount mismatch on {intent.get('id')}: {reported} vs {claimed_amount}")
        raise PaymentVerificationError(
            "Card payment amount doesn't match",
            processorAmount=str(reported),
            requestAmount=str(claimed_amount),
        )

    verified = VerifiedPayment(
        reference=intent['id'],
        amount=processors.from_minor_units(reported_units, currency),
        currency=currency,
        metadata=dict(intent.get('metadata') or {}),
    )

    method = intent.get('payment_method')
    if isinstance(method, str):
        verified.payment_method_id = method
    elif method:
        verified.payment_method_id = method.get('id')
        card = method.get('card') or {}
        verified.card_brand = card.get('brand')
        verified.card_last4 = card.get('last4')
        if card.get('exp_month'):
            verified.expiry_month = f"{int(card['exp_month']):02d}"
        if card.get('exp_year'):
            verified.expiry_year = str(card['exp_year'])
    return verified


def verify_stripe_intent(intent_id, claimed_amount, currency=None):
    intent = processors.retrieve_payment_intent(intent_id)
    return check_stripe_intent(intent, claimed_amount, currency)


# ─── Reconciler ───────────────────────────────────────────────────────────────

def _save_payment_method(owner, outcome):
    if owner is None:
        logger.info("[Payment] Skipping payment method save for guest checkout")
        return None

    return payments.create_payment_method(
        user_id=owner.pk,
        type=outcome.saved_method_type or PaymentMethod.TYPE_CARD,
        card_last4=outcome.card_last4,
        card_brand=outcome.card_brand,
        expiry_month=outcome.expiry_month,
        expiry_year=outcome.expiry_year,
        processor_payment_method_id=outcome.processor_payment_method_id,
        processor_account_email=outcome.processor_account_email,
    )


def _notify(transaction):
    email = transaction.contact_email
    if not email:
        return
    if transaction.status == Transaction.STATUS_COMPLETED:
        send_payment_receipt_email.delay(
            email, transaction.contact_name, transaction.code,
            str(transaction.amount), transaction.currency,
        )
    elif transaction.status == Transaction.STATUS_FAILED:
        send_payment_failed_email.delay(email, transaction.contact_name, transaction.code)


def reconcile_payment(outcome, transaction=None):
    """
    Record `outcome` locally.

    With `transaction`, move it to outcome.status (state machine enforced)
    and fill in any correlation/card details it is missing. Without one,
    create the record directly in outcome.status. Side effects (saving a
    payment method, notifications) only run when the status actually changed.
    """
    if transaction is not None:
        current = payments.get_transaction(transaction.pk)
        if current is None:
            raise RecordNotFound(f"Transaction with id {transaction.pk} not found")
        previous = current.status
        transaction = payments.update_transaction_status(transaction.pk, outcome.status)
        details = {
            name: getattr(outcome, name)
            for name in ('card_last4', 'card_brand', 'processor_intent_id', 'processor_order_id', 'processor_payer_id')
            if getattr(outcome, name) and not getattr(transaction, name)
        }
        if details:
            transaction = payments.update_transaction_details(transaction.pk, **details)
    else:
        previous = None
        transaction = payments.create_transaction(
            user=outcome.owner,
            amount=outcome.amount,
            currency=outcome.currency,
            status=outcome.status,
            payment_method=outcome.payment_method,
            description=outcome.description,
            card_last4=outcome.card_last4,
            card_brand=outcome.card_brand,
            customer_name=outcome.customer_name,
            customer_email=outcome.customer_email,
            processor_intent_id=outcome.processor_intent_id,
            processor_order_id=outcome.processor_order_id,
            processor_payer_id=outcome.processor_payer_id,
        )

    if transaction.status == previous:
        return transaction

    if outcome.save_payment_method:
        _save_payment_method(transaction.user, outcome)

    _notify(transaction)
    return transaction


def confirm_transaction(transaction, status):
    """
    Client-reported status for an existing transaction.
    A "completed" report on a card transaction is checked against Stripe first.
    """
    outcome = PaymentOutcome(status=status)

    if status == Transaction.STATUS_COMPLETED and transaction.processor_intent_id:
        verified = verify_stripe_intent(
            transaction.processor_intent_id, transaction.amount, transaction.currency
        )
        outcome = _outcome_from_intent(verified, status)

    return reconcile_payment(outcome, transaction)


def _outcome_from_intent(verified, status):
    return PaymentOutcome(
        status=status,
        card_brand=verified.card_brand,
        card_last4=verified.card_last4,
        expiry_month=verified.expiry_month,
        expiry_year=verified.expiry_year,
        processor_intent_id=verified.reference,
        processor_payment_method_id=verified.payment_method_id,
        save_payment_method=verified.metadata.get('savePaymentMethod') == 'true',
        saved_method_type=PaymentMethod.TYPE_CARD,
    )


def apply_stripe_intent_event(intent, status):
    """
    Reconcile a transaction from a signed Stripe webhook payload.
    Returns the transaction, or None when the event was ignored.
    """
    transaction = payments.get_transaction_by_intent_id(intent['id'])
    if transaction is None:
        logger.warning(f"[WEBHOOK] No transaction for payment intent {intent['id']}")
        return None

    if transaction.status == status:
        logger.info(f"[WEBHOOK] Transaction {transaction.code} already {status}")
        return transaction

    if not transaction.can_transition_to(status):
        logger.warning(
            f"[WEBHOOK] Ignoring {status} for transaction {transaction.code} in status {transaction.status}"
        )
        return None

    if status == Transaction.STATUS_COMPLETED:
        try:
            verified = check_stripe_intent(intent, transaction.amount, transaction.currency)
        except PaymentVerificationError as exc:
            logger.error(f"[WEBHOOK] Intent {intent['id']} failed verification: {exc.message}")
            return None
        outcome = _outcome_from_intent(verified, status)
    else:
        outcome = PaymentOutcome(status=status)

    return reconcile_payment(outcome, transaction)


def process_paypal_payment(
    user, order_id, amount, payer_id=None, description='', is_card_payment=False,
    card_info=None, save_payment_method=False, paypal_email=None,
):
    """
    Verify a client-captured PayPal order and record it as completed.
    `user` may be None for guests; guests never get a saved payment method.
    """
    _ensure_unrecorded(order_id=order_id)
    verified = verify_paypal_order(order_id, amount)
    card_info = card_info or {}

    if is_card_payment:
        method = Transaction.METHOD_CARD_VIA_PAYPAL
        default_description = 'Credit Card Payment via PayPal'
    else:
        method = Transaction.METHOD_PAYPAL
        default_description = f"{settings.PAYMENT_DEFAULT_DESCRIPTION} via PayPal"

    outcome = PaymentOutcome(
        status=Transaction.STATUS_COMPLETED,
        amount=verified.amount,
        currency=verified.currency,
        payment_method=method,
        owner=user,
        description=description or default_description,
        card_last4=(card_info.get('last4') or '****') if is_card_payment else None,
        card_brand=(card_info.get('brand') or 'Credit Card') if is_card_payment else None,
        processor_order_id=verified.reference,
        processor_payer_id=payer_id or verified.payer_id,
        processor_account_email=paypal_email or verified.payer_email,
        save_payment_method=save_payment_method,
        saved_method_type=method,
    )
    transaction = reconcile_payment(outcome)

    logger.info(
        f"[PayPal Payment] Processed transaction {transaction.code} | "
        f"Amount: {transaction.amount} {transaction.currency} | Order ID: {order_id}"
    )
    return transaction


# ─── Guest checkout ───────────────────────────────────────────────────────────

def describe_guest_purchase(description, customer):
    summary = f"{customer['fullName']} ({customer['email']})"
    if customer.get('phone'):
        summary += f" • {customer['phone']}"
    if customer.get('address') and customer.get('city'):
        summary += f" • {customer['address']}, {customer['city']}"
        if customer.get('country'):
            summary += f", {customer['country']}"
    return f"{description or settings.PAYMENT_DEFAULT_DESCRIPTION} • Guest Checkout • {summary}"


def guest_checkout(amount, currency, payment_method, customer, description='', payment_data=None):
    """
    Record a purchase made without an account.

    Bank transfers stay "pending" until verified by hand; everything else
    is recorded "completed". Processor references in `payment_data`
    (paypalOrderId, paymentIntentId) are verified before anything is written.
    """
    payment_data = payment_data or {}
    outcome = PaymentOutcome(
        status=Transaction.STATUS_PENDING if payment_method == Transaction.METHOD_BANK else Transaction.STATUS_COMPLETED,
        amount=amount,
        currency=currency,
        payment_method=payment_method,
        description=describe_guest_purchase(description, customer),
        customer_name=customer['fullName'],
        customer_email=customer['email'],
    )

    if payment_method in (Transaction.METHOD_PAYPAL, Transaction.METHOD_CARD_VIA_PAYPAL) and payment_data.get('paypalOrderId'):
        _ensure_unrecorded(order_id=payment_data['paypalOrderId'])
        verified = verify_paypal_order(payment_data['paypalOrderId'], amount)
        outcome.amount = verified.amount
        outcome.currency = verified.currency
        outcome.processor_order_id = verified.reference
        outcome.processor_payer_id = payment_data.get('paypalPayerId') or verified.payer_id
    elif payment_method == Transaction.METHOD_STRIPE and payment_data.get('paymentIntentId'):
        _ensure_unrecorded(intent_id=payment_data['paymentIntentId'])
        verified = verify_stripe_intent(payment_data['paymentIntentId'], amount, currency)
        outcome.amount = verified.amount
        outcome.currency = verified.currency
        outcome.processor_intent_id = verified.reference
        outcome.card_brand = verified.card_brand
        outcome.card_last4 = verified.card_last4

    transaction = reconcile_payment(outcome)
    logger.info(
        f"[Guest] Checkout processed: {transaction.code} • {customer['fullName']} ({customer['email']}) • "
        f"Amount: {transaction.amount} {transaction.currency} • Method: {payment_method}"
    )
    return transaction
