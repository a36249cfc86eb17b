from decimal import Decimal
from unittest.mock import patch, MagicMock

import requests
import stripe
from django.contrib import admin
from django.core import mail
from django.test import TestCase, override_settings
from rest_framework.test import APIClient
from rest_framework import status

from apps.accounts.store import users
from .admin import TransactionAdmin, mark_failed
from . import processors
from .exceptions import DuplicatePaymentReference, InvalidTransition, PaymentVerificationError, RecordNotFound
from .models import Transaction, PaymentMethod
from .services import (
    PaymentOutcome,
    apply_stripe_intent_event,
    describe_guest_purchase,
    reconcile_payment,
    verify_paypal_order,
)
from .store import payments

CREATE_INTENT_URL = '/api/payments/create-payment-intent/'
PAYPAL_URL = '/api/payments/process-paypal-payment/'
TRANSACTIONS_URL = '/api/payments/transactions/'
UPDATE_URL = '/api/payments/update-transaction/'
METHODS_URL = '/api/payments/methods/'
GUEST_URL = '/api/payments/guest-checkout/'

PROCESSOR_SETTINGS = dict(
    STRIPE_SECRET_KEY='sk_test_123',
    PAYPAL_CLIENT_ID='paypal-client',
    PAYPAL_SECRET='paypal-secret',
    PAYPAL_API_BASE='https://api-m.sandbox.paypal.com',
)


def create_user(**kwargs):
    defaults = {
        'username': 'buyer',
        'email': 'buyer@example.com',
        'password': 'StrongPassword123!',
        'first_name': 'Bea',
        'last_name': 'Buyer',
    }
    defaults.update(kwargs)
    return users.create_user(**defaults)


def create_transaction(user=None, status=Transaction.STATUS_PROCESSING, **kwargs):
    fields = {
        'user': user,
        'amount': Decimal('25.00'),
        'currency': 'USD',
        'status': status,
        'payment_method': Transaction.METHOD_STRIPE,
    }
    fields.update(kwargs)
    return payments.create_transaction(**fields)


def paypal_response(payload, ok=True, status_code=200):
    response = MagicMock()
    response.ok = ok
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


def paypal_order(order_id='ORDER-1', status='COMPLETED', value='10.00', currency='USD'):
    return {
        'id': order_id,
        'status': status,
        'purchase_units': [{'amount': {'value': value, 'currency_code': currency}}],
        'payer': {'payer_id': 'PAYER-1', 'email_address': 'payer@example.com'},
    }


def stripe_intent(intent_id='pi_123', status='succeeded', amount=2500, save='false'):
    return {
        'id': intent_id,
        'status': status,
        'amount': amount,
        'amount_received': amount if status == 'succeeded' else 0,
        'currency': 'usd',
        'metadata': {'savePaymentMethod': save},
        'payment_method': {
            'id': 'pm_123',
            'card': {'brand': 'visa', 'last4': '4242', 'exp_month': 4, 'exp_year': 2030},
        },
    }


def stripe_intent_object(**kwargs):
    """The PaymentIntent as the SDK returns it from retrieve()."""
    return stripe.PaymentIntent.construct_from(stripe_intent(**kwargs), 'sk_test_123')


class PayPalMockMixin:
    """Patches the two PayPal HTTP calls: token POST, order GET."""

    def mock_paypal(self, order):
        token = patch(
            'apps.payments.processors.requests.post',
            return_value=paypal_response({'access_token': 'A21-token'}),
        )
        lookup = patch('apps.payments.processors.requests.get', return_value=paypal_response(order))
        self.mock_token = token.start()
        self.mock_order = lookup.start()
        self.addCleanup(token.stop)
        self.addCleanup(lookup.stop)


# ─── Store ────────────────────────────────────────────────────────────────────

class TransactionStoreTests(TestCase):

    def setUp(self):
        self.user = create_user()

    def test_code_format(self):
        transaction = create_transaction(self.user)
        self.assertRegex(transaction.code, r'^TRX-\d{5}-\d{5}$')

    def test_codes_are_unique(self):
        codes = {create_transaction(self.user).code for _ in range(50)}
        self.assertEqual(len(codes), 50)

    def test_code_collision_is_regenerated(self):
        existing = create_transaction(self.user)
        with patch('apps.payments.store.generate_transaction_code',
                   side_effect=[existing.code, existing.code, 'TRX-12345-00001']):
            self.assertEqual(payments.new_transaction_code(), 'TRX-12345-00001')

    def test_code_allocation_gives_up(self):
        existing = create_transaction(self.user)
        with patch('apps.payments.store.generate_transaction_code', return_value=existing.code):
            with self.assertRaises(RuntimeError):
                payments.new_transaction_code()

    def test_transactions_newest_first(self):
        first = create_transaction(self.user)
        second = create_transaction(self.user)
        third = create_transaction(self.user)
        ids = [t.pk for t in payments.get_transactions(self.user.pk)]
        self.assertEqual(ids, [third.pk, second.pk, first.pk])

    def test_transactions_are_per_owner(self):
        other = create_user(username='other', email='other@example.com')
        mine = create_transaction(self.user)
        create_transaction(other)
        guest = create_transaction(None, customer_email='guest@example.com')

        self.assertEqual([t.pk for t in payments.get_transactions(self.user.pk)], [mine.pk])
        self.assertEqual([t.pk for t in payments.get_transactions(0)], [guest.pk])
        self.assertEqual(payments.get_transactions(9999), [])

    def test_lookup_by_code_and_intent(self):
        transaction = create_transaction(self.user, processor_intent_id='pi_lookup')
        self.assertEqual(payments.get_transaction_by_code(transaction.code).pk, transaction.pk)
        self.assertEqual(payments.get_transaction_by_intent_id('pi_lookup').pk, transaction.pk)
        self.assertIsNone(payments.get_transaction(9999))

    def test_processor_reference_recorded_once(self):
        create_transaction(self.user, processor_order_id='ORDER-DUP')
        with self.assertRaises(DuplicatePaymentReference):
            create_transaction(None, processor_order_id='ORDER-DUP')
        create_transaction(self.user, processor_intent_id='pi_dup')
        with self.assertRaises(DuplicatePaymentReference):
            create_transaction(self.user, processor_intent_id='pi_dup')
        self.assertEqual(Transaction.objects.count(), 2)

    def test_create_rejects_unknown_status(self):
        with self.assertRaises(InvalidTransition):
            create_transaction(self.user, status='refunded')

    def test_update_unknown_transaction(self):
        with self.assertRaises(RecordNotFound):
            payments.update_transaction_status(9999, Transaction.STATUS_COMPLETED)

    def test_update_details_rejects_other_fields(self):
        transaction = create_transaction(self.user)
        with self.assertRaises(ValueError):
            payments.update_transaction_details(transaction.pk, amount=Decimal('1.00'))


class StateMachineTests(TestCase):

    def setUp(self):
        self.user = create_user()

    def test_legal_transitions(self):
        transaction = create_transaction(self.user)
        transaction = payments.update_transaction_status(transaction.pk, Transaction.STATUS_PENDING)
        self.assertEqual(transaction.status, Transaction.STATUS_PENDING)
        transaction = payments.update_transaction_status(transaction.pk, Transaction.STATUS_COMPLETED)
        self.assertEqual(transaction.status, Transaction.STATUS_COMPLETED)
        self.assertTrue(transaction.is_terminal)

    def test_terminal_status_cannot_change(self):
        transaction = create_transaction(self.user, status=Transaction.STATUS_COMPLETED)
        with self.assertRaises(InvalidTransition) as ctx:
            payments.update_transaction_status(transaction.pk, Transaction.STATUS_FAILED)
        self.assertEqual(ctx.exception.details['currentStatus'], Transaction.STATUS_COMPLETED)
        transaction.refresh_from_db()
        self.assertEqual(transaction.status, Transaction.STATUS_COMPLETED)

    def test_pending_cannot_go_back_to_processing(self):
        transaction = create_transaction(self.user, status=Transaction.STATUS_PENDING)
        with self.assertRaises(InvalidTransition):
            payments.update_transaction_status(transaction.pk, Transaction.STATUS_PROCESSING)

    def test_same_status_is_noop(self):
        transaction = create_transaction(self.user, status=Transaction.STATUS_FAILED)
        again = payments.update_transaction_status(transaction.pk, Transaction.STATUS_FAILED)
        self.assertEqual(again.status, Transaction.STATUS_FAILED)


class PaymentMethodStoreTests(TestCase):

    def setUp(self):
        self.user = create_user()
        self.other = create_user(username='other', email='other@example.com')

    def test_set_default_twice_leaves_one_default(self):
        first = payments.create_payment_method(self.user.pk, PaymentMethod.TYPE_CARD, card_last4='1111')
        second = payments.create_payment_method(self.user.pk, PaymentMethod.TYPE_CARD, card_last4='2222')

        self.assertTrue(payments.set_default_payment_method(self.user.pk, first.pk))
        self.assertTrue(payments.set_default_payment_method(self.user.pk, second.pk))

        defaults = [m.pk for m in payments.get_payment_methods(self.user.pk) if m.is_default]
        self.assertEqual(defaults, [second.pk])

    def test_default_listed_first(self):
        payments.create_payment_method(self.user.pk, PaymentMethod.TYPE_CARD)
        default = payments.create_payment_method(self.user.pk, PaymentMethod.TYPE_PAYPAL, is_default=True)
        self.assertEqual(payments.get_payment_methods(self.user.pk)[0].pk, default.pk)

    def test_set_default_on_foreign_method_changes_nothing(self):
        mine = payments.create_payment_method(self.user.pk, PaymentMethod.TYPE_CARD, is_default=True)
        theirs = payments.create_payment_method(self.other.pk, PaymentMethod.TYPE_CARD)

        self.assertFalse(payments.set_default_payment_method(self.user.pk, theirs.pk))
        mine.refresh_from_db()
        theirs.refresh_from_db()
        self.assertTrue(mine.is_default)
        self.assertFalse(theirs.is_default)

    def test_delete_reports_whether_removed(self):
        method = payments.create_payment_method(self.user.pk, PaymentMethod.TYPE_CARD)
        self.assertTrue(payments.delete_payment_method(method.pk))
        self.assertFalse(payments.delete_payment_method(method.pk))


# ─── Verifier ─────────────────────────────────────────────────────────────────

@override_settings(**PROCESSOR_SETTINGS)
class StripeRetrieveTests(TestCase):

    @patch('apps.payments.processors.stripe.PaymentIntent.retrieve')
    def test_retrieve_returns_plain_dict(self, mock_retrieve):
        mock_retrieve.return_value = stripe_intent_object(intent_id='pi_plain')
        intent = processors.retrieve_payment_intent('pi_plain')

        self.assertIs(type(intent), dict)
        self.assertIs(type(intent['payment_method']), dict)
        self.assertEqual(intent.get('currency'), 'usd')
        self.assertEqual(intent['payment_method']['card']['last4'], '4242')
        mock_retrieve.assert_called_once_with('pi_plain', expand=['payment_method'])


@override_settings(**PROCESSOR_SETTINGS)
class PayPalVerifierTests(PayPalMockMixin, TestCase):

    def test_completed_order_matches(self):
        self.mock_paypal(paypal_order(value='10.00'))
        verified = verify_paypal_order('ORDER-1', Decimal('10.00'))
        self.assertEqual(verified.amount, Decimal('10.00'))
        self.assertEqual(verified.payer_id, 'PAYER-1')
        self.mock_token.assert_called_once()
        url = self.mock_order.call_args[0][0]
        self.assertEqual(url, 'https://api-m.sandbox.paypal.com/v2/checkout/orders/ORDER-1')
        self.assertEqual(self.mock_order.call_args[1]['headers']['Authorization'], 'Bearer A21-token')

    def test_one_cent_difference_is_tolerated(self):
        self.mock_paypal(paypal_order(value='10.01'))
        verified = verify_paypal_order('ORDER-1', Decimal('10.00'))
        self.assertEqual(verified.amount, Decimal('10.01'))

    def test_pending_order_is_rejected(self):
        self.mock_paypal(paypal_order(status='PENDING'))
        with self.assertRaises(PaymentVerificationError) as ctx:
            verify_paypal_order('ORDER-1', Decimal('10.00'))
        self.assertEqual(ctx.exception.message, 'PayPal payment not completed')
        self.assertEqual(ctx.exception.details['status'], 'PENDING')

    def test_amount_mismatch_is_rejected(self):
        self.mock_paypal(paypal_order(value='10.02'))
        with self.assertRaises(PaymentVerificationError) as ctx:
            verify_paypal_order('ORDER-1', Decimal('10.00'))
        self.assertEqual(ctx.exception.details['paypalAmount'], '10.02')


# ─── Reconciler ───────────────────────────────────────────────────────────────

class ReconcilerTests(TestCase):

    def setUp(self):
        self.user = create_user()

    def test_completion_sends_one_receipt(self):
        transaction = create_transaction(self.user)
        reconcile_payment(PaymentOutcome(status=Transaction.STATUS_COMPLETED), transaction)
        reconcile_payment(PaymentOutcome(status=Transaction.STATUS_COMPLETED), transaction)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(transaction.code, mail.outbox[0].subject)
        self.assertEqual(mail.outbox[0].to, ['buyer@example.com'])

    def test_failure_sends_failed_email(self):
        transaction = create_transaction(self.user)
        reconcile_payment(PaymentOutcome(status=Transaction.STATUS_FAILED), transaction)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('Failed', mail.outbox[0].subject)

    def test_fills_missing_details(self):
        transaction = create_transaction(self.user)
        updated = reconcile_payment(PaymentOutcome(
            status=Transaction.STATUS_COMPLETED,
            card_last4='4242',
            card_brand='visa',
            processor_intent_id='pi_fill',
        ), transaction)
        self.assertEqual(updated.card_last4, '4242')
        self.assertEqual(updated.processor_intent_id, 'pi_fill')

    def test_saves_payment_method_for_owner(self):
        transaction = create_transaction(self.user)
        reconcile_payment(PaymentOutcome(
            status=Transaction.STATUS_COMPLETED,
            card_last4='4242',
            card_brand='visa',
            save_payment_method=True,
        ), transaction)
        self.assertEqual(PaymentMethod.objects.filter(user=self.user).count(), 1)

    def test_guest_never_saves_payment_method(self):
        reconcile_payment(PaymentOutcome(
            status=Transaction.STATUS_COMPLETED,
            amount=Decimal('5.00'),
            payment_method=Transaction.METHOD_PAYPAL,
            customer_name='Guest',
            customer_email='guest@example.com',
            save_payment_method=True,
        ))
        self.assertFalse(PaymentMethod.objects.exists())
        self.assertEqual(mail.outbox[0].to, ['guest@example.com'])


# ─── HTTP: intents and confirmation ───────────────────────────────────────────

@override_settings(**PROCESSOR_SETTINGS)
class PaymentIntentApiTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = create_user()
        self.url = f'{CREATE_INTENT_URL}?userId={self.user.pk}'

    def test_requires_user(self):
        res = self.client.post(CREATE_INTENT_URL, {'amount': '25.00', 'paymentMethod': 'stripe'})
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    @patch('apps.payments.processors.stripe.PaymentIntent.retrieve')
    @patch('apps.payments.processors.stripe.PaymentIntent.create')
    def test_card_payment_end_to_end(self, mock_create, mock_retrieve):
        mock_create.return_value = {'id': 'pi_123', 'client_secret': 'pi_123_secret_abc'}
        mock_retrieve.return_value = stripe_intent_object()

        res = self.client.post(self.url, {
            'amount': '25.00',
            'currency': 'usd',
            'paymentMethod': 'stripe',
            'description': 'Order #1',
        })
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['clientSecret'], 'pi_123_secret_abc')
        self.assertEqual(res.data['transaction']['status'], 'processing')
        self.assertEqual(res.data['transaction']['currency'], 'USD')
        self.assertEqual(res.data['transactionId'], res.data['transaction']['transactionId'])

        params = mock_create.call_args[1]
        self.assertEqual(params['amount'], 2500)
        self.assertEqual(params['currency'], 'usd')
        self.assertEqual(params['metadata']['transactionId'], res.data['transactionId'])
        self.assertEqual(params['metadata']['userId'], str(self.user.pk))

        res = self.client.post(f'{UPDATE_URL}?userId={self.user.pk}', {
            'transactionId': res.data['transaction']['id'],
            'status': 'completed',
        })
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['transaction']['status'], 'completed')
        self.assertEqual(res.data['transaction']['processorIntentId'], 'pi_123')
        self.assertEqual(res.data['transaction']['cardLast4'], '4242')
        mock_retrieve.assert_called_once_with('pi_123', expand=['payment_method'])

    @patch('apps.payments.processors.stripe.Customer.create')
    @patch('apps.payments.processors.stripe.PaymentIntent.create')
    def test_save_card_attaches_billing_customer(self, mock_create, mock_customer):
        mock_customer.return_value = {'id': 'cus_123'}
        mock_create.return_value = {'id': 'pi_456', 'client_secret': 'secret'}

        res = self.client.post(self.url, {'amount': '10.00', 'paymentMethod': 'stripe', 'saveCard': True})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(mock_create.call_args[1]['customer'], 'cus_123')
        self.assertEqual(mock_create.call_args[1]['setup_future_usage'], 'off_session')
        self.user.refresh_from_db()
        self.assertEqual(self.user.external_billing_id, 'cus_123')

    @patch('apps.payments.processors.stripe.PaymentIntent.create')
    def test_processor_error_writes_nothing(self, mock_create):
        mock_create.side_effect = stripe.StripeError('Your card was declined.')
        res = self.client.post(self.url, {'amount': '25.00', 'paymentMethod': 'stripe'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data['message'], 'Payment processor error')
        self.assertFalse(Transaction.objects.exists())

    @override_settings(STRIPE_SECRET_KEY='')
    def test_missing_stripe_key(self):
        res = self.client.post(self.url, {'amount': '25.00', 'paymentMethod': 'stripe'})
        self.assertEqual(res.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertIn('Missing Stripe API key', res.data['message'])
        self.assertFalse(Transaction.objects.exists())

    def test_amount_below_minimum(self):
        res = self.client.post(self.url, {'amount': '0.10', 'paymentMethod': 'stripe'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('amount', res.data)


@override_settings(**PROCESSOR_SETTINGS)
class UpdateTransactionApiTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = create_user()
        self.other = create_user(username='other', email='other@example.com')
        self.url = f'{UPDATE_URL}?userId={self.user.pk}'

    def test_unknown_transaction(self):
        res = self.client.post(self.url, {'transactionId': 9999, 'status': 'completed'})
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_foreign_transaction(self):
        transaction = create_transaction(self.other)
        res = self.client.post(self.url, {'transactionId': transaction.pk, 'status': 'failed'})
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)
        transaction.refresh_from_db()
        self.assertEqual(transaction.status, Transaction.STATUS_PROCESSING)

    def test_mark_failed(self):
        transaction = create_transaction(self.user)
        res = self.client.post(self.url, {'transactionId': transaction.pk, 'status': 'failed'})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['transaction']['status'], 'failed')

    def test_illegal_transition(self):
        transaction = create_transaction(self.user, status=Transaction.STATUS_COMPLETED)
        res = self.client.post(self.url, {'transactionId': transaction.pk, 'status': 'pending'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data['currentStatus'], 'completed')

    def test_unknown_status_value(self):
        transaction = create_transaction(self.user)
        res = self.client.post(self.url, {'transactionId': transaction.pk, 'status': 'refunded'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('apps.payments.processors.stripe.PaymentIntent.retrieve')
    def test_unconfirmed_card_payment_is_not_completed(self, mock_retrieve):
        mock_retrieve.return_value = stripe_intent_object(status='requires_payment_method')
        transaction = create_transaction(self.user, processor_intent_id='pi_123')
        res = self.client.post(self.url, {'transactionId': transaction.pk, 'status': 'completed'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data['message'], 'Card payment not completed')
        transaction.refresh_from_db()
        self.assertEqual(transaction.status, Transaction.STATUS_PROCESSING)

    @patch('apps.payments.processors.stripe.PaymentIntent.retrieve')
    def test_saved_card_from_intent_metadata(self, mock_retrieve):
        mock_retrieve.return_value = stripe_intent_object(save='true')
        transaction = create_transaction(self.user, processor_intent_id='pi_123')
        self.client.post(self.url, {'transactionId': transaction.pk, 'status': 'completed'})
        method = PaymentMethod.objects.get(user=self.user)
        self.assertEqual(method.card_last4, '4242')
        self.assertEqual(method.expiry_month, '04')
        self.assertEqual(method.processor_payment_method_id, 'pm_123')


# ─── HTTP: PayPal ─────────────────────────────────────────────────────────────

@override_settings(**PROCESSOR_SETTINGS)
class PayPalPaymentApiTests(PayPalMockMixin, TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = create_user()
        self.url = f'{PAYPAL_URL}?userId={self.user.pk}'

    def test_verified_payment_is_completed(self):
        self.mock_paypal(paypal_order(value='10.00'))
        res = self.client.post(self.url, {'orderID': 'ORDER-1', 'payerID': 'PAYER-9', 'amount': '10.00'})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertTrue(res.data['success'])
        transaction = res.data['transaction']
        self.assertEqual(transaction['status'], 'completed')
        self.assertEqual(transaction['paymentMethod'], 'paypal')
        self.assertEqual(transaction['processorOrderId'], 'ORDER-1')
        self.assertEqual(transaction['processorPayerId'], 'PAYER-9')
        self.assertEqual(transaction['userId'], self.user.pk)

    def test_processor_amount_is_recorded(self):
        self.mock_paypal(paypal_order(value='10.01'))
        res = self.client.post(self.url, {'orderID': 'ORDER-1', 'amount': '10.00'})
        self.assertEqual(res.data['transaction']['amount'], '10.01')

    def test_pending_order_leaves_no_completed_transaction(self):
        self.mock_paypal(paypal_order(status='PENDING'))
        res = self.client.post(self.url, {'orderID': 'ORDER-1', 'amount': '10.00'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data['message'], 'PayPal payment not completed')
        self.assertFalse(Transaction.objects.filter(status=Transaction.STATUS_COMPLETED).exists())

    def test_amount_mismatch_leaves_no_completed_transaction(self):
        self.mock_paypal(paypal_order(value='10.02'))
        res = self.client.post(self.url, {'orderID': 'ORDER-1', 'amount': '10.00'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data['paypalAmount'], '10.02')
        self.assertEqual(res.data['requestAmount'], '10.00')
        self.assertFalse(Transaction.objects.exists())

    def test_card_via_paypal_with_saved_method(self):
        self.mock_paypal(paypal_order(value='10.00'))
        res = self.client.post(self.url, {
            'orderID': 'ORDER-1',
            'amount': '10.00',
            'isCardPayment': True,
            'cardInfo': {'last4': '1881', 'brand': 'amex'},
            'savePaymentMethod': True,
        }, format='json')
        self.assertEqual(res.data['transaction']['paymentMethod'], 'card_via_paypal')
        self.assertEqual(res.data['transaction']['cardLast4'], '1881')
        self.assertEqual(res.data['transaction']['description'], 'Credit Card Payment via PayPal')
        method = PaymentMethod.objects.get(user=self.user)
        self.assertEqual(method.type, PaymentMethod.TYPE_CARD_VIA_PAYPAL)
        self.assertEqual(method.processor_account_email, 'payer@example.com')

    def test_guest_paypal_payment(self):
        self.mock_paypal(paypal_order(value='10.00'))
        res = self.client.post(PAYPAL_URL, {'orderID': 'ORDER-1', 'amount': '10.00', 'savePaymentMethod': True})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['transaction']['userId'], 0)
        self.assertFalse(PaymentMethod.objects.exists())

    def test_paypal_api_error(self):
        self.mock_paypal({})
        self.mock_order.return_value = paypal_response({'name': 'RESOURCE_NOT_FOUND'}, ok=False, status_code=404)
        res = self.client.post(self.url, {'orderID': 'MISSING', 'amount': '10.00'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data['message'], 'PayPal API error')
        self.assertEqual(res.data['status'], 404)

    def test_paypal_unreachable(self):
        self.mock_paypal({})
        self.mock_token.side_effect = requests.ConnectionError('connection refused')
        res = self.client.post(self.url, {'orderID': 'ORDER-1', 'amount': '10.00'})
        self.assertEqual(res.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(res.data['message'], 'Error verifying PayPal payment')

    @override_settings(PAYPAL_CLIENT_ID='', PAYPAL_SECRET='')
    def test_missing_paypal_credentials(self):
        res = self.client.post(self.url, {'orderID': 'ORDER-1', 'amount': '10.00'})
        self.assertEqual(res.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertIn('Missing PayPal API credentials', res.data['message'])

    def test_order_can_only_be_recorded_once(self):
        self.mock_paypal(paypal_order(value='10.00'))
        first = self.client.post(self.url, {'orderID': 'ORDER-1', 'amount': '10.00'})
        self.assertEqual(first.status_code, status.HTTP_200_OK)

        for _ in range(2):
            res = self.client.post(self.url, {'orderID': 'ORDER-1', 'amount': '10.00'})
            self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertEqual(res.data['message'], 'Payment has already been recorded')
        self.assertEqual(Transaction.objects.filter(processor_order_id='ORDER-1').count(), 1)
        self.assertEqual(self.mock_order.call_count, 1)

    def test_zero_amount_is_rejected(self):
        res = self.client.post(self.url, {'orderID': 'ORDER-1', 'amount': '0'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('amount', res.data)

    def test_order_id_required(self):
        res = self.client.post(self.url, {'amount': '10.00'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('orderID', res.data)


# ─── HTTP: history and payment methods ────────────────────────────────────────

class TransactionListApiTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = create_user()

    def test_lists_own_transactions(self):
        older = create_transaction(self.user)
        newer = create_transaction(self.user)
        create_transaction(None)
        res = self.client.get(f'{TRANSACTIONS_URL}?userId={self.user.pk}')
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual([t['id'] for t in res.data['transactions']], [newer.pk, older.pk])

    def test_guest_listing(self):
        create_transaction(self.user)
        guest = create_transaction(None)
        res = self.client.get(f'{TRANSACTIONS_URL}?userId=0')
        self.assertEqual([t['id'] for t in res.data['transactions']], [guest.pk])
        self.assertEqual(res.data['transactions'][0]['userId'], 0)


class PaymentMethodApiTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = create_user()
        self.other = create_user(username='other', email='other@example.com')
        self.url = f'{METHODS_URL}?userId={self.user.pk}'

    def test_add_and_list(self):
        res = self.client.post(self.url, {
            'type': 'card', 'cardLast4': '4242', 'cardBrand': 'visa',
            'expiryMonth': '12', 'expiryYear': '2030', 'isDefault': True,
        })
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertTrue(res.data['paymentMethod']['isDefault'])
        self.assertEqual(res.data['paymentMethod']['userId'], self.user.pk)

        res = self.client.get(self.url)
        self.assertEqual(len(res.data['paymentMethods']), 1)

    def test_type_required(self):
        res = self.client.post(self.url, {'cardLast4': '4242'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('type', res.data)

    def test_second_default_replaces_first(self):
        self.client.post(self.url, {'type': 'card', 'isDefault': True})
        self.client.post(self.url, {'type': 'paypal', 'isDefault': True})
        defaults = PaymentMethod.objects.filter(user=self.user, is_default=True)
        self.assertEqual(defaults.count(), 1)
        self.assertEqual(defaults.get().type, 'paypal')

    def test_set_default(self):
        first = payments.create_payment_method(self.user.pk, 'card', is_default=True)
        second = payments.create_payment_method(self.user.pk, 'paypal')
        res = self.client.post(f'{METHODS_URL}{second.pk}/set-default/?userId={self.user.pk}')
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertFalse(first.is_default)
        self.assertTrue(second.is_default)

    def test_set_default_on_foreign_method(self):
        theirs = payments.create_payment_method(self.other.pk, 'card')
        res = self.client.post(f'{METHODS_URL}{theirs.pk}/set-default/?userId={self.user.pk}')
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_delete(self):
        method = payments.create_payment_method(self.user.pk, 'card')
        res = self.client.delete(f'{METHODS_URL}{method.pk}/?userId={self.user.pk}')
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertFalse(PaymentMethod.objects.exists())

    def test_delete_foreign_method(self):
        theirs = payments.create_payment_method(self.other.pk, 'card')
        res = self.client.delete(f'{METHODS_URL}{theirs.pk}/?userId={self.user.pk}')
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(PaymentMethod.objects.filter(pk=theirs.pk).exists())

    def test_delete_unknown_method(self):
        res = self.client.delete(f'{METHODS_URL}9999/?userId={self.user.pk}')
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)


# ─── HTTP: guest checkout ─────────────────────────────────────────────────────

@override_settings(**PROCESSOR_SETTINGS)
class GuestCheckoutApiTests(PayPalMockMixin, TestCase):

    def setUp(self):
        self.client = APIClient()

    def payload(self, **kwargs):
        data = {
            'amount': '50.00',
            'currency': 'USD',
            'paymentMethod': 'bank',
            'customerInfo': {'fullName': 'Jane Doe', 'email': 'jane@example.com'},
        }
        data.update(kwargs)
        return data

    def test_bank_transfer_is_pending(self):
        res = self.client.post(GUEST_URL, self.payload())
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertTrue(res.data['success'])
        transaction = res.data['transaction']
        self.assertEqual(transaction['userId'], 0)
        self.assertEqual(transaction['status'], 'pending')
        self.assertIn('Jane Doe', transaction['description'])
        self.assertIn('jane@example.com', transaction['description'])
        self.assertEqual(res.data['customerInfo'], {'name': 'Jane Doe', 'email': 'jane@example.com'})
        self.assertEqual(len(mail.outbox), 0)

    def test_missing_email_is_rejected(self):
        res = self.client.post(GUEST_URL, self.payload(customerInfo={'fullName': 'Jane Doe'}))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Transaction.objects.exists())

    def test_missing_customer_info_is_rejected(self):
        data = self.payload()
        del data['customerInfo']
        res = self.client.post(GUEST_URL, data)
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Transaction.objects.exists())

    def test_paypal_guest_is_completed_and_receipted(self):
        self.mock_paypal(paypal_order(order_id='ORDER-G', value='50.00'))
        res = self.client.post(GUEST_URL, self.payload(
            paymentMethod='paypal',
            paymentData={'paypalOrderId': 'ORDER-G'},
        ))
        self.assertEqual(res.data['transaction']['status'], 'completed')
        self.assertEqual(res.data['transaction']['processorOrderId'], 'ORDER-G')
        self.assertEqual(mail.outbox[0].to, ['jane@example.com'])

    def test_paypal_guest_verification_failure(self):
        self.mock_paypal(paypal_order(status='PENDING', value='50.00'))
        res = self.client.post(GUEST_URL, self.payload(
            paymentMethod='paypal',
            paymentData={'paypalOrderId': 'ORDER-G'},
        ))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Transaction.objects.exists())

    @patch('apps.payments.processors.stripe.PaymentIntent.retrieve')
    def test_stripe_guest_is_verified(self, mock_retrieve):
        mock_retrieve.return_value = stripe_intent_object(amount=5000)
        res = self.client.post(GUEST_URL, self.payload(
            paymentMethod='stripe',
            paymentData={'paymentIntentId': 'pi_123'},
        ))
        self.assertEqual(res.data['transaction']['status'], 'completed')
        self.assertEqual(res.data['transaction']['processorIntentId'], 'pi_123')
        self.assertEqual(res.data['transaction']['cardBrand'], 'visa')

    @patch('apps.payments.processors.stripe.PaymentIntent.retrieve')
    def test_stripe_guest_records_processor_amount(self, mock_retrieve):
        mock_retrieve.return_value = stripe_intent_object(amount=5001)
        res = self.client.post(GUEST_URL, self.payload(
            paymentMethod='stripe',
            paymentData={'paymentIntentId': 'pi_123'},
        ))
        self.assertEqual(res.data['transaction']['amount'], '50.01')
        self.assertEqual(res.data['transaction']['currency'], 'USD')

    @patch('apps.payments.processors.stripe.PaymentIntent.retrieve')
    def test_stripe_guest_currency_mismatch(self, mock_retrieve):
        mock_retrieve.return_value = stripe_intent_object(amount=2500)
        res = self.client.post(GUEST_URL, self.payload(
            amount='25.00',
            currency='KWD',
            paymentMethod='stripe',
            paymentData={'paymentIntentId': 'pi_123'},
        ))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data['message'], "Card payment currency doesn't match")
        self.assertEqual(res.data['processorCurrency'], 'USD')
        self.assertFalse(Transaction.objects.exists())

    @patch('apps.payments.processors.stripe.PaymentIntent.retrieve')
    def test_guest_cannot_reuse_recorded_intent(self, mock_retrieve):
        mock_retrieve.return_value = stripe_intent_object(amount=5000)
        owner = create_user()
        create_transaction(owner, status=Transaction.STATUS_COMPLETED, processor_intent_id='pi_123')

        res = self.client.post(GUEST_URL, self.payload(
            paymentMethod='stripe',
            paymentData={'paymentIntentId': 'pi_123'},
        ))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(res.data['message'], 'Payment has already been recorded')
        self.assertEqual(Transaction.objects.filter(processor_intent_id='pi_123').count(), 1)
        mock_retrieve.assert_not_called()

    def test_guest_cannot_reuse_recorded_order(self):
        self.mock_paypal(paypal_order(order_id='ORDER-G', value='50.00'))
        create_transaction(None, status=Transaction.STATUS_COMPLETED, processor_order_id='ORDER-G')

        res = self.client.post(GUEST_URL, self.payload(
            paymentMethod='paypal',
            paymentData={'paypalOrderId': 'ORDER-G'},
        ))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Transaction.objects.count(), 1)
        self.mock_order.assert_not_called()

    def test_describe_guest_purchase(self):
        description = describe_guest_purchase('Order #7', {
            'fullName': 'Jane Doe',
            'email': 'jane@example.com',
            'phone': '555-0100',
            'address': '1 Main St',
            'city': 'Springfield',
            'country': 'US',
        })
        self.assertEqual(
            description,
            'Order #7 • Guest Checkout • Jane Doe (jane@example.com) • 555-0100 • 1 Main St, Springfield, US',
        )


# ─── Webhook reconciliation ───────────────────────────────────────────────────

class StripeIntentEventTests(TestCase):

    def setUp(self):
        self.user = create_user()

    def test_unknown_intent_is_ignored(self):
        self.assertIsNone(apply_stripe_intent_event(stripe_intent('pi_unknown'), Transaction.STATUS_COMPLETED))

    def test_amount_mismatch_is_ignored(self):
        transaction = create_transaction(self.user, processor_intent_id='pi_123')
        result = apply_stripe_intent_event(stripe_intent(amount=9900), Transaction.STATUS_COMPLETED)
        self.assertIsNone(result)
        transaction.refresh_from_db()
        self.assertEqual(transaction.status, Transaction.STATUS_PROCESSING)

    def test_failure_after_completion_is_ignored(self):
        create_transaction(self.user, status=Transaction.STATUS_COMPLETED, processor_intent_id='pi_123')
        self.assertIsNone(apply_stripe_intent_event(stripe_intent(status='canceled'), Transaction.STATUS_FAILED))


class TransactionAdminActionTests(TestCase):

    def setUp(self):
        self.user = create_user()
        self.model_admin = TransactionAdmin(Transaction, admin.site)
        self.model_admin.message_user = MagicMock()

    def test_mark_failed_goes_through_state_machine(self):
        open_one = create_transaction(self.user)
        closed = create_transaction(self.user, status=Transaction.STATUS_COMPLETED)
        mark_failed(self.model_admin, None, Transaction.objects.filter(pk__in=[open_one.pk, closed.pk]))

        open_one.refresh_from_db()
        closed.refresh_from_db()
        self.assertEqual(open_one.status, Transaction.STATUS_FAILED)
        self.assertEqual(closed.status, Transaction.STATUS_COMPLETED)
        self.assertEqual(self.model_admin.message_user.call_count, 2)
        self.assertEqual(len(mail.outbox), 1)
