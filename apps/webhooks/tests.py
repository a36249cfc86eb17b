from decimal import Decimal
from unittest.mock import patch

import stripe
from django.core import mail
from django.test import TestCase, Client, override_settings

from apps.accounts.store import users
from apps.payments.models import Transaction
from apps.payments.store import payments

WEBHOOK_URL = '/api/webhooks/stripe/'


# construct_event hands back a StripeObject, not a dict
def intent_event(event_type, intent_id='pi_hook', status='succeeded', amount=1500):
    payload = {
        'id': 'evt_123',
        'type': event_type,
        'data': {
            'object': {
                'id': intent_id,
                'status': status,
                'amount': amount,
                'amount_received': amount if status == 'succeeded' else 0,
                'currency': 'usd',
                'metadata': {},
                'payment_method': 'pm_hook',
                'last_payment_error': {'message': 'Card declined'} if status != 'succeeded' else None,
            },
        },
    }
    return stripe.Event.construct_from(payload, 'sk_test_123')


@override_settings(STRIPE_SECRET_KEY='sk_test_123', STRIPE_WEBHOOK_SECRET='whsec_test')
class StripeWebhookTests(TestCase):

    def setUp(self):
        self.client = Client()
        self.user = users.create_user(username='hook', email='hook@example.com', password='StrongPassword123!')
        self.transaction = payments.create_transaction(
            user=self.user,
            amount=Decimal('15.00'),
            currency='USD',
            status=Transaction.STATUS_PROCESSING,
            payment_method=Transaction.METHOD_STRIPE,
            processor_intent_id='pi_hook',
        )

    def post(self):
        return self.client.post(
            WEBHOOK_URL, data='{}', content_type='application/json',
            HTTP_STRIPE_SIGNATURE='t=1,v1=signature',
        )

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_succeeded_completes_transaction(self, mock_construct):
        mock_construct.return_value = intent_event('payment_intent.succeeded')
        res = self.post()
        self.assertEqual(res.status_code, 200)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)
        mock_construct.assert_called_once_with(b'{}', 't=1,v1=signature', 'whsec_test')

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_redelivery_is_idempotent(self, mock_construct):
        mock_construct.return_value = intent_event('payment_intent.succeeded')
        self.post()
        res = self.post()
        self.assertEqual(res.status_code, 200)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)
        self.assertEqual(len(mail.outbox), 1)

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_payment_failed_fails_transaction(self, mock_construct):
        mock_construct.return_value = intent_event('payment_intent.payment_failed', status='requires_payment_method')
        self.post()
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_FAILED)

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_failure_after_success_is_ignored(self, mock_construct):
        mock_construct.return_value = intent_event('payment_intent.succeeded')
        self.post()
        mock_construct.return_value = intent_event('payment_intent.canceled', status='canceled')
        res = self.post()
        self.assertEqual(res.status_code, 200)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_amount_mismatch_is_not_completed(self, mock_construct):
        mock_construct.return_value = intent_event('payment_intent.succeeded', amount=100)
        self.post()
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_PROCESSING)

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_unknown_intent_is_acknowledged(self, mock_construct):
        mock_construct.return_value = intent_event('payment_intent.succeeded', intent_id='pi_other')
        res = self.post()
        self.assertEqual(res.status_code, 200)

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_unhandled_event_type(self, mock_construct):
        mock_construct.return_value = intent_event('charge.refunded')
        res = self.post()
        self.assertEqual(res.status_code, 200)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_PROCESSING)

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_bad_signature(self, mock_construct):
        mock_construct.side_effect = stripe.SignatureVerificationError('No signatures found', 't=1,v1=signature')
        res = self.post()
        self.assertEqual(res.status_code, 400)

    @patch('apps.webhooks.views.stripe.Webhook.construct_event')
    def test_invalid_payload(self, mock_construct):
        mock_construct.side_effect = ValueError('Invalid payload')
        res = self.post()
        self.assertEqual(res.status_code, 400)

    @override_settings(STRIPE_WEBHOOK_SECRET='')
    def test_missing_secret(self):
        res = self.post()
        self.assertEqual(res.status_code, 500)

    def test_get_not_allowed(self):
        res = self.client.get(WEBHOOK_URL)
        self.assertEqual(res.status_code, 405)
