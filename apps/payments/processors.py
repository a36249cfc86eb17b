"""
Clients for the external payment processors.

Stripe is called through the official SDK; PayPal through its Orders
REST API with an OAuth2 client-credentials token. Credentials are read
from settings on every call and their absence is a configuration error,
never a soft fallback.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

import requests
import stripe
from django.conf import settings

from .exceptions import ProcessorConfigurationError, ProcessorError

logger = logging.getLogger(__name__)

# Currencies Stripe charges in whole units
ZERO_DECIMAL_CURRENCIES = {
    'BIF', 'CLP', 'DJF', 'GNF', 'JPY', 'KMF', 'KRW', 'MGA',
    'PYG', 'RWF', 'UGX', 'VND', 'VUV', 'XAF', 'XOF', 'XPF',
}


def to_minor_units(amount, currency):
    factor = 1 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 100
    return int((Decimal(amount) * factor).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(units, currency):
    factor = 1 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 100
    return (Decimal(units) / factor).quantize(Decimal('0.01'))


# ─── Stripe ───────────────────────────────────────────────────────────────────

def _configure_stripe():
    if not settings.STRIPE_SECRET_KEY:
        logger.error("[Stripe] Missing STRIPE_SECRET_KEY setting")
        raise ProcessorConfigurationError('Payment processor configuration error: Missing Stripe API key')
    stripe.api_key = settings.STRIPE_SECRET_KEY


def _stripe_error(exc):
    return exc.user_message or str(exc)


def create_payment_intent(amount, currency, description, metadata, customer=None, save_card=False):
    """Create a PaymentIntent for `amount` (major units) and return it."""
    _configure_stripe()

    params = {
        'amount': to_minor_units(amount, currency),
        'currency': currency.lower(),
        'description': description,
        'metadata': metadata,
    }
    if customer:
        params['customer'] = customer
    if save_card:
        params['setup_future_usage'] = 'off_session'

    try:
        return stripe.PaymentIntent.create(**params)
    except stripe.StripeError as exc:
        logger.error(f"[Stripe] Payment intent creation failed: {exc}")
        raise ProcessorError('Payment processor error', error=_stripe_error(exc))


def retrieve_payment_intent(intent_id):
    """Fetch a PaymentIntent with its payment method expanded, as a plain dict."""
    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.retrieve(intent_id, expand=['payment_method'])
    except stripe.StripeError as exc:
        logger.error(f"[Stripe] Could not retrieve payment intent {intent_id}: {exc}")
        raise ProcessorError('Payment processor error', error=_stripe_error(exc))
    return intent.to_dict()


def create_customer(email, name, metadata):
    _configure_stripe()
    try:
        return stripe.Customer.create(email=email, name=name, metadata=metadata)
    except stripe.StripeError as exc:
        logger.error(f"[Stripe] Customer creation failed for {email}: {exc}")
        raise ProcessorError('Payment processor error', error=_stripe_error(exc))


# ─── PayPal ───────────────────────────────────────────────────────────────────

def _paypal_credentials():
    if not settings.PAYPAL_CLIENT_ID or not settings.PAYPAL_SECRET:
        logger.error("[PayPal] Missing PAYPAL_CLIENT_ID / PAYPAL_SECRET settings")
        raise ProcessorConfigurationError(
            'Payment processor configuration error: Missing PayPal API credentials'
        )
    return settings.PAYPAL_CLIENT_ID, settings.PAYPAL_SECRET


def _paypal_url(path):
    return f"{settings.PAYPAL_API_BASE.rstrip('/')}{path}"


def _paypal_access_token(credentials):
    try:
        response = requests.post(
            _paypal_url('/v1/oauth2/token'),
            auth=credentials,
            data={'grant_type': 'client_credentials'},
            headers={'Accept': 'application/json'},
            timeout=settings.PAYPAL_TIMEOUT,
        )
    except requests.RequestException as exc:
        logger.error(f"[PayPal] Token request failed: {exc}")
        raise ProcessorError('Error verifying PayPal payment', status_code=500, error=str(exc))

    if not response.ok:
        logger.error(f"[PayPal] Token API error ({response.status_code}): {response.text}")
        raise ProcessorError('PayPal API error', status=response.status_code, details=response.text)
    return response.json()['access_token']


def get_paypal_order(order_id):
    """
    Fetch an order from PayPal using the service credentials.
    Returns the decoded order payload.
    """
    credentials = _paypal_credentials()
    token = _paypal_access_token(credentials)

    try:
        response = requests.get(
            _paypal_url(f'/v2/checkout/orders/{order_id}'),
            headers={
                'Content-Type': 'application/json',
                'Authorization': f'Bearer {token}',
            },
            timeout=settings.PAYPAL_TIMEOUT,
        )
    except requests.RequestException as exc:
        logger.error(f"[PayPal] Order lookup for {order_id} failed: {exc}")
        raise ProcessorError('Error verifying PayPal payment', status_code=500, error=str(exc))

    if not response.ok:
        logger.error(f"[PayPal] API Error ({response.status_code}): {response.text}")
        raise ProcessorError('PayPal API error', status=response.status_code, details=response.text)

    return response.json()
