import logging
import stripe
from django.conf import settings
from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from apps.payments.models import Transaction
from apps.payments.services import apply_stripe_intent_event
from tasks.email_tasks import log_webhook_event

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request):
    """
    POST /api/webhooks/stripe/

    Receives Stripe webhook events and dispatches to the appropriate handler.
    Stripe signature is verified using STRIPE_WEBHOOK_SECRET. Redelivered
    events are safe: a transaction already in the target status is left alone.
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook error: STRIPE_WEBHOOK_SECRET is not configured")
        return HttpResponse(status=500)

    payload = request.body
    sig_header = request.META.get('HTTP_STRIPE_SIGNATURE', '')

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except ValueError:
        logger.error("Webhook error: Invalid payload")
        return HttpResponse(status=400)
    except stripe.SignatureVerificationError:
        logger.error("Webhook error: Invalid signature")
        return HttpResponse(status=400)

    event_type = event['type']
    data_obj = event['data']['object'].to_dict()

    logger.info(f"Stripe webhook received | type={event_type} | id={event['id']}")

    # Async audit log (non-blocking)
    log_webhook_event.delay(event_type, event['id'])

    HANDLERS = {
        'payment_intent.succeeded': _handle_intent_succeeded,
        'payment_intent.payment_failed': _handle_intent_failed,
        'payment_intent.canceled': _handle_intent_failed,
    }

    handler = HANDLERS.get(event_type)
    if handler:
        handler(data_obj)
    else:
        logger.debug(f"Unhandled webhook event type: {event_type}")

    return HttpResponse(status=200)


# ─── Event Handlers ───────────────────────────────────────────────────────────

def _handle_intent_succeeded(data):
    transaction = apply_stripe_intent_event(data, Transaction.STATUS_COMPLETED)
    if transaction:
        logger.info(f"Payment intent {data['id']} → transaction {transaction.code} {transaction.status}")


def _handle_intent_failed(data):
    """payment_failed and canceled both close the transaction as failed."""
    error = (data.get('last_payment_error') or {}).get('message')
    if error:
        logger.info(f"Payment intent {data['id']} failed: {error}")
    apply_stripe_intent_event(data, Transaction.STATUS_FAILED)
