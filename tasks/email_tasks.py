"""
Customer notifications for the payment lifecycle, sent from Celery workers.

Email tasks retry up to three times, a minute apart; the receipt and
failure mails go to the account email or, for guests, the checkout contact.
"""
import logging
from celery import shared_task
from django.core.mail import send_mail
from django.conf import settings

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def send_welcome_email(self, email: str, name: str):
    """
    Fired after a new user registers.
    """
    try:
        send_mail(
            subject='Welcome to the Storefront!',
            message=(
                f"Hi {name},\n\n"
                "Your account is ready. You can pay by card, PayPal or bank transfer "
                "and review every purchase in your payment history:\n"
                f"{settings.FRONTEND_URL}/history\n\n"
                "Best,\nThe Storefront Team"
            ),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[email],
            fail_silently=False,
        )
        logger.info(f"[EMAIL] Welcome email sent → {email}")
    except Exception as exc:
        logger.error(f"[EMAIL] Failed to send welcome email to {email}: {exc}")
        raise self.retry(exc=exc)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def send_payment_receipt_email(self, email: str, name: str, transaction_code: str, amount: str, currency: str):
    """
    Fired when a transaction reaches "completed".
    Works for guests too: `email` is then the checkout contact address.
    """
    try:
        send_mail(
            subject=f'Payment Receipt {transaction_code} — Storefront',
            message=(
                f"Hi {name},\n\n"
                "Thank you for your purchase. Your payment has been received.\n\n"
                f"  Transaction : {transaction_code}\n"
                f"  Amount      : {amount} {currency}\n\n"
                "Keep this email for your records.\n\n"
                "Best,\nThe Storefront Team"
            ),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[email],
            fail_silently=False,
        )
        logger.info(f"[EMAIL] Receipt for {transaction_code} sent → {email}")
    except Exception as exc:
        logger.error(f"[EMAIL] Failed to send receipt for {transaction_code} to {email}: {exc}")
        raise self.retry(exc=exc)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def send_payment_failed_email(self, email: str, name: str, transaction_code: str):
    """
    Fired when a transaction ends up "failed".
    Prompts the customer to try another payment method.
    """
    try:
        send_mail(
            subject='Payment Failed — Storefront',
            message=(
                f"Hi {name},\n\n"
                f"We were unable to process payment {transaction_code}.\n\n"
                "No money was taken. Please try again with another payment method:\n"
                f"{settings.FRONTEND_URL}/payments\n\n"
                "Need help? Reply to this email.\n\n"
                "Best,\nThe Storefront Team"
            ),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[email],
            fail_silently=False,
        )
        logger.info(f"[EMAIL] Payment failed email sent → {email}")
    except Exception as exc:
        logger.error(f"[EMAIL] Failed to send payment-failed email to {email}: {exc}")
        raise self.retry(exc=exc)


@shared_task
def log_webhook_event(event_type: str, event_id: str):
    """
    Audit line for every signed Stripe event we accept.
    Best effort, never retried.
    """
    logger.info(f"[WEBHOOK] type={event_type} | id={event_id}")
