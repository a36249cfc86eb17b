"""
Errors raised by the payment store, processors and orchestration services.

Each carries the HTTP status it should surface with; views render them
at the request boundary as {"message": ..., **details}.
"""
from rest_framework import status


class PaymentError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Payment could not be processed.'

    def __init__(self, message=None, status_code=None, **details):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def as_response_data(self):
        return {'message': self.message, **self.details}


class ProcessorConfigurationError(PaymentError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Payment processor configuration error.'


class ProcessorError(PaymentError):
    """Upstream processor rejected the call or could not be reached."""
    default_message = 'Payment processor error.'


class PaymentVerificationError(PaymentError):
    default_message = 'Payment could not be verified with the processor.'


class InvalidTransition(PaymentError):
    default_message = 'Illegal transaction status change.'


class RecordNotFound(PaymentError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Record not found.'


class DuplicatePaymentReference(PaymentVerificationError):
    """The processor payment is already recorded on another transaction."""
    default_message = 'Payment has already been recorded'
