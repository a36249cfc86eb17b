import logging
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .exceptions import PaymentError
from .serializers import (
    TransactionSerializer,
    PaymentMethodSerializer,
    PaymentIntentRequestSerializer,
    PayPalPaymentRequestSerializer,
    UpdateTransactionSerializer,
    GuestCheckoutRequestSerializer,
)
from .store import payments

logger = logging.getLogger(__name__)


def _error_response(exc):
    return Response(exc.as_response_data(), status=exc.status_code)


def _caller(request):
    return request.user if request.user.is_authenticated else None


class CreatePaymentIntentView(APIView):
    """
    POST /api/payments/create-payment-intent/?userId=<id>
    Create a Stripe PaymentIntent and a "processing" transaction.

    Body:
        amount        (decimal) — at least PAYMENT_MIN_AMOUNT
        currency      (str)     — ISO code, default USD
        description   (str)
        paymentMethod (str)     — method tag, e.g. "stripe"
        saveCard      (bool)    — keep the card on file after payment
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PaymentIntentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            client_secret, transaction = services.initiate_payment_intent(
                user=request.user,
                amount=data['amount'],
                currency=data['currency'],
                payment_method=data['paymentMethod'],
                description=data['description'],
                save_card=data['saveCard'],
            )
        except PaymentError as e:
            return _error_response(e)

        return Response({
            'clientSecret': client_secret,
            'transaction': TransactionSerializer(transaction).data,
            'transactionId': transaction.code,
        })


class ProcessPayPalPaymentView(APIView):
    """
    POST /api/payments/process-paypal-payment/?userId=<id>
    Verify a PayPal order captured client-side and record it as completed.
    Guests may call this without userId.
    """
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = PayPalPaymentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = _caller(request)

        if data['savePaymentMethod'] and user is None:
            logger.info("[PayPal] Guest asked to save a payment method; ignoring")

        try:
            transaction = services.process_paypal_payment(
                user=user,
                order_id=data['orderID'],
                payer_id=data.get('payerID'),
                amount=data['amount'],
                description=data['description'],
                is_card_payment=data['isCardPayment'],
                card_info=data.get('cardInfo'),
                save_payment_method=data['savePaymentMethod'],
                paypal_email=data.get('paypalEmail'),
            )
        except PaymentError as e:
            return _error_response(e)

        if data.get('items'):
            logger.info(f"[PayPal Items] Transaction {transaction.code} items: {data['items']}")

        return Response({
            'success': True,
            'transaction': TransactionSerializer(transaction).data,
            'transactionId': transaction.code,
        })


class TransactionListView(APIView):
    """
    GET /api/payments/transactions/?userId=<id>
    Transactions for the caller, newest first. Without a user, guest transactions.
    """
    permission_classes = [AllowAny]

    def get(self, request):
        user = _caller(request)
        transactions = payments.get_transactions(user.pk if user else 0)
        return Response({'transactions': TransactionSerializer(transactions, many=True).data})


class UpdateTransactionView(APIView):
    """
    POST /api/payments/update-transaction/?userId=<id>
    Client-reported status change for one of the caller's transactions.

    Body:
        transactionId (int) — local transaction id
        status        (str) — processing | pending | completed | failed
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = UpdateTransactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        transaction = payments.get_transaction(data['transactionId'])
        if transaction is None:
            return Response({'message': 'Transaction not found'}, status=status.HTTP_404_NOT_FOUND)

        if transaction.user_id != request.user.pk:
            return Response(
                {'message': 'Not authorized to update this transaction'},
                status=status.HTTP_403_FORBIDDEN,
            )

        try:
            transaction = services.confirm_transaction(transaction, data['status'])
        except PaymentError as e:
            return _error_response(e)

        return Response({
            'message': 'Transaction updated successfully',
            'transaction': TransactionSerializer(transaction).data,
        })


class PaymentMethodListView(APIView):
    """
    GET  /api/payments/methods/ — saved payment methods of the caller
    POST /api/payments/methods/ — save a new one
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        methods = payments.get_payment_methods(request.user.pk)
        return Response({'paymentMethods': PaymentMethodSerializer(methods, many=True).data})

    def post(self, request):
        serializer = PaymentMethodSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payment_method = payments.create_payment_method(user_id=request.user.pk, **serializer.validated_data)

        return Response({
            'message': 'Payment method added successfully',
            'paymentMethod': PaymentMethodSerializer(payment_method).data,
        }, status=status.HTTP_201_CREATED)


class _OwnedPaymentMethodView(APIView):
    permission_classes = [IsAuthenticated]
    forbidden_message = 'Not authorized to update this payment method'

    def get_owned(self, request, pk):
        """Return (payment_method, None) or (None, error_response)."""
        payment_method = payments.get_payment_method(pk)
        if payment_method is None:
            return None, Response({'message': 'Payment method not found'}, status=status.HTTP_404_NOT_FOUND)
        if payment_method.user_id != request.user.pk:
            return None, Response({'message': self.forbidden_message}, status=status.HTTP_403_FORBIDDEN)
        return payment_method, None


class PaymentMethodDetailView(_OwnedPaymentMethodView):
    """
    DELETE /api/payments/methods/<id>/
    """
    forbidden_message = 'Not authorized to delete this payment method'

    def delete(self, request, pk):
        payment_method, error = self.get_owned(request, pk)
        if error:
            return error

        payments.delete_payment_method(payment_method.pk)
        logger.info(f"Payment method {pk} deleted by user {request.user.pk}")
        return Response({'message': 'Payment method deleted successfully'})


class SetDefaultPaymentMethodView(_OwnedPaymentMethodView):
    """
    POST /api/payments/methods/<id>/set-default/
    """

    def post(self, request, pk):
        payment_method, error = self.get_owned(request, pk)
        if error:
            return error

        payments.set_default_payment_method(request.user.pk, payment_method.pk)
        return Response({'message': 'Default payment method updated successfully'})


class GuestCheckoutView(APIView):
    """
    POST /api/payments/guest-checkout/
    Record a purchase for a customer without an account.

    Body:
        amount, currency, description, paymentMethod
        paymentData  (dict) — optional processor references (paypalOrderId, paymentIntentId)
        customerInfo (dict) — fullName and email required; phone, address, city, country optional
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = GuestCheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        customer = data['customerInfo']

        try:
            transaction = services.guest_checkout(
                amount=data['amount'],
                currency=data['currency'],
                payment_method=data['paymentMethod'],
                customer=customer,
                description=data['description'],
                payment_data=data.get('paymentData'),
            )
        except PaymentError as e:
            return _error_response(e)

        return Response({
            'success': True,
            'message': 'Payment processed successfully',
            'transactionId': transaction.code,
            'transaction': TransactionSerializer(transaction).data,
            'customerInfo': {
                'name': customer['fullName'],
                'email': customer['email'],
            },
        })
