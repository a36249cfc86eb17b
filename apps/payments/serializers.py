from django.conf import settings
from rest_framework import serializers

from .models import Transaction, PaymentMethod


class TransactionSerializer(serializers.ModelSerializer):
    transactionId = serializers.CharField(source='code')
    userId = serializers.SerializerMethodField()
    paymentMethod = serializers.CharField(source='payment_method')
    cardLast4 = serializers.CharField(source='card_last4', allow_null=True)
    cardBrand = serializers.CharField(source='card_brand', allow_null=True)
    processorIntentId = serializers.CharField(source='processor_intent_id', allow_null=True)
    processorOrderId = serializers.CharField(source='processor_order_id', allow_null=True)
    processorPayerId = serializers.CharField(source='processor_payer_id', allow_null=True)
    createdAt = serializers.DateTimeField(source='created_at')

    class Meta:
        model = Transaction
        fields = (
            'id', 'transactionId', 'userId', 'amount', 'currency', 'status',
            'paymentMethod', 'cardLast4', 'cardBrand', 'description',
            'processorIntentId', 'processorOrderId', 'processorPayerId', 'createdAt',
        )
        read_only_fields = fields

    def get_userId(self, obj):
        return obj.user_id or 0


class PaymentMethodSerializer(serializers.ModelSerializer):
    userId = serializers.IntegerField(source='user_id', read_only=True)
    cardLast4 = serializers.CharField(source='card_last4', required=False, allow_null=True, allow_blank=True, max_length=4)
    cardBrand = serializers.CharField(source='card_brand', required=False, allow_null=True, allow_blank=True, max_length=50)
    expiryMonth = serializers.CharField(source='expiry_month', required=False, allow_null=True, allow_blank=True, max_length=2)
    expiryYear = serializers.CharField(source='expiry_year', required=False, allow_null=True, allow_blank=True, max_length=4)
    isDefault = serializers.BooleanField(source='is_default', required=False, default=False)
    processorPaymentMethodId = serializers.CharField(
        source='processor_payment_method_id', required=False, allow_null=True, allow_blank=True, max_length=255,
    )
    processorAccountEmail = serializers.EmailField(
        source='processor_account_email', required=False, allow_null=True, allow_blank=True,
    )
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = PaymentMethod
        fields = (
            'id', 'userId', 'type', 'cardLast4', 'cardBrand', 'expiryMonth', 'expiryYear',
            'isDefault', 'processorPaymentMethodId', 'processorAccountEmail', 'createdAt',
        )
        read_only_fields = ('id', 'userId', 'createdAt')
        extra_kwargs = {
            'type': {'error_messages': {'required': 'Payment method type is required'}},
        }


class MinimumAmountMixin:

    def validate_amount(self, value):
        if value < settings.PAYMENT_MIN_AMOUNT:
            raise serializers.ValidationError(f"Amount must be at least {settings.PAYMENT_MIN_AMOUNT}")
        return value


class PaymentIntentRequestSerializer(MinimumAmountMixin, serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    currency = serializers.CharField(max_length=3, default=settings.PAYMENT_DEFAULT_CURRENCY)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    paymentMethod = serializers.CharField(max_length=30)
    saveCard = serializers.BooleanField(required=False, default=False)

    def validate_currency(self, value):
        return value.upper()


class PayPalPaymentRequestSerializer(MinimumAmountMixin, serializers.Serializer):
    orderID = serializers.CharField(max_length=255)
    payerID = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    savePaymentMethod = serializers.BooleanField(required=False, default=False)
    isCardPayment = serializers.BooleanField(required=False, default=False)
    cardInfo = serializers.DictField(required=False, allow_null=True)
    paypalEmail = serializers.EmailField(required=False, allow_blank=True, allow_null=True)
    items = serializers.ListField(child=serializers.DictField(), required=False)


class UpdateTransactionSerializer(serializers.Serializer):
    transactionId = serializers.IntegerField()
    status = serializers.ChoiceField(choices=[choice for choice, _ in Transaction.STATUS_CHOICES])


class CustomerInfoSerializer(serializers.Serializer):
    fullName = serializers.CharField(max_length=255, error_messages={
        'required': 'Customer name is required',
        'blank': 'Customer name is required',
    })
    email = serializers.EmailField(error_messages={
        'required': 'Customer email is required',
        'blank': 'Customer email is required',
    })
    phone = serializers.CharField(required=False, allow_blank=True, max_length=50)
    address = serializers.CharField(required=False, allow_blank=True, max_length=255)
    city = serializers.CharField(required=False, allow_blank=True, max_length=100)
    country = serializers.CharField(required=False, allow_blank=True, max_length=100)


class GuestCheckoutRequestSerializer(MinimumAmountMixin, serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    currency = serializers.CharField(max_length=3, default=settings.PAYMENT_DEFAULT_CURRENCY)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    paymentMethod = serializers.CharField(max_length=30)
    paymentData = serializers.DictField(required=False, allow_null=True)
    customerInfo = CustomerInfoSerializer(error_messages={
        'required': 'Customer information is required',
        'null': 'Customer information is required',
    })

    def validate_currency(self, value):
        return value.upper()
