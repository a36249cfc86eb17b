from django.urls import path
from .views import (
    CreatePaymentIntentView,
    ProcessPayPalPaymentView,
    TransactionListView,
    UpdateTransactionView,
    PaymentMethodListView,
    PaymentMethodDetailView,
    SetDefaultPaymentMethodView,
    GuestCheckoutView,
)

urlpatterns = [
    path('create-payment-intent/', CreatePaymentIntentView.as_view(), name='payment-intent-create'),
    path('process-paypal-payment/', ProcessPayPalPaymentView.as_view(), name='paypal-payment-process'),
    path('transactions/', TransactionListView.as_view(), name='transaction-list'),
    path('update-transaction/', UpdateTransactionView.as_view(), name='transaction-update'),
    path('methods/', PaymentMethodListView.as_view(), name='payment-method-list'),
    path('methods/<int:pk>/', PaymentMethodDetailView.as_view(), name='payment-method-detail'),
    path('methods/<int:pk>/set-default/', SetDefaultPaymentMethodView.as_view(), name='payment-method-set-default'),
    path('guest-checkout/', GuestCheckoutView.as_view(), name='guest-checkout'),
]
