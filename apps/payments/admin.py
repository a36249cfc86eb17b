from django.contrib import admin, messages
from .exceptions import PaymentError
from .models import Transaction, PaymentMethod
from .services import PaymentOutcome, reconcile_payment


def _move_to(modeladmin, request, queryset, status):
    moved = 0
    for transaction in queryset:
        try:
            reconcile_payment(PaymentOutcome(status=status), transaction)
            moved += 1
        except PaymentError as e:
            modeladmin.message_user(request, f"{transaction.code}: {e.message}", level=messages.ERROR)
    if moved:
        modeladmin.message_user(request, f"{moved} transaction(s) marked {status}.")


@admin.action(description='Mark selected transactions completed')
def mark_completed(modeladmin, request, queryset):
    _move_to(modeladmin, request, queryset, Transaction.STATUS_COMPLETED)


@admin.action(description='Mark selected transactions failed')
def mark_failed(modeladmin, request, queryset):
    _move_to(modeladmin, request, queryset, Transaction.STATUS_FAILED)


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ('code', 'user', 'amount', 'currency', 'status', 'payment_method', 'created_at')
    list_filter = ('status', 'payment_method', 'currency', 'created_at')
    search_fields = (
        'code', 'user__username', 'user__email', 'customer_email',
        'processor_intent_id', 'processor_order_id',
    )
    # Status only moves through the actions so the state machine applies
    readonly_fields = ('id', 'code', 'status', 'created_at', 'updated_at')
    raw_id_fields = ('user',)
    actions = [mark_completed, mark_failed]

    def has_add_permission(self, request):
        return False


@admin.register(PaymentMethod)
class PaymentMethodAdmin(admin.ModelAdmin):
    list_display = ('user', 'type', 'card_brand', 'card_last4', 'is_default', 'created_at')
    list_filter = ('type', 'is_default', 'created_at')
    search_fields = ('user__username', 'user__email', 'processor_payment_method_id', 'processor_account_email')
    readonly_fields = ('id', 'created_at')
    raw_id_fields = ('user',)
