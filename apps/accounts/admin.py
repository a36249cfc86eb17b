from django.contrib import admin
from django.contrib.auth.admin import UserAdmin
from .models import User


@admin.register(User)
class CustomUserAdmin(UserAdmin):
    list_display = ('username', 'email', 'first_name', 'last_name', 'plan', 'credits', 'is_active', 'created_at')
    list_filter = ('is_active', 'is_staff', 'plan', 'created_at')
    search_fields = ('username', 'email', 'external_billing_id')
    ordering = ('-created_at',)
    readonly_fields = ('id', 'created_at', 'updated_at', 'external_billing_id')

    fieldsets = UserAdmin.fieldsets + (
        ('Billing', {'fields': ('external_billing_id', 'plan', 'credits')}),
        ('Timestamps', {'fields': ('created_at', 'updated_at')}),
    )
