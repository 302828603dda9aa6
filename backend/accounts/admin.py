from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    User admin configuration
    """
    list_display = (
        'username', 'email', 'name', 'access_level', 'plan_type',
        'subscription_source', 'subscription_expires_at', 'is_active', 'created_at'
    )
    list_filter = (
        'is_active', 'is_staff', 'access_level', 'plan_type',
        'subscription_source', 'created_at'
    )
    search_fields = ('username', 'email', 'name')
    ordering = ('-created_at',)
    readonly_fields = ('created_at', 'updated_at')

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Subscription', {
            'fields': (
                'name', 'access_level', 'plan_type', 'subscription_source',
                'subscription_started_at', 'subscription_expires_at',
            )
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Subscription', {
            'fields': ('email', 'name', 'access_level')
        }),
    )
