"""
Django admin configuration for portal app.
"""
from django.contrib import admin
from .models import ExternalPortalAccount, ExternalPortalGrant, PortalAccessToken


@admin.register(PortalAccessToken)
class PortalAccessTokenAdmin(admin.ModelAdmin):
    list_display = ['name', 'portal_type', 'project', 'pin_required', 'require_account',
                    'access_count', 'expires_at', 'revoked_at', 'created_at']
    list_filter = ['portal_type', 'pin_required', 'require_account']
    search_fields = ['name', 'project__name']
    exclude = ['pin_hash', 'deleted_at']
    readonly_fields = ['token_prefix', 'token_hash', 'access_count', 'last_accessed_at', 'pin_attempts', 'pin_locked_until']

    def has_add_permission(self, request):
        # Issued through the API, which returns the raw token once
        return False

    def has_delete_permission(self, request, obj=None):
        # Revoke instead
        return False


@admin.register(ExternalPortalAccount)
class ExternalPortalAccountAdmin(admin.ModelAdmin):
    list_display = ['email', 'full_name', 'org', 'status', 'last_login_at']
    list_filter = ['status']
    search_fields = ['email', 'full_name']
    exclude = ['password_hash']


@admin.register(ExternalPortalGrant)
class ExternalPortalGrantAdmin(admin.ModelAdmin):
    list_display = ['account', 'portal_token', 'status', 'paused_at', 'revoked_at']
    list_filter = ['status']
