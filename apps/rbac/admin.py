"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin
from .models import (
    AuthorizationAuditLog,
    OrgMembership,
    Permission,
    PlatformMembership,
    ProjectMembership,
    Role,
    RolePermission,
    User,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """Email-based user admin; passwords are managed through set_password."""
    list_display = ['email', 'first_name', 'last_name', 'is_active', 'is_superuser', 'email_verified', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'email_verified']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['-created_at']
    exclude = ['password_hash']
    readonly_fields = ['created_at', 'updated_at', 'last_login_at']


class RolePermissionInline(admin.TabularInline):
    model = RolePermission
    extra = 0


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ['key', 'label', 'scope', 'is_system']
    list_filter = ['scope', 'is_system']
    search_fields = ['key', 'label']
    inlines = [RolePermissionInline]


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ['key', 'category', 'description']
    list_filter = ['category']
    search_fields = ['key']


@admin.register(ProjectMembership, OrgMembership, PlatformMembership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ['user', 'role', 'status', 'created_at']
    list_filter = ['status', 'role']
    search_fields = ['user__email']


@admin.register(AuthorizationAuditLog)
class AuthorizationAuditLogAdmin(admin.ModelAdmin):
    """Read-only view of the audit trail."""
    list_display = ['created_at', 'actor_id', 'permission_key', 'decision', 'reason_code', 'request_id']
    list_filter = ['decision', 'reason_code']
    search_fields = ['actor_id', 'permission_key', 'request_id']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
