"""
Management command to seed the permission catalog and system roles.

Creates every Permission record the platform checks against, plus the
system roles at org, project and platform scope with their permission
sets. This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.catalog import get_permission_catalog
from apps.rbac.models import Permission, Role, RolePermission


def _perms(category, *actions):
    return [f'{category}.{action}' for action in actions]


ORG_ADMIN_PERMISSIONS = (
    _perms('org', 'admin', 'member', 'read')
    + ['members.manage', 'billing.manage', 'audit.read']
)
PROJECT_DELIVERY_PERMISSIONS = (
    _perms('project', 'manage', 'read', 'create', 'archive')
    + _perms('project.settings', 'read', 'update')
    + _perms('docs', 'read', 'upload', 'download', 'share', 'delete')
    + _perms('schedule', 'read', 'edit', 'publish')
    + ['schedule.baseline.manage']
    + _perms('daily_log', 'read', 'write', 'approve')
    + _perms('rfi', 'read', 'write', 'respond', 'close')
    + _perms('submittal', 'read', 'write', 'review', 'approve')
    + _perms('change_order', 'read', 'write', 'approve')
    + _perms('commitment', 'read', 'write', 'approve')
    + _perms('budget', 'read', 'write')
    + _perms('invoice', 'read', 'write', 'approve', 'send')
    + _perms('bill', 'read', 'write', 'approve')
    + _perms('payment', 'read', 'release')
    + _perms('draw', 'read', 'approve')
    + ['retainage.manage', 'report.read', 'portal.access.manage']
)
READ_ONLY_PERMISSIONS = [
    'project.read', 'docs.read', 'docs.download', 'schedule.read',
    'daily_log.read', 'rfi.read', 'submittal.read', 'change_order.read',
    'commitment.read', 'budget.read', 'invoice.read', 'bill.read',
    'payment.read', 'draw.read', 'report.read',
]
PLATFORM_PERMISSIONS = [
    'platform.org.read', 'platform.org.access', 'platform.billing.manage',
    'platform.support.read', 'platform.support.write',
    'platform.feature_flags.manage', 'impersonation.start', 'impersonation.end',
    'audit.read', 'audit.export', 'authz.policy.manage',
]


class Command(BaseCommand):
    help = 'Seed the permission catalog and system roles (idempotent)'

    # role key -> (label, scope, description, permission keys)
    SYSTEM_ROLES = {
        'owner': (
            'Owner', Role.SCOPE_ORG,
            'Full control of the organization, its members and billing.',
            ORG_ADMIN_PERMISSIONS + ['features.manage', 'budget.lock'] + PROJECT_DELIVERY_PERMISSIONS,
        ),
        'admin': (
            'Office Admin', Role.SCOPE_ORG,
            'Administrative control across projects, members and business operations.',
            ORG_ADMIN_PERMISSIONS + PROJECT_DELIVERY_PERMISSIONS,
        ),
        'staff': (
            'Project Lead', Role.SCOPE_ORG,
            'Project delivery, field workflows and day-to-day coordination.',
            ['org.member', 'org.read', 'project.manage', 'project.read', 'project.settings.read',
             'docs.read', 'docs.upload', 'docs.download', 'docs.share',
             'schedule.read', 'schedule.edit', 'schedule.publish',
             'daily_log.read', 'daily_log.write',
             'rfi.read', 'rfi.write', 'rfi.respond',
             'submittal.read', 'submittal.write', 'submittal.review',
             'change_order.read', 'change_order.write',
             'commitment.read', 'commitment.write', 'budget.read',
             'invoice.read', 'invoice.write', 'bill.read', 'bill.write',
             'payment.read', 'draw.read', 'report.read', 'portal.access.manage'],
        ),
        'readonly': (
            'Viewer', Role.SCOPE_ORG,
            'Read-only visibility for stakeholders and observers.',
            ['org.read'] + READ_ONLY_PERMISSIONS,
        ),
        'pm': (
            'Project Manager', Role.SCOPE_PROJECT,
            'Runs a single project end to end.',
            ['project.read', 'project.manage', 'project.settings.read', 'project.settings.update',
             'docs.read', 'docs.upload', 'docs.download', 'docs.share',
             'schedule.read', 'schedule.edit', 'schedule.publish', 'schedule.baseline.manage',
             'daily_log.read', 'daily_log.write',
             'rfi.read', 'rfi.write', 'rfi.respond', 'rfi.close',
             'submittal.read', 'submittal.write', 'submittal.review',
             'change_order.read', 'change_order.write',
             'commitment.read', 'commitment.write', 'budget.read', 'budget.write',
             'invoice.read', 'invoice.write', 'invoice.send', 'bill.read', 'bill.write',
             'payment.read', 'draw.read', 'report.read', 'portal.access.manage'],
        ),
        'field': (
            'Field', Role.SCOPE_PROJECT,
            'Site crew: documents, schedule, daily logs, RFIs and submittals.',
            ['project.read', 'docs.read', 'docs.upload', 'docs.download',
             'schedule.read', 'schedule.edit', 'daily_log.read', 'daily_log.write',
             'rfi.read', 'rfi.write', 'rfi.respond', 'submittal.read', 'submittal.write',
             'report.read'],
        ),
        'client': (
            'Client', Role.SCOPE_PROJECT,
            'Project owner with read access to progress and billing.',
            ['project.read', 'docs.read', 'docs.download', 'schedule.read', 'daily_log.read',
             'rfi.read', 'submittal.read', 'change_order.read', 'invoice.read', 'draw.read',
             'report.read'],
        ),
        'platform_super_admin': (
            'Platform Super Admin', Role.SCOPE_PLATFORM,
            'Break-glass platform administrator.',
            PLATFORM_PERMISSIONS,
        ),
        'platform_admin': (
            'Platform Admin', Role.SCOPE_PLATFORM,
            'Platform operations and support administrator.',
            ['platform.org.read', 'platform.org.access', 'platform.support.read',
             'platform.support.write', 'platform.feature_flags.manage',
             'impersonation.start', 'impersonation.end', 'audit.read'],
        ),
        'platform_billing_ops': (
            'Platform Billing Ops', Role.SCOPE_PLATFORM,
            'Platform billing operations.',
            ['platform.org.read', 'platform.billing.manage', 'platform.support.read', 'audit.read'],
        ),
        'platform_support_readonly': (
            'Platform Support Readonly', Role.SCOPE_PLATFORM,
            'Read-only platform support.',
            ['platform.org.read', 'platform.support.read', 'audit.read'],
        ),
        'platform_security_auditor': (
            'Platform Security Auditor', Role.SCOPE_PLATFORM,
            'Platform security and audit.',
            ['platform.org.read', 'platform.support.read', 'audit.read', 'audit.export'],
        ),
    }

    def handle(self, *args, **options):
        verbosity = options.get('verbosity', 1)

        with transaction.atomic():
            created_permissions = self._seed_permissions()
            created_roles, linked = self._seed_roles()

        # Catalog answers may have been cached as misses before seeding
        get_permission_catalog().invalidate()

        if verbosity:
            self.stdout.write(self.style.SUCCESS(
                f'Seeding complete: {created_permissions} permissions created, '
                f'{created_roles} roles created, {linked} role permissions linked'
            ))
            self.stdout.write(f'Total permissions: {Permission.objects.count()}')

    def all_permission_keys(self):
        keys = set()
        for _, _, _, permission_keys in self.SYSTEM_ROLES.values():
            keys.update(permission_keys)
        return sorted(keys)

    def _seed_permissions(self):
        created_count = 0
        for key in self.all_permission_keys():
            _, created = Permission.objects.get_or_create_permission(
                key=key,
                description=f"Allows {key.replace('.', ' ').replace('_', ' ')}",
                category=key.split('.', 1)[0],
            )
            if created:
                created_count += 1
        return created_count

    def _seed_roles(self):
        created_count = 0
        linked = 0
        permissions = {p.key: p for p in Permission.objects.all()}

        for key, (label, scope, description, permission_keys) in self.SYSTEM_ROLES.items():
            role, created = Role.objects.update_or_create(
                key=key,
                defaults={
                    'label': label,
                    'scope': scope,
                    'description': description,
                    'is_system': True,
                }
            )
            if created:
                created_count += 1

            for permission_key in permission_keys:
                _, was_linked = RolePermission.objects.get_or_create(
                    role=role,
                    permission=permissions[permission_key],
                )
                if was_linked:
                    linked += 1

        return created_count, linked
