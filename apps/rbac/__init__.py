"""
RBAC (Role-Based Access Control) application.

Provides the authorization decision engine for internal actors:
- Global user identity
- Roles at project, org and platform scope
- Permission catalog validation
- Audited allow/deny decisions with reason codes
"""
