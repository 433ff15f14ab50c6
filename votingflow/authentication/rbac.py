# votingflow/authentication/rbac.py

from enum import Enum
from functools import wraps
from flask import current_app
import logging

from votingflow.workflow.errors import NotAuthorizedError

# Roles are not stored anywhere: the administrator is fixed by configuration
# and voters are whoever the session currently has registered.

logger = logging.getLogger(__name__)


class UserRole(Enum):
    ADMINISTRATOR = "administrator"
    VOTER = "voter"
    ANONYMOUS = "anonymous"


class Permission(Enum):
    MANAGE_VOTERS = "manage_voters"
    MANAGE_WORKFLOW = "manage_workflow"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    SUBMIT_PROPOSAL = "submit_proposal"
    VOTE = "vote"
    VIEW_SESSION = "view_session"


# Role -> Permissions mapping
ROLE_PERMISSIONS = {
    UserRole.ADMINISTRATOR: [
        Permission.MANAGE_VOTERS,
        Permission.MANAGE_WORKFLOW,
        Permission.VIEW_AUDIT_LOGS,
    ],
    UserRole.VOTER: [
        Permission.SUBMIT_PROPOSAL,
        Permission.VOTE,
        Permission.VIEW_SESSION,
    ],
    UserRole.ANONYMOUS: [],
}


class RBACService:
    def __init__(self, session):
        self.session = session

    def get_roles(self, identity):
        """The administrator can also be a registered voter, so this is a list."""
        roles = []
        if identity and self.session.is_administrator(identity):
            roles.append(UserRole.ADMINISTRATOR)
        if identity and self.session.is_registered(identity):
            roles.append(UserRole.VOTER)
        return roles or [UserRole.ANONYMOUS]

    def get_permissions(self, identity):
        permissions = []
        for role in self.get_roles(identity):
            permissions.extend(ROLE_PERMISSIONS.get(role, []))
        return permissions

    def has_permission(self, identity, permission):
        if isinstance(permission, str):
            permission = Permission(permission)
        return permission in self.get_permissions(identity)


def require_permission(permission):
    """Reject the request early; the session re-checks the same rule itself."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            identity = current_app.extensions['token_manager'].current_identity()
            rbac = RBACService(current_app.extensions['voting_session'])
            if not rbac.has_permission(identity, permission):
                logger.warning("Permission %s denied to %s", permission.value, identity)
                raise NotAuthorizedError(f"Permission {permission.value} required")
            return func(*args, **kwargs)
        return wrapper
    return decorator
