"""Read-only access decisions computed from the identity store."""
import enum

from ..models import Permission, Role, RolePermission, UserRole, UserStatus
from .identity_store import IdentityStore


class LoginDecision(str, enum.Enum):
    ALLOW = 'ALLOW'
    BLOCKED_INACTIVE = 'BLOCKED_INACTIVE'
    BLOCKED_LOCKOUT = 'BLOCKED_LOCKOUT'


def can_login(is_active, attempts_remaining):
    """
    Decide whether a login attempt may proceed.

    Inactive accounts are reported as such even when attempts remain.
    """
    if not is_active:
        return LoginDecision.BLOCKED_INACTIVE
    if attempts_remaining <= 0:
        return LoginDecision.BLOCKED_LOCKOUT
    return LoginDecision.ALLOW


class AccessEvaluator:
    """
    Answers "what can this user do" questions.

    Nothing is cached: every call reads the current store state, so two
    calls against the same state always agree.
    """

    def __init__(self, store, max_login_attempts=5):
        self.store = store
        self.max_login_attempts = max_login_attempts

    @classmethod
    def from_config(cls, session, config):
        return cls(IdentityStore(session), config['IAM_MAX_LOGIN_ATTEMPTS'])

    @property
    def session(self):
        return self.store.session

    def has_role(self, user, role_name):
        user = self.store.get_user(user)
        return self.store.read(
            lambda: self.session.query(UserRole.user_id)
            .join(Role, Role.id == UserRole.role_id)
            .filter(UserRole.user_id == user.id, Role.name == role_name)
            .first()
        ) is not None

    def effective_permissions(self, user):
        """
        Union of the permissions granted by every role the user holds.

        Returns:
            frozenset: permission names; empty for a user without roles
        """
        user = self.store.get_user(user)
        rows = self.store.read(
            lambda: self.session.query(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(UserRole, UserRole.role_id == RolePermission.role_id)
            .filter(UserRole.user_id == user.id)
            .distinct()
            .all()
        )
        return frozenset(name for (name,) in rows)

    def has_permission(self, user, permission_name):
        return permission_name in self.effective_permissions(user)

    def can_login(self, is_active, attempts_remaining):
        return can_login(is_active, attempts_remaining)

    def login_decision(self, user, attempts_remaining=None):
        """
        Apply ``can_login`` to a stored user's status.

        ``attempts_remaining`` defaults to the full allowance, i.e. a user
        with no failed attempts on record.
        """
        user = self.store.get_user(user)
        if attempts_remaining is None:
            attempts_remaining = self.max_login_attempts
        if user.status == UserStatus.LOCKED:
            attempts_remaining = 0
        return can_login(user.status != UserStatus.DISABLED, attempts_remaining)

    def access_report(self, user):
        user = self.store.get_user(user)
        return {
            'user': user.username,
            'status': user.status,
            'roles': [role.name for role in self.store.user_roles(user)],
            'permissions': sorted(self.effective_permissions(user)),
            'login': self.login_decision(user).value,
        }
