"""
Provisioning workflow.

Every access-affecting change goes through here. A change and the audit
record describing it are flushed in one transaction and committed
together; if either half fails the session is rolled back and the caller
gets a ``Rejected`` result instead of an exception.

States:
    PENDING -> VALIDATED -> COMMITTED
    PENDING -> REJECTED
    VALIDATED -> REJECTED   (the atomic step failed and was rolled back)
"""
import enum
import logging
import threading
import weakref
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import (
    ConstraintViolation,
    Duplicate,
    IAMError,
    RejectionReason,
    StorageError,
    UnknownRole,
)
from ..models import AuditAction, AuditRecord
from .audit_log import AuditLog
from .identity_store import IdentityStore

logger = logging.getLogger(__name__)


class ProvisioningAction(str, enum.Enum):
    ASSIGN = 'ASSIGN'
    REVOKE = 'REVOKE'


class ProvisioningState(str, enum.Enum):
    PENDING = 'PENDING'
    VALIDATED = 'VALIDATED'
    COMMITTED = 'COMMITTED'
    REJECTED = 'REJECTED'


@dataclass
class ProvisioningRequest:
    actor: str
    user: Any
    role: str
    action: ProvisioningAction
    state: ProvisioningState = ProvisioningState.PENDING

    def __post_init__(self):
        self.action = ProvisioningAction(self.action)


@dataclass
class Committed:
    record: Optional[AuditRecord]
    noop: bool = False
    entity: Any = None
    state: ProvisioningState = ProvisioningState.COMMITTED
    ok = True


@dataclass
class Rejected:
    reason: RejectionReason
    message: str
    retryable: bool = False
    state: ProvisioningState = ProvisioningState.REJECTED
    ok = False

    @classmethod
    def from_error(cls, error):
        return cls(reason=error.kind, message=error.message, retryable=error.retryable)


class PairLocks:
    """Hands out one lock per key so that same-key work serializes."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def lock_for(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


# Shared by every workflow in the process unless one is given its own registry
default_locks = PairLocks()


def describe_assignment(username, role_name):
    return f"user={username} role={role_name}"


def _label(ref):
    for attr in ('username', 'name'):
        value = getattr(ref, attr, None)
        if value is not None:
            return value
    return ref


class ProvisioningWorkflow:
    def __init__(self, store, audit_log, allowed_roles, locks=None):
        if store.session is not audit_log.session:
            raise ValueError("store and audit_log must share one session")
        self.store = store
        self.audit_log = audit_log
        self.allowed_roles = frozenset(allowed_roles)
        self.locks = locks if locks is not None else default_locks

    @classmethod
    def from_config(cls, session, config, locks=None):
        return cls(
            IdentityStore(session),
            AuditLog(session),
            config['IAM_ALLOWED_ROLES'],
            locks=locks,
        )

    @property
    def session(self):
        return self.store.session

    # ------------------------------------------------------------------
    # Role assignment
    # ------------------------------------------------------------------

    def assign(self, actor, user, role):
        return self.submit(ProvisioningRequest(actor, user, role, ProvisioningAction.ASSIGN))

    def revoke(self, actor, user, role):
        return self.submit(ProvisioningRequest(actor, user, role, ProvisioningAction.REVOKE))

    def submit(self, request):
        """
        Validate and apply one assignment change.

        Returns:
            Committed or Rejected; ``request.state`` is updated to match.
        """
        result = self._submit(request)
        request.state = result.state
        return result

    def _submit(self, request):
        if request.role not in self.allowed_roles:
            error = UnknownRole(f"Role '{request.role}' is not assignable.")
            logger.info("Rejected %s of %s by %s: unknown role",
                        request.action.value, request.role, request.actor)
            return Rejected.from_error(error)

        try:
            user = self.store.get_user(request.user)
            role = self.store.get_role(request.role)
        except IAMError as exc:
            self._rollback()
            logger.info("Rejected %s by %s: %s", request.action.value, request.actor, exc.message)
            return Rejected.from_error(exc)

        request.state = ProvisioningState.VALIDATED
        target = describe_assignment(user.username, role.name)

        if request.action is ProvisioningAction.ASSIGN:
            mutate = lambda: self.store.add_user_role(user, role)  # noqa: E731
            action = AuditAction.ASSIGN_ROLE
        else:
            mutate = lambda: self.store.remove_user_role(user, role)  # noqa: E731
            action = AuditAction.REVOKE_ROLE

        with self.locks.lock_for((user.id, role.id)):
            return self._apply(request.actor, action, target, mutate)

    # ------------------------------------------------------------------
    # Administrative changes
    # ------------------------------------------------------------------

    def grant_permission(self, actor, role, permission):
        return self._apply(
            actor, AuditAction.GRANT_PERMISSION, f"role={_label(role)} permission={_label(permission)}",
            lambda: self.store.add_role_permission(role, permission),
        )

    def revoke_permission(self, actor, role, permission):
        return self._apply(
            actor, AuditAction.REVOKE_PERMISSION, f"role={_label(role)} permission={_label(permission)}",
            lambda: self.store.remove_role_permission(role, permission),
        )

    def create_user(self, actor, username, email):
        return self._apply(
            actor, AuditAction.CREATE_USER, f"user={username}",
            lambda: self.store.create_user(username, email),
        )

    def set_user_status(self, actor, user, status):
        return self._apply(
            actor, AuditAction.SET_USER_STATUS, f"user={_label(user)} status={status}",
            lambda: self.store.set_user_status(user, status),
        )

    def create_role(self, actor, name, description=None):
        return self._apply(
            actor, AuditAction.CREATE_ROLE, f"role={name}",
            lambda: self.store.create_role(name, description),
        )

    def delete_role(self, actor, name):
        return self._apply(
            actor, AuditAction.DELETE_ROLE, f"role={_label(name)}",
            lambda: self.store.delete_role(name),
        )

    def create_permission(self, actor, name, description=None, category=None):
        return self._apply(
            actor, AuditAction.CREATE_PERMISSION, f"permission={name}",
            lambda: self.store.create_permission(name, description, category),
        )

    # ------------------------------------------------------------------
    # Atomic unit
    # ------------------------------------------------------------------

    def _apply(self, actor, action, target, mutate):
        """Run ``mutate``, append the audit record, commit both or neither."""
        try:
            entity = mutate()
            record = self.audit_log.append(actor, action, target)
            self.session.commit()
        except Duplicate as exc:
            self._rollback()
            logger.info("No-op %s (%s): %s", action, target, exc.message)
            return Committed(record=None, noop=True)
        except IAMError as exc:
            self._rollback()
            logger.warning("Rejected %s (%s) by %s: %s", action, target, actor, exc.message)
            return Rejected.from_error(exc)
        except IntegrityError as exc:
            self._rollback()
            logger.warning("Commit of %s (%s) lost to a concurrent change: %s", action, target, exc.orig)
            return Rejected.from_error(
                ConstraintViolation("The change conflicts with a concurrent change.")
            )
        except SQLAlchemyError as exc:
            self._rollback()
            logger.error("Commit of %s (%s) failed: %s", action, target, exc)
            return Rejected.from_error(StorageError())

        logger.info("Committed audit #%s %s (%s) by %s", record.id, action, target, actor)
        return Committed(record=record, entity=entity)

    def _rollback(self):
        try:
            self.session.rollback()
        except SQLAlchemyError as exc:
            logger.error("Rollback failed: %s", exc)
