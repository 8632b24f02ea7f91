"""
Identity store: users, roles, permissions and the two mapping tables.

The store works against an injected SQLAlchemy session and only ever
flushes. Committing (or rolling back) is left to the caller, normally
the provisioning workflow, so that a mapping change and its audit record
land in the same transaction.
"""
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ConstraintViolation, Duplicate, NotFound, StorageError
from ..models import Permission, Role, RolePermission, User, UserRole, UserStatus

logger = logging.getLogger(__name__)


class IdentityStore:
    def __init__(self, session):
        self.session = session

    def _flush(self, on_conflict=None):
        """
        Flush pending changes, translating engine errors.

        ``on_conflict`` replaces the generic ConstraintViolation for inserts
        whose only possible integrity failure is a duplicate key.
        """
        try:
            self.session.flush()
        except IntegrityError as exc:
            logger.warning("Integrity error on flush: %s", exc.orig)
            if on_conflict is not None:
                raise on_conflict from exc
            raise ConstraintViolation("The change conflicts with an existing record.") from exc
        except SQLAlchemyError as exc:
            logger.error("Storage failure on flush: %s", exc)
            raise StorageError() from exc

    def read(self, fn):
        try:
            return fn()
        except SQLAlchemyError as exc:
            logger.error("Storage failure on read: %s", exc)
            raise StorageError() from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username, email, status=UserStatus.ACTIVE):
        if self.read(lambda: self.session.query(User.id).filter_by(username=username).first()):
            raise ConstraintViolation(f"Username '{username}' is already taken.")
        if self.read(lambda: self.session.query(User.id).filter_by(email=email).first()):
            raise ConstraintViolation(f"Email '{email}' is already registered.")

        user = User(username=username, email=email, status=status)
        self.session.add(user)
        self._flush()
        return user

    def get_user(self, ref):
        """Resolve a User instance, primary key or username to a User."""
        if isinstance(ref, User):
            return ref
        if isinstance(ref, int):
            user = self.read(lambda: self.session.get(User, ref))
        else:
            user = self.read(lambda: self.session.query(User).filter_by(username=ref).first())
        if user is None:
            raise NotFound(f"User '{ref}' does not exist.")
        return user

    def list_users(self, status=None):
        query = self.session.query(User)
        if status is not None:
            query = query.filter_by(status=status)
        return self.read(lambda: query.order_by(User.username).all())

    def set_user_status(self, user, status):
        user = self.get_user(user)
        user.status = status  # validated on the model
        self._flush()
        return user

    # ------------------------------------------------------------------
    # Roles and permissions
    # ------------------------------------------------------------------

    def create_role(self, name, description=None):
        if self.read(lambda: self.session.query(Role.id).filter_by(name=name).first()):
            raise ConstraintViolation(f"Role '{name}' already exists.")
        role = Role(name=name, description=description)
        self.session.add(role)
        self._flush()
        return role

    def get_role(self, ref):
        if isinstance(ref, Role):
            return ref
        role = self.read(lambda: self.session.query(Role).filter_by(name=ref).first())
        if role is None:
            raise NotFound(f"Role '{ref}' does not exist.")
        return role

    def list_roles(self):
        return self.read(lambda: self.session.query(Role).order_by(Role.name).all())

    def delete_role(self, ref):
        """Remove a role that nobody holds and that grants nothing."""
        role = self.get_role(ref)
        holders = self.read(lambda: self.session.query(UserRole).filter_by(role_id=role.id).count())
        grants = self.read(lambda: self.session.query(RolePermission).filter_by(role_id=role.id).count())
        if holders or grants:
            raise ConstraintViolation(
                f"Role '{role.name}' is still in use ({holders} holders, {grants} permissions)."
            )
        self.session.delete(role)
        self._flush()
        return role

    def create_permission(self, name, description=None, category=None):
        if self.read(lambda: self.session.query(Permission.id).filter_by(name=name).first()):
            raise ConstraintViolation(f"Permission '{name}' already exists.")
        permission = Permission(name=name, description=description, category=category)
        self.session.add(permission)
        self._flush()
        return permission

    def get_permission(self, ref):
        if isinstance(ref, Permission):
            return ref
        permission = self.read(lambda: self.session.query(Permission).filter_by(name=ref).first())
        if permission is None:
            raise NotFound(f"Permission '{ref}' does not exist.")
        return permission

    # ------------------------------------------------------------------
    # Role <-> Permission
    # ------------------------------------------------------------------

    def add_role_permission(self, role, permission):
        role = self.get_role(role)
        permission = self.get_permission(permission)
        existing = self.read(
            lambda: self.session.get(RolePermission, (role.id, permission.id))
        )
        duplicate = Duplicate(f"Role '{role.name}' already grants '{permission.name}'.")
        if existing is not None:
            raise duplicate
        link = RolePermission(role_id=role.id, permission_id=permission.id)
        self.session.add(link)
        # Both parents are resolved, so a key clash means another writer got there first
        self._flush(on_conflict=duplicate)
        return link

    def remove_role_permission(self, role, permission):
        role = self.get_role(role)
        permission = self.get_permission(permission)
        link = self.read(
            lambda: self.session.get(RolePermission, (role.id, permission.id))
        )
        if link is None:
            raise Duplicate(f"Role '{role.name}' does not grant '{permission.name}'.")
        self.session.delete(link)
        self._flush()
        return link

    def role_permissions(self, role):
        role = self.get_role(role)
        return self.read(
            lambda: self.session.query(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(RolePermission.role_id == role.id)
            .order_by(Permission.name)
            .all()
        )

    # ------------------------------------------------------------------
    # User <-> Role
    # ------------------------------------------------------------------

    def add_user_role(self, user, role):
        user = self.get_user(user)
        role = self.get_role(role)
        duplicate = Duplicate(f"User '{user.username}' already holds '{role.name}'.")
        if self.has_user_role(user, role):
            raise duplicate
        link = UserRole(user_id=user.id, role_id=role.id)
        self.session.add(link)
        self._flush(on_conflict=duplicate)
        return link

    def remove_user_role(self, user, role):
        user = self.get_user(user)
        role = self.get_role(role)
        link = self.read(lambda: self.session.get(UserRole, (user.id, role.id)))
        if link is None:
            raise Duplicate(f"User '{user.username}' does not hold '{role.name}'.")
        self.session.delete(link)
        self._flush()
        return link

    def has_user_role(self, user, role):
        user = self.get_user(user)
        role = self.get_role(role)
        return self.read(
            lambda: self.session.query(UserRole.user_id)
            .filter_by(user_id=user.id, role_id=role.id)
            .first()
        ) is not None

    def user_roles(self, user):
        user = self.get_user(user)
        return self.read(
            lambda: self.session.query(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(UserRole.user_id == user.id)
            .order_by(Role.name)
            .all()
        )
