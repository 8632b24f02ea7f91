"""
Models package for the iamledger identity store.
"""
from .base import db

from .user import User, UserStatus
from .role import Role
from .permission import Permission
from .role_permission import RolePermission
from .user_role import UserRole
from .audit_record import AuditRecord, AuditAction

__all__ = [
    'db',
    'User',
    'UserStatus',
    'Role',
    'Permission',
    'RolePermission',
    'UserRole',
    'AuditRecord',
    'AuditAction',
]
