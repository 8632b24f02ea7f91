"""Role and permission catalogue used to seed a fresh identity store."""


class Permissions:
    """Centralized permission constants."""
    USERS_VIEW = 'USERS_VIEW'
    USERS_EDIT = 'USERS_EDIT'
    ROLES_VIEW = 'ROLES_VIEW'
    ROLES_ASSIGN = 'ROLES_ASSIGN'
    AUDIT_VIEW = 'AUDIT_VIEW'
    AUDIT_EXPORT = 'AUDIT_EXPORT'
    CODE_READ = 'CODE_READ'
    CODE_WRITE = 'CODE_WRITE'
    DEPLOY = 'DEPLOY'
    REPORTS_VIEW = 'REPORTS_VIEW'


class Roles:
    IAM_ADMIN = 'IAM_ADMIN'
    AUDITOR = 'AUDITOR'
    DEVELOPER = 'DEVELOPER'
    VIEWER = 'VIEWER'


# A single, centralized map of the default grants.
# We use sets so that overlapping grants collapse.
ROLE_PERMISSIONS = {
    Roles.IAM_ADMIN: {
        Permissions.USERS_EDIT,
        Permissions.ROLES_ASSIGN,
        Permissions.AUDIT_VIEW,
    },
    Roles.AUDITOR: {
        Permissions.AUDIT_VIEW,
        Permissions.AUDIT_EXPORT,
        Permissions.REPORTS_VIEW,
    },
    Roles.DEVELOPER: {
        Permissions.CODE_WRITE,
        Permissions.DEPLOY,
    },
    Roles.VIEWER: {
        Permissions.REPORTS_VIEW,
        Permissions.CODE_READ,
    },
}

# Edit-style permissions imply their view counterpart
IMPLIED_PERMISSIONS = {
    Permissions.USERS_EDIT: Permissions.USERS_VIEW,
    Permissions.ROLES_ASSIGN: Permissions.ROLES_VIEW,
    Permissions.CODE_WRITE: Permissions.CODE_READ,
    Permissions.AUDIT_EXPORT: Permissions.AUDIT_VIEW,
}

for perms in ROLE_PERMISSIONS.values():
    for granted, implied in IMPLIED_PERMISSIONS.items():
        if granted in perms:
            perms.add(implied)


# Permission metadata (category, description)
PERMISSION_METADATA = {
    Permissions.USERS_VIEW: ('users', 'View user accounts'),
    Permissions.USERS_EDIT: ('users', 'Create users and change their status'),
    Permissions.ROLES_VIEW: ('roles', 'View roles and their grants'),
    Permissions.ROLES_ASSIGN: ('roles', 'Assign and revoke roles'),
    Permissions.AUDIT_VIEW: ('audit', 'Read the audit trail'),
    Permissions.AUDIT_EXPORT: ('audit', 'Export the audit trail'),
    Permissions.CODE_READ: ('code', 'Read repositories'),
    Permissions.CODE_WRITE: ('code', 'Push to repositories'),
    Permissions.DEPLOY: ('code', 'Deploy services'),
    Permissions.REPORTS_VIEW: ('reports', 'View access reports'),
}
