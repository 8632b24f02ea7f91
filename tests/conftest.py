"""
Pytest configuration and fixtures.
"""
import sys
import os
import pytest

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__) + '/..'))

from config import Config


class TestConfig(Config):
    TESTING = True
    # Flask-SQLAlchemy keeps one shared connection for in-memory SQLite
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    IAM_ALLOWED_ROLES = frozenset({'IAM_ADMIN', 'AUDITOR', 'DEVELOPER', 'VIEWER'})
    IAM_MAX_LOGIN_ATTEMPTS = 5
    IAM_SYSTEM_ACTOR = 'system'
    LOG_LEVEL = 'DEBUG'


@pytest.fixture
def app():
    """Create application with a fresh schema for each test."""
    from iamledger import create_app, db

    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def session(app):
    from iamledger import db
    return db.session


@pytest.fixture
def store(session):
    from iamledger.services import IdentityStore
    return IdentityStore(session)


@pytest.fixture
def audit_log(session):
    from iamledger.services import AuditLog
    return AuditLog(session)


@pytest.fixture
def evaluator(store):
    from iamledger.services import AccessEvaluator
    return AccessEvaluator(store)


@pytest.fixture
def workflow(store, audit_log):
    from iamledger.services import ProvisioningWorkflow
    return ProvisioningWorkflow(store, audit_log, TestConfig.IAM_ALLOWED_ROLES)


@pytest.fixture
def seeded(store, session):
    """
    Roles, permissions and two users, written straight to the store.

    IAM_ADMIN: USERS_EDIT, AUDIT_VIEW
    AUDITOR:   AUDIT_VIEW, AUDIT_EXPORT
    DEVELOPER: CODE_WRITE
    VIEWER is allow-listed but never created.
    """
    for name in ('USERS_EDIT', 'AUDIT_VIEW', 'AUDIT_EXPORT', 'CODE_WRITE'):
        store.create_permission(name)
    for name in ('IAM_ADMIN', 'AUDITOR', 'DEVELOPER'):
        store.create_role(name)

    store.add_role_permission('IAM_ADMIN', 'USERS_EDIT')
    store.add_role_permission('IAM_ADMIN', 'AUDIT_VIEW')
    store.add_role_permission('AUDITOR', 'AUDIT_VIEW')
    store.add_role_permission('AUDITOR', 'AUDIT_EXPORT')
    store.add_role_permission('DEVELOPER', 'CODE_WRITE')

    store.create_user('alice', 'alice@example.com')
    store.create_user('bob', 'bob@example.com')
    session.commit()
    return store
