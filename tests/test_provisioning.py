import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from iamledger.errors import RejectionReason, StorageError
from iamledger import db
from iamledger.models import AuditAction, AuditRecord, RolePermission, UserRole, UserStatus
from iamledger.services import (
    AuditLog,
    IdentityStore,
    PairLocks,
    ProvisioningRequest,
    ProvisioningState,
    ProvisioningWorkflow,
)


def user_role_rows(session, username):
    user_id = IdentityStore(session).get_user(username).id
    return session.query(UserRole).filter_by(user_id=user_id).count()


def test_assign_commits_one_row_and_one_record(workflow, seeded, session, audit_log):
    before = audit_log.count()

    result = workflow.assign('root', 'alice', 'IAM_ADMIN')

    assert result.ok
    assert result.state == ProvisioningState.COMMITTED
    assert user_role_rows(session, 'alice') == 1
    assert audit_log.count() == before + 1

    record = result.record
    assert record.action == AuditAction.ASSIGN_ROLE
    assert record.actor == 'root'
    assert 'alice' in record.target
    assert 'IAM_ADMIN' in record.target

    newest = list(audit_log.query(order='desc', limit=1))
    assert [r.id for r in newest] == [record.id]


def test_assign_is_idempotent(workflow, seeded, session, audit_log):
    workflow.assign('root', 'alice', 'IAM_ADMIN')
    before = audit_log.count()

    again = workflow.assign('root', 'alice', 'IAM_ADMIN')

    assert again.ok
    assert again.noop
    assert again.record is None
    assert user_role_rows(session, 'alice') == 1
    assert audit_log.count() == before


def test_revoke(workflow, seeded, session, audit_log):
    workflow.assign('root', 'alice', 'AUDITOR')

    result = workflow.revoke('ops', 'alice', 'AUDITOR')

    assert result.ok and not result.noop
    assert result.record.action == AuditAction.REVOKE_ROLE
    assert result.record.actor == 'ops'
    assert user_role_rows(session, 'alice') == 0


def test_revoke_of_unheld_role_is_noop(workflow, seeded, audit_log):
    before = audit_log.count()
    result = workflow.revoke('root', 'bob', 'AUDITOR')
    assert result.ok and result.noop
    assert audit_log.count() == before


def test_unknown_role_changes_nothing(workflow, seeded, session, audit_log):
    before_rows = session.query(UserRole).count()
    before_audit = audit_log.count()

    request = ProvisioningRequest('root', 'alice', 'SUPERUSER', 'ASSIGN')
    result = workflow.submit(request)

    assert not result.ok
    assert result.reason == RejectionReason.UNKNOWN_ROLE
    assert not result.retryable
    assert request.state == ProvisioningState.REJECTED
    assert session.query(UserRole).count() == before_rows
    assert audit_log.count() == before_audit


def test_allowed_role_missing_from_store_is_not_found(workflow, seeded, audit_log):
    result = workflow.assign('root', 'alice', 'VIEWER')
    assert result.reason == RejectionReason.NOT_FOUND
    assert audit_log.count() == 0


def test_unknown_user_is_not_found(workflow, seeded, audit_log):
    result = workflow.assign('root', 'nobody', 'IAM_ADMIN')
    assert result.reason == RejectionReason.NOT_FOUND
    assert not result.retryable
    assert audit_log.count() == 0


def test_request_state_moves_to_committed(workflow, seeded):
    request = ProvisioningRequest('root', 'alice', 'DEVELOPER', 'ASSIGN')
    assert request.state == ProvisioningState.PENDING

    workflow.submit(request)
    assert request.state == ProvisioningState.COMMITTED


def test_request_rejects_unknown_action():
    with pytest.raises(ValueError):
        ProvisioningRequest('root', 'alice', 'IAM_ADMIN', 'PROMOTE')


def test_audit_failure_rolls_back_identity_change(workflow, seeded, session, audit_log, monkeypatch):
    def failing_append(actor, action, target):
        raise StorageError()

    monkeypatch.setattr(workflow.audit_log, 'append', failing_append)
    result = workflow.assign('root', 'alice', 'IAM_ADMIN')

    assert not result.ok
    assert result.reason == RejectionReason.STORAGE_ERROR
    assert result.retryable
    assert user_role_rows(session, 'alice') == 0
    assert audit_log.count() == 0

    # The same request succeeds once storage is back
    monkeypatch.undo()
    retry = workflow.assign('root', 'alice', 'IAM_ADMIN')
    assert retry.ok and not retry.noop
    assert user_role_rows(session, 'alice') == 1


def test_engine_errors_are_not_exposed(workflow, seeded, session, monkeypatch):
    def broken_append(actor, action, target):
        raise OperationalError('INSERT INTO audit_records', {}, Exception('disk I/O error'))

    monkeypatch.setattr(workflow.audit_log, 'append', broken_append)
    result = workflow.assign('root', 'alice', 'IAM_ADMIN')

    assert result.reason == RejectionReason.STORAGE_ERROR
    assert 'disk' not in result.message
    assert 'INSERT' not in result.message
    assert user_role_rows(session, 'alice') == 0


def test_identity_failure_writes_no_audit_record(workflow, seeded, audit_log, monkeypatch):
    def failing_add(user, role):
        raise StorageError()

    monkeypatch.setattr(workflow.store, 'add_user_role', failing_add)
    result = workflow.assign('root', 'alice', 'IAM_ADMIN')

    assert result.reason == RejectionReason.STORAGE_ERROR
    assert audit_log.count() == 0


def test_every_mapping_change_has_one_record(workflow, seeded, session, audit_log):
    changes = [
        workflow.assign('root', 'alice', 'IAM_ADMIN'),
        workflow.assign('root', 'alice', 'AUDITOR'),
        workflow.assign('root', 'alice', 'AUDITOR'),        # no-op
        workflow.revoke('root', 'alice', 'IAM_ADMIN'),
        workflow.revoke('root', 'bob', 'IAM_ADMIN'),        # no-op
        workflow.assign('root', 'bob', 'SUPERUSER'),        # rejected
        workflow.grant_permission('root', 'DEVELOPER', 'AUDIT_VIEW'),
        workflow.revoke_permission('root', 'DEVELOPER', 'AUDIT_VIEW'),
    ]
    applied = [c for c in changes if c.ok and not c.noop]

    records = list(audit_log.query(order='asc'))
    assert [r.id for r in records] == [c.record.id for c in applied]
    assert [r.action for r in records] == [
        AuditAction.ASSIGN_ROLE,
        AuditAction.ASSIGN_ROLE,
        AuditAction.REVOKE_ROLE,
        AuditAction.GRANT_PERMISSION,
        AuditAction.REVOKE_PERMISSION,
    ]


def test_grant_permission_is_audited(workflow, seeded, session):
    result = workflow.grant_permission('root', 'DEVELOPER', 'AUDIT_VIEW')

    assert result.ok
    assert result.record.target == 'role=DEVELOPER permission=AUDIT_VIEW'
    assert session.query(RolePermission).count() == 6

    again = workflow.grant_permission('root', 'DEVELOPER', 'AUDIT_VIEW')
    assert again.noop


def test_admin_changes_are_audited(workflow, seeded, session, audit_log):
    created = workflow.create_user('root', 'carol', 'carol@example.com')
    assert created.ok
    assert created.entity.username == 'carol'

    locked = workflow.set_user_status('root', 'carol', UserStatus.LOCKED)
    assert locked.record.target == 'user=carol status=LOCKED'

    assert workflow.create_role('root', 'ONCALL').ok
    assert workflow.create_permission('root', 'PAGE', category='ops').ok
    assert workflow.delete_role('root', 'ONCALL').ok

    actions = [r.action for r in audit_log.query(order='asc')]
    assert actions == [
        AuditAction.CREATE_USER,
        AuditAction.SET_USER_STATUS,
        AuditAction.CREATE_ROLE,
        AuditAction.CREATE_PERMISSION,
        AuditAction.DELETE_ROLE,
    ]


def test_constraint_violations_are_rejected(workflow, seeded, audit_log):
    duplicate_user = workflow.create_user('root', 'alice', 'new@example.com')
    assert duplicate_user.reason == RejectionReason.CONSTRAINT_VIOLATION

    bad_status = workflow.set_user_status('root', 'alice', 'SLEEPING')
    assert bad_status.reason == RejectionReason.CONSTRAINT_VIOLATION

    in_use = workflow.delete_role('root', 'AUDITOR')
    assert in_use.reason == RejectionReason.CONSTRAINT_VIOLATION
    assert not in_use.retryable

    assert audit_log.count() == 0


def test_from_config_reads_allowed_roles(app, seeded, session):
    workflow = ProvisioningWorkflow.from_config(session, app.config)
    assert workflow.allowed_roles == app.config['IAM_ALLOWED_ROLES']
    assert workflow.assign('root', 'alice', 'AUDITOR').ok


def test_store_and_audit_log_must_share_a_session(session):
    other = AuditLog(object())
    with pytest.raises(ValueError):
        ProvisioningWorkflow(IdentityStore(session), other, {'IAM_ADMIN'})


def test_pair_locks_serialize_same_pair_only():
    locks = PairLocks()
    same = locks.lock_for((1, 2))
    assert locks.lock_for((1, 2)) is same

    with same:
        other = locks.lock_for((1, 3))
        assert other.acquire(blocking=False)
        other.release()
        assert not locks.lock_for((1, 2)).acquire(blocking=False)


def test_pair_locks_across_threads():
    locks = PairLocks()
    order = []
    lock = locks.lock_for(('alice', 'IAM_ADMIN'))
    lock.acquire()

    def worker():
        with locks.lock_for(('alice', 'IAM_ADMIN')):
            order.append('worker')

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join(timeout=0.1)
    order.append('main')
    lock.release()
    thread.join(timeout=5)

    assert order == ['main', 'worker']


def test_assign_that_loses_a_race_is_noop(workflow, seeded, session, audit_log, monkeypatch):
    workflow.assign('root', 'alice', 'IAM_ADMIN')
    session.expunge_all()
    before = audit_log.count()

    # The existence check misses the row, so the insert itself hits the key
    monkeypatch.setattr(workflow.store, 'has_user_role', lambda user, role: False)
    result = workflow.assign('root', 'alice', 'IAM_ADMIN')
    monkeypatch.undo()

    assert result.ok and result.noop
    assert result.record is None
    assert user_role_rows(session, 'alice') == 1
    assert audit_log.count() == before


def test_workflows_share_one_lock_registry(app, session):
    first = ProvisioningWorkflow.from_config(session, app.config)
    second = ProvisioningWorkflow.from_config(session, app.config)

    assert first.locks is second.locks
    assert first.locks.lock_for((1, 1)) is second.locks.lock_for((1, 1))

    own = ProvisioningWorkflow.from_config(session, app.config, locks=PairLocks())
    assert own.locks is not first.locks


@pytest.fixture
def file_engine(app, tmp_path):
    """A file-backed database that threads can reach through their own sessions."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'iamledger.db'}",
        connect_args={'check_same_thread': False, 'timeout': 10},
    )
    db.metadata.create_all(engine)
    with Session(engine) as session:
        store = IdentityStore(session)
        store.create_role('IAM_ADMIN')
        store.create_user('alice', 'alice@example.com')
        session.commit()
    yield engine
    engine.dispose()


def run_assign(engine, results, locks=None, barrier=None):
    with Session(engine, expire_on_commit=False) as session:
        workflow = ProvisioningWorkflow(
            IdentityStore(session), AuditLog(session), {'IAM_ADMIN'}, locks=locks,
        )
        if barrier is not None:
            barrier.wait()
        results.append(workflow.assign('root', 'alice', 'IAM_ADMIN'))


def test_same_pair_from_two_threads(file_engine):
    results = []
    barrier = threading.Barrier(2)
    threads = [
        threading.Thread(target=run_assign, args=(file_engine, results), kwargs={'barrier': barrier})
        for _ in range(2)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(results) == 2
    assert all(r.ok for r in results)
    assert sorted(r.noop for r in results) == [False, True]

    with Session(file_engine) as session:
        assert session.query(UserRole).count() == 1
        assert session.query(AuditRecord).filter_by(action=AuditAction.ASSIGN_ROLE).count() == 1


def test_submit_waits_for_the_pair_lock(file_engine):
    locks = PairLocks()
    results = []
    with Session(file_engine) as session:
        store = IdentityStore(session)
        key = (store.get_user('alice').id, store.get_role('IAM_ADMIN').id)

    held = locks.lock_for(key)
    thread = threading.Thread(target=run_assign, args=(file_engine, results), kwargs={'locks': locks})
    with held:
        thread.start()
        thread.join(timeout=0.2)
        assert thread.is_alive()
        assert results == []
    thread.join(timeout=10)

    assert len(results) == 1
    assert results[0].ok and not results[0].noop
