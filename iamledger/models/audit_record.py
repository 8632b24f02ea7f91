"""
Append-only audit trail of access-affecting changes.

Records can only be inserted. Changing or removing one through the ORM,
either as a flushed object or as a bulk ``update()``/``delete()`` statement,
raises ConstraintViolation. Raw SQL that bypasses the ORM is not covered.
"""
from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..errors import ConstraintViolation
from .base import db


class AuditAction:
    ASSIGN_ROLE = 'ASSIGN_ROLE'
    REVOKE_ROLE = 'REVOKE_ROLE'
    GRANT_PERMISSION = 'GRANT_PERMISSION'
    REVOKE_PERMISSION = 'REVOKE_PERMISSION'
    CREATE_USER = 'CREATE_USER'
    SET_USER_STATUS = 'SET_USER_STATUS'
    CREATE_ROLE = 'CREATE_ROLE'
    DELETE_ROLE = 'DELETE_ROLE'
    CREATE_PERMISSION = 'CREATE_PERMISSION'


class AuditRecord(db.Model):
    __tablename__ = 'audit_records'
    # AUTOINCREMENT stops SQLite from handing out an id twice
    __table_args__ = {'sqlite_autoincrement': True}

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    actor = db.Column(db.String(100), nullable=False)
    action = db.Column(db.String(50), nullable=False, index=True)
    target = db.Column(db.String(255), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f'<AuditRecord {self.id} {self.action}>'


@event.listens_for(AuditRecord, 'before_update')
def _refuse_update(mapper, connection, target):
    raise ConstraintViolation(f"Audit record {target.id} is immutable.")


@event.listens_for(AuditRecord, 'before_delete')
def _refuse_delete(mapper, connection, target):
    raise ConstraintViolation(f"Audit record {target.id} cannot be deleted.")


@event.listens_for(Session, 'do_orm_execute')
def _refuse_bulk_mutation(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mappers = [orm_execute_state.bind_mapper, *orm_execute_state.all_mappers]
    if any(m is not None and m.class_ is AuditRecord for m in mappers):
        raise ConstraintViolation("Audit records cannot be updated or deleted.")
