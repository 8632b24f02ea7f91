"""Append-only audit ledger."""
import logging

from sqlalchemy.exc import SQLAlchemyError

from ..errors import StorageError
from ..models import AuditRecord

logger = logging.getLogger(__name__)

QUERY_BATCH_SIZE = 100


class AuditLog:
    """
    Writes and reads AuditRecord rows.

    Records are never updated or deleted here; the model refuses both at
    flush time as well.
    """

    def __init__(self, session):
        self.session = session

    def append(self, actor, action, target):
        """
        Insert one record and flush it so the database assigns the id.

        Returns:
            AuditRecord: the new record, with ``id`` populated
        """
        record = AuditRecord(actor=actor, action=action, target=target)
        try:
            self.session.add(record)
            self.session.flush()
        except SQLAlchemyError as exc:
            logger.error("Audit append failed (%s by %s): %s", action, actor, exc)
            raise StorageError() from exc
        logger.debug("Audit #%s %s %s by %s", record.id, action, target, actor)
        return record

    def query(self, actor=None, action=None, target_contains=None, since=None,
              order='desc', limit=None):
        """
        Stream records matching every given filter, ordered by id.

        The result is a generator: it is consumed once and cannot be
        restarted. Pass ``order='asc'`` for insertion order.
        """
        if order not in ('asc', 'desc'):
            raise ValueError(f"order must be 'asc' or 'desc', got {order!r}")

        query = self.session.query(AuditRecord)
        if actor is not None:
            query = query.filter(AuditRecord.actor == actor)
        if action is not None:
            query = query.filter(AuditRecord.action == action)
        if target_contains:
            query = query.filter(AuditRecord.target.contains(target_contains))
        if since is not None:
            query = query.filter(AuditRecord.timestamp >= since)

        query = query.order_by(AuditRecord.id.desc() if order == 'desc' else AuditRecord.id.asc())
        if limit is not None:
            query = query.limit(limit)

        return self._stream(query)

    def _stream(self, query):
        try:
            for record in query.yield_per(QUERY_BATCH_SIZE):
                yield record
        except SQLAlchemyError as exc:
            logger.error("Audit query failed: %s", exc)
            raise StorageError() from exc

    def latest(self):
        records = list(self.query(limit=1))
        return records[0] if records else None

    def count(self):
        try:
            return self.session.query(AuditRecord).count()
        except SQLAlchemyError as exc:
            logger.error("Audit count failed: %s", exc)
            raise StorageError() from exc
