"""Document-style persistence adapter with atomic multi-document batches.

The pipeline talks to storage in terms of collections of documents (plain
dictionaries keyed by an id) and stages every write of a cycle in a
:class:`WriteBatch`. :meth:`DocumentStore.commit` applies the staged writes in a
single database transaction, so a cycle is persisted completely or not at all.

Collections map onto ORM models:

    visits     -> Visit
    sessions   -> VisitorSession
    tasks      -> EnrichmentTask
    companies  -> Company (id is the normalized domain)
    ip_ranges  -> IPRange

Example:
    >>> store = DocumentStore(create_session_maker(engine))
    >>> batch = WriteBatch()
    >>> batch.update("visits", "v1", {"company_id": "acme.com"})
    >>> batch.set("companies", "acme.com", {"name": "Acme", "data": {}, "last_updated": now})
    >>> store.commit(batch)
    2
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import BatchCommitError, DocumentNotFoundError
from .base import Base
from .models import Company, EnrichmentTask, IPRange, Visit, VisitorSession

logger = logging.getLogger(__name__)

COLLECTIONS: dict[str, type[Base]] = {
    "visits": Visit,
    "sessions": VisitorSession,
    "tasks": EnrichmentTask,
    "companies": Company,
    "ip_ranges": IPRange,
}


class WriteOperation(str, Enum):
    """Kinds of staged writes."""

    SET = "set"  # create or fully overwrite
    UPDATE = "update"  # patch fields of an existing document


@dataclass(frozen=True)
class StagedWrite:
    """One ``(collection, id, operation, payload)`` entry of a batch."""

    collection: str
    document_id: str
    operation: WriteOperation
    payload: dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """Ordered staging list of writes committed together by :class:`DocumentStore`."""

    def __init__(self) -> None:
        self._writes: list[StagedWrite] = []

    def set(self, collection: str, document_id: str, payload: Mapping[str, Any]) -> None:
        """Stage a create-or-overwrite of ``collection/document_id``."""
        self._writes.append(StagedWrite(collection, str(document_id), WriteOperation.SET, dict(payload)))

    def update(self, collection: str, document_id: str, payload: Mapping[str, Any]) -> None:
        """Stage a field update; the document must exist at commit time."""
        self._writes.append(StagedWrite(collection, str(document_id), WriteOperation.UPDATE, dict(payload)))

    def extend(self, other: "WriteBatch") -> None:
        """Append every write staged in ``other``, preserving order."""
        self._writes.extend(other.writes)

    @property
    def writes(self) -> tuple[StagedWrite, ...]:
        return tuple(self._writes)

    def __len__(self) -> int:
        return len(self._writes)


class DocumentStore:
    """Collection/document facade over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    @staticmethod
    def new_id() -> str:
        """Return a fresh random document id."""
        return uuid.uuid4().hex

    def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        """Return a document by id, or None if it does not exist."""
        model = _model_for(collection)
        with self.session_factory() as session:
            row = session.get(model, document_id)
            return _to_document(row) if row is not None else None

    def query(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents whose fields equal the given values.

        A ``None`` value in ``where`` matches SQL NULL.
        """
        model = _model_for(collection)
        stmt = select(model)
        for key, value in (where or {}).items():
            column = _column_for(model, key)
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        if order_by:
            stmt = stmt.order_by(_column_for(model, order_by))
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.session_factory() as session:
            return [_to_document(row) for row in session.execute(stmt).scalars()]

    def commit(self, batch: WriteBatch) -> int:
        """Apply every staged write in one transaction and return the write count.

        Raises:
            BatchCommitError: If any write fails; the transaction is rolled back
                and none of the batch is persisted.
        """
        writes = batch.writes
        if not writes:
            return 0

        try:
            with self.session_factory() as session, session.begin():
                for write in writes:
                    self._apply(session, write)
        except (SQLAlchemyError, DocumentNotFoundError, TypeError, ValueError) as exc:
            logger.error(f"Batch commit of {len(writes)} writes failed: {exc}")
            raise BatchCommitError(f"Batch commit failed: {exc}", staged_writes=len(writes)) from exc

        logger.debug(f"Committed batch of {len(writes)} writes")
        return len(writes)

    def _apply(self, session: Session, write: StagedWrite) -> None:
        model = _model_for(write.collection)
        existing = session.get(model, _identity(model, write.document_id))

        if write.operation is WriteOperation.UPDATE:
            if existing is None:
                raise DocumentNotFoundError(write.collection, write.document_id)
            for key, value in write.payload.items():
                _column_for(model, key)
                setattr(existing, key, value)
            return

        # SET replaces the whole document, so stale fields from a previous
        # version never survive.
        if existing is not None:
            session.delete(existing)
            session.flush()
        values = dict(write.payload)
        values[_primary_key_name(model)] = _identity(model, write.document_id)
        session.add(model(**values))
        session.flush()


def _model_for(collection: str) -> type[Base]:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection {collection!r}") from None


def _column_for(model: type[Base], name: str) -> Any:
    columns = inspect(model).columns
    if name not in columns:
        raise ValueError(f"{model.__tablename__} has no field {name!r}")
    return getattr(model, name)


def _primary_key_name(model: type[Base]) -> str:
    return inspect(model).primary_key[0].name


def _identity(model: type[Base], document_id: str) -> Any:
    # ip_ranges uses an integer surrogate key; everything else is string-keyed.
    if model is IPRange:
        return int(document_id)
    return document_id


def _to_document(row: Base) -> dict[str, Any]:
    return {attr.key: getattr(row, attr.key) for attr in inspect(type(row)).column_attrs}


__all__ = [
    "COLLECTIONS",
    "DocumentStore",
    "StagedWrite",
    "WriteBatch",
    "WriteOperation",
]
