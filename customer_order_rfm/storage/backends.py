"""Document-store backends for :class:`CustomerRepository`.

The repository only needs collection-level CRUD: list documents newest
first, fetch by id, write a batch atomically and delete a batch. Any backend
offering those four calls is substitutable.
"""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from sqlalchemy import Column, DateTime, String, create_engine, delete, select
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import JSON

logger = logging.getLogger(__name__)

Document = dict[str, Any]

COLLECTION_NAME = "customers"


class DocumentStore(Protocol):
    def list_documents(self) -> list[tuple[str, Document]]:
        """Return every document, most recently updated first."""

    def get_documents(self, doc_ids: Sequence[str]) -> dict[str, Document]:
        """Return the documents that exist among ``doc_ids``."""

    def write_batch(self, documents: Mapping[str, Document]) -> None:
        """Create or replace all ``documents`` atomically."""

    def delete_batch(self, doc_ids: Sequence[str]) -> int:
        """Delete ``doc_ids`` and return how many existed."""


def _find_none(value: Any, path: str = "") -> str | None:
    if value is None:
        return path or "<root>"
    if isinstance(value, Mapping):
        for key, item in value.items():
            found = _find_none(item, f"{path}.{key}" if path else str(key))
            if found:
                return found
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            found = _find_none(item, f"{path}[{index}]")
            if found:
                return found
    return None


class InMemoryDocumentStore:
    """Process-local store with the constraints of the hosted document store.

    Rejects documents containing ``None`` anywhere and batches larger than
    ``max_batch_size``. Thread-safe.
    """

    def __init__(self, max_batch_size: int = 500) -> None:
        self.max_batch_size = max_batch_size
        self._documents: dict[str, Document] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)

    def list_documents(self) -> list[tuple[str, Document]]:
        with self._lock:
            items = [(doc_id, copy.deepcopy(doc)) for doc_id, doc in self._documents.items()]
        items.sort(key=lambda item: str(item[1].get("lastUpdated", "")), reverse=True)
        return items

    def get_documents(self, doc_ids: Sequence[str]) -> dict[str, Document]:
        with self._lock:
            return {
                doc_id: copy.deepcopy(self._documents[doc_id])
                for doc_id in doc_ids
                if doc_id in self._documents
            }

    def write_batch(self, documents: Mapping[str, Document]) -> None:
        if len(documents) > self.max_batch_size:
            raise ValueError(
                f"Batch of {len(documents)} documents exceeds limit of {self.max_batch_size}"
            )
        for doc_id, doc in documents.items():
            bad_path = _find_none(doc)
            if bad_path:
                raise ValueError(
                    f"Document {doc_id} has an undefined value at {bad_path}"
                )
        with self._lock:
            for doc_id, doc in documents.items():
                self._documents[doc_id] = copy.deepcopy(dict(doc))

    def delete_batch(self, doc_ids: Sequence[str]) -> int:
        with self._lock:
            deleted = 0
            for doc_id in doc_ids:
                if self._documents.pop(doc_id, None) is not None:
                    deleted += 1
            return deleted


Base = declarative_base()


class CustomerDocumentRow(Base):
    __tablename__ = COLLECTION_NAME

    doc_id = Column(String, primary_key=True)
    body = Column(JSON, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False, index=True)


class SQLDocumentStore:
    """Document store on top of a SQL database via SQLAlchemy.

    Each document is one row holding the JSON body and an indexed
    ``last_updated`` column used for newest-first listing.
    """

    def __init__(self, url: str = "sqlite://", echo: bool = False) -> None:
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite") and (url == "sqlite://" or ":memory:" in url):
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self.engine = create_engine(url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"SQL document store ready ({self.engine.url.get_backend_name()})")

    def list_documents(self) -> list[tuple[str, Document]]:
        with self._session_factory() as session:
            rows = session.execute(
                select(CustomerDocumentRow).order_by(
                    CustomerDocumentRow.last_updated.desc()
                )
            ).scalars()
            return [(row.doc_id, dict(row.body)) for row in rows]

    def get_documents(self, doc_ids: Sequence[str]) -> dict[str, Document]:
        if not doc_ids:
            return {}
        with self._session_factory() as session:
            rows = session.execute(
                select(CustomerDocumentRow).where(
                    CustomerDocumentRow.doc_id.in_(list(doc_ids))
                )
            ).scalars()
            return {row.doc_id: dict(row.body) for row in rows}

    def write_batch(self, documents: Mapping[str, Document]) -> None:
        with self._session_factory.begin() as session:
            for doc_id, doc in documents.items():
                session.merge(
                    CustomerDocumentRow(
                        doc_id=doc_id,
                        body=dict(doc),
                        last_updated=_parse_updated(doc.get("lastUpdated")),
                    )
                )

    def delete_batch(self, doc_ids: Sequence[str]) -> int:
        if not doc_ids:
            return 0
        with self._session_factory.begin() as session:
            result = session.execute(
                delete(CustomerDocumentRow).where(
                    CustomerDocumentRow.doc_id.in_(list(doc_ids))
                )
            )
            return int(result.rowcount or 0)


def _parse_updated(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def create_store(url: str | None) -> DocumentStore:
    """Build a store from a URL; ``None`` or ``"memory://"`` is in-memory."""

    if not url or url == "memory://":
        return InMemoryDocumentStore()
    return SQLDocumentStore(url)
