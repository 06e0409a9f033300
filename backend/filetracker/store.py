"""Generic document-store access over SQLAlchemy with explicit live queries.

Every collection maps to one table. Writes commit immediately and, once
committed, re-deliver the current result set to every live query open on
the written collection. There is no cross-collection transaction: each
``insert``/``update``/``delete`` is its own unit of work.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Mapping
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .exceptions import NotFoundError, StoreError

logger = logging.getLogger(__name__)

COLLECTIONS: dict[str, type] = {
    "fileRequests": models.FileRequest,
    "studyIds": models.StudyId,
    "users": models.User,
    "notifications": models.Notification,
    "preAddedUsers": models.PreAddedUser,
    "adminEmails": models.AdminEmail,
    "admins": models.Admin,
    "notificationPreferences": models.NotificationPreference,
    "auditLogs": models.AuditLog,
}

Filters = Mapping[str, Any]
Listener = Callable[[list[Any]], None]


def _model_for(collection: str) -> type:
    try:
        return COLLECTIONS[collection]
    except KeyError as exc:
        raise ValueError(f"Unknown collection {collection!r}") from exc


def _primary_key(model: type) -> str:
    return model.__mapper__.primary_key[0].key


def _coerce_id(model: type, doc_id: Any) -> Any:
    column = model.__mapper__.primary_key[0]
    if getattr(column.type, "as_uuid", False) and not isinstance(doc_id, UUID):
        try:
            return UUID(str(doc_id))
        except ValueError as exc:
            raise NotFoundError(model.__name__, doc_id) from exc
    return doc_id


def build_query(db: Session, collection: str, filters: Filters | None = None, order: str | None = None):
    """Translate an equality filter map into a query.

    Iterable filter values (list, tuple, set) become ``IN`` clauses.
    ``order`` names a column, prefixed with ``-`` for descending.
    """

    model = _model_for(collection)
    query = db.query(model)
    for field, value in (filters or {}).items():
        column = getattr(model, field)
        if isinstance(value, (list, tuple, set, frozenset)):
            query = query.filter(column.in_(list(value)))
        elif value is None:
            query = query.filter(column.is_(None))
        else:
            query = query.filter(column == value)
    if order:
        descending = order.startswith("-")
        column = getattr(model, order.lstrip("-"))
        query = query.order_by(column.desc() if descending else column.asc())
    return query


class LiveQuery:
    """A persistent read that pushes the full result set to its listeners.

    The current set is delivered once when a listener is attached and again
    after every committed write to the collection. ``listen`` returns the
    unsubscribe callable; it is the only cancellation primitive.
    """

    def __init__(self, hub: "SubscriptionHub", collection: str, filters: Filters | None, order: str | None):
        _model_for(collection)
        self.hub = hub
        self.collection = collection
        self.filters = dict(filters or {})
        self.order = order
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def snapshot(self) -> list[Any]:
        db = self.hub.session_factory()
        try:
            return build_query(db, self.collection, self.filters, self.order).all()
        finally:
            db.close()

    def listen(self, callback: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)
        self.hub._register(self)
        self._dispatch([callback], self.snapshot())

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)
                empty = not self._listeners
            if empty:
                self.hub._unregister(self)

        return unsubscribe

    @property
    def active(self) -> bool:
        return bool(self._listeners)

    def deliver(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        self._dispatch(listeners, self.snapshot())

    def _dispatch(self, listeners: Iterable[Listener], results: list[Any]) -> None:
        for listener in listeners:
            try:
                listener(results)
            except Exception:
                logger.exception("Live query listener failed for %s", self.collection)


class SubscriptionHub:
    """Process-wide registry of open live queries, keyed by collection."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory
        self._queries: dict[str, list[LiveQuery]] = {}
        self._lock = threading.Lock()

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from .database import SessionLocal

            return SessionLocal
        return self._session_factory

    def bind(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def subscribe(self, collection: str, filters: Filters | None = None, order: str | None = None) -> LiveQuery:
        return LiveQuery(self, collection, filters, order)

    def _register(self, query: LiveQuery) -> None:
        with self._lock:
            queries = self._queries.setdefault(query.collection, [])
            if query not in queries:
                queries.append(query)

    def _unregister(self, query: LiveQuery) -> None:
        with self._lock:
            queries = self._queries.get(query.collection, [])
            if query in queries:
                queries.remove(query)

    def notify(self, collection: str) -> None:
        with self._lock:
            queries = list(self._queries.get(collection, []))
        for query in queries:
            query.deliver()

    def clear(self) -> None:
        with self._lock:
            self._queries.clear()


hub = SubscriptionHub()


class DocumentStore:
    """CRUD over the tracker collections bound to one session."""

    def __init__(self, db: Session, subscriptions: SubscriptionHub | None = None):
        self.db = db
        self.subscriptions = subscriptions or hub

    def find(self, collection: str, filters: Filters | None = None, order: str | None = None) -> list[Any]:
        try:
            return build_query(self.db, collection, filters, order).all()
        except SQLAlchemyError as exc:
            self._fail(f"read {collection}", exc)

    def subscribe(self, collection: str, filters: Filters | None = None, order: str | None = None) -> LiveQuery:
        return self.subscriptions.subscribe(collection, filters, order)

    def get(self, collection: str, doc_id: Any) -> Any:
        model = _model_for(collection)
        try:
            document = self.db.get(model, _coerce_id(model, doc_id))
        except SQLAlchemyError as exc:
            self._fail(f"read {collection}", exc)
        if document is None:
            raise NotFoundError(model.__name__, doc_id)
        return document

    def get_or_none(self, collection: str, doc_id: Any) -> Any | None:
        try:
            return self.get(collection, doc_id)
        except NotFoundError:
            return None

    def insert(self, collection: str, values: Mapping[str, Any]) -> Any:
        model = _model_for(collection)
        document = model(**values)
        try:
            self.db.add(document)
            self.db.commit()
            self.db.refresh(document)
        except SQLAlchemyError as exc:
            self._fail(f"create {collection}", exc)
        self.subscriptions.notify(collection)
        return getattr(document, _primary_key(model))

    def upsert(self, collection: str, doc_id: Any, values: Mapping[str, Any]) -> Any:
        """Merge ``values`` into the document keyed by ``doc_id``, creating it if absent."""

        model = _model_for(collection)
        document = self.db.get(model, _coerce_id(model, doc_id))
        if document is None:
            document = model(**{_primary_key(model): doc_id, **values})
            self.db.add(document)
        else:
            self._apply(document, values)
        try:
            self.db.commit()
            self.db.refresh(document)
        except SQLAlchemyError as exc:
            self._fail(f"save {collection}", exc)
        self.subscriptions.notify(collection)
        return document

    def update(self, collection: str, doc_id: Any, values: Mapping[str, Any]) -> Any:
        """Last-write-wins partial update; no optimistic lock."""

        document = self.get(collection, doc_id)
        self._apply(document, values)
        try:
            self.db.commit()
            self.db.refresh(document)
        except SQLAlchemyError as exc:
            self._fail(f"update {collection}", exc)
        self.subscriptions.notify(collection)
        return document

    def delete(self, collection: str, doc_id: Any) -> None:
        document = self.get(collection, doc_id)
        try:
            self.db.delete(document)
            self.db.commit()
        except SQLAlchemyError as exc:
            self._fail(f"delete {collection}", exc)
        self.subscriptions.notify(collection)

    @staticmethod
    def _apply(document: Any, values: Mapping[str, Any]) -> None:
        for field, value in values.items():
            if not hasattr(type(document), field):
                raise ValueError(f"{type(document).__name__} has no field {field!r}")
            setattr(document, field, value)

    def _fail(self, action: str, exc: SQLAlchemyError):
        self.db.rollback()
        logger.error("Store operation failed: %s", action, exc_info=exc)
        raise StoreError(action, exc) from exc
