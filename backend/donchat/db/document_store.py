"""
Document store adapter.

Collections of schemaless documents persisted through SQLAlchemy, with the
operations the chat services need: create/get/update/delete, filtered and
ordered queries with an id cursor, and a live query that re-delivers the whole
collection to every subscriber after each committed write.

Ids and the ``createdAt``/``updatedAt`` timestamps belong to the adapter;
values the caller passes for them are ignored.
"""
import threading
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from donchat.core.errors import (
    ChatError,
    DocumentAlreadyExistsError,
    DocumentNotFoundError,
    PermissionDeniedError,
    StoreOperationError,
)
from donchat.models.document import Document
from donchat.utils.logger import get_logger

logger = get_logger(__name__)

RESERVED_FIELDS = ("id", "createdAt", "updatedAt")

# SQLSTATE for insufficient_privilege
PG_INSUFFICIENT_PRIVILEGE = "42501"

Filter = Tuple[str, str, Any]
ChangeCallback = Callable[[List[dict]], None]
ErrorCallback = Callable[[Exception], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO-8601, so stored timestamps sort lexicographically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def encode_value(value: Any) -> Any:
    return jsonable_encoder(value, custom_encoder={datetime: format_timestamp})


@dataclass
class QueryOptions:
    where: Sequence[Filter] = ()
    order_by: Optional[Tuple[str, str]] = None
    limit: Optional[int] = None
    start_after: Optional[str] = None


@dataclass
class Page:
    data: List[dict]
    last_id: Optional[str]
    has_more: bool


@dataclass(eq=False)
class _Subscriber:
    on_change: ChangeCallback
    on_error: Optional[ErrorCallback] = None
    active: bool = field(default=True)


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "==":
        return actual == expected
    if op == "!=":
        return actual != expected
    if op == "array-contains":
        return isinstance(actual, list) and expected in actual
    if op == "in":
        return actual in expected
    if actual is None:
        return False
    try:
        if op == "<":
            return actual < expected
        if op == "<=":
            return actual <= expected
        if op == ">":
            return actual > expected
        if op == ">=":
            return actual >= expected
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {op}")


def _matches(doc: dict, where: Sequence[Filter]) -> bool:
    return all(_compare(op, doc.get(name), encode_value(value)) for name, op, value in where)


def _sort_key(name: str):
    def key(doc: dict):
        value = doc.get(name)
        return (value is not None, value, doc["createdAt"], doc["id"])

    return key


class DocumentStore:
    """
    Every ``async`` method runs its SQLAlchemy session in the threadpool, so a
    slow round trip only delays its own caller. Subscriber callbacks always run
    on the event loop thread.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock
        self._subscribers: Dict[str, List[_Subscriber]] = defaultdict(list)
        # pysqlite connections cannot run two transactions from different threads at once
        bind = session_factory.kw.get("bind")
        self._lock = threading.Lock() if bind is not None and bind.dialect.name == "sqlite" else nullcontext()

    def now(self) -> datetime:
        """The clock the adapter stamps documents with."""
        return self._clock()

    # ===== CORE CRUD OPERATIONS =====

    async def create(self, collection: str, data: dict, id: Optional[str] = None) -> str:
        doc_id = id or uuid.uuid4().hex
        await run_in_threadpool(self._insert, collection, doc_id, data, self._clock(), id is not None)
        await self._notify(collection)
        return doc_id

    async def get_by_id(self, collection: str, id: str) -> Optional[dict]:
        return await run_in_threadpool(self._fetch, collection, id)

    async def update(self, collection: str, id: str, data: dict) -> None:
        await run_in_threadpool(self._merge, collection, id, data, self._clock())
        await self._notify(collection)

    async def delete(self, collection: str, id: str) -> None:
        if await run_in_threadpool(self._remove, collection, id):
            await self._notify(collection)

    # ===== QUERY OPERATIONS =====

    async def query(self, collection: str, options: Optional[QueryOptions] = None) -> List[dict]:
        options = options or QueryOptions()
        docs = await run_in_threadpool(self._load_collection, collection)
        docs = [doc for doc in docs if _matches(doc, options.where)]

        if options.order_by:
            name, direction = options.order_by
            docs.sort(key=_sort_key(name), reverse=direction == "desc")

        if options.start_after:
            positions = [index for index, doc in enumerate(docs) if doc["id"] == options.start_after]
            if not positions:
                raise DocumentNotFoundError(message=f"Cursor {options.start_after} not found")
            docs = docs[positions[0] + 1:]

        if options.limit is not None:
            docs = docs[: options.limit]
        return docs

    async def query_page(self, collection: str, options: QueryOptions, page_size: int) -> Page:
        options = QueryOptions(
            where=options.where,
            order_by=options.order_by,
            limit=page_size + 1,
            start_after=options.start_after,
        )
        docs = await self.query(collection, options)
        has_more = len(docs) > page_size
        if has_more:
            docs.pop()

        return Page(data=docs, last_id=docs[-1]["id"] if has_more else None, has_more=has_more)

    async def exists(self, collection: str, id: str) -> bool:
        return await self.get_by_id(collection, id) is not None

    async def count(self, collection: str, where: Sequence[Filter] = ()) -> int:
        return len(await self.query(collection, QueryOptions(where=where)))

    # ===== REAL-TIME OPERATIONS =====

    async def subscribe_to_collection(
        self,
        collection: str,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        """
        Deliver the whole collection to ``on_change`` now and after every write.

        Returns an idempotent unsubscribe function.
        """
        subscriber = _Subscriber(on_change=on_change, on_error=on_error)
        self._subscribers[collection].append(subscriber)
        logger.debug(f"Subscribed to {collection} ({len(self._subscribers[collection])} active)")

        def unsubscribe() -> None:
            if not subscriber.active:
                return
            subscriber.active = False
            subscribers = self._subscribers.get(collection, [])
            if subscriber in subscribers:
                subscribers.remove(subscriber)
            if not subscribers:
                self._subscribers.pop(collection, None)
            logger.debug(f"Unsubscribed from {collection}")

        try:
            docs = await run_in_threadpool(self._load_collection, collection)
        except ChatError as exc:
            self._deliver_error(collection, subscriber, exc)
        else:
            if subscriber.active:
                self._deliver(collection, subscriber, docs)

        return unsubscribe

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscribers.get(collection, []))

    # ===== UTILITY METHODS =====

    async def health_check(self) -> dict:
        start_time = time.perf_counter()
        try:
            await run_in_threadpool(self._ping)
            status = "healthy"
        except ChatError:
            status = "unhealthy"
        return {"status": status, "latency": round((time.perf_counter() - start_time) * 1000, 2)}

    # ===== INTERNALS (threadpool side) =====

    @contextmanager
    def _session(self, collection: str, action: str) -> Iterator[Session]:
        with self._lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except ChatError:
                session.rollback()
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error(f"Document store {action} error in {collection}: {exc}", exc_info=True)
                raise self._handle_store_error(exc) from exc
            finally:
                session.close()

    def _insert(self, collection: str, doc_id: str, data: dict, timestamp: datetime, check_existing: bool) -> None:
        with self._session(collection, "create") as session:
            if check_existing and session.get(Document, (collection, doc_id)) is not None:
                raise DocumentAlreadyExistsError()
            session.add(
                Document(
                    collection=collection,
                    id=doc_id,
                    data=self._encode_data(data),
                    created_at=timestamp,
                    updated_at=timestamp,
                )
            )

    def _fetch(self, collection: str, id: str) -> Optional[dict]:
        with self._session(collection, "get") as session:
            row = session.get(Document, (collection, id))
            return self._to_dict(row) if row is not None else None

    def _merge(self, collection: str, id: str, data: dict, timestamp: datetime) -> None:
        with self._session(collection, "update") as session:
            row = session.get(Document, (collection, id))
            if row is None:
                raise DocumentNotFoundError()
            # Reassign so the JSON column is flagged dirty
            row.data = {**row.data, **self._encode_data(data)}
            row.updated_at = timestamp

    def _remove(self, collection: str, id: str) -> bool:
        with self._session(collection, "delete") as session:
            row = session.get(Document, (collection, id))
            if row is None:
                return False
            session.delete(row)
            return True

    def _ping(self) -> None:
        with self._session("_health", "health") as session:
            session.execute(text("SELECT 1"))

    def _load_collection(self, collection: str) -> List[dict]:
        with self._session(collection, "query") as session:
            rows = session.scalars(
                select(Document)
                .where(Document.collection == collection)
                .order_by(Document.created_at, Document.id)
            ).all()
            return [self._to_dict(row) for row in rows]

    @staticmethod
    def _handle_store_error(exc: SQLAlchemyError) -> ChatError:
        if isinstance(exc, IntegrityError):
            return DocumentAlreadyExistsError()
        if isinstance(exc, DBAPIError) and getattr(exc.orig, "pgcode", None) == PG_INSUFFICIENT_PRIVILEGE:
            return PermissionDeniedError()
        return StoreOperationError()

    @staticmethod
    def _encode_data(data: dict) -> dict:
        encoded = encode_value(data)
        return {key: value for key, value in encoded.items() if key not in RESERVED_FIELDS}

    @staticmethod
    def _to_dict(row: Document) -> dict:
        return {
            **(row.data or {}),
            "id": row.id,
            "createdAt": format_timestamp(row.created_at),
            "updatedAt": format_timestamp(row.updated_at),
        }

    # ===== INTERNALS (loop side) =====

    async def _notify(self, collection: str) -> None:
        if not self._subscribers.get(collection):
            return

        try:
            docs = await run_in_threadpool(self._load_collection, collection)
        except ChatError as exc:
            for subscriber in list(self._subscribers.get(collection, [])):
                self._deliver_error(collection, subscriber, exc)
            return

        for subscriber in list(self._subscribers.get(collection, [])):
            if subscriber.active:
                # Each subscriber re-filters, so hand out independent copies
                self._deliver(collection, subscriber, [dict(doc) for doc in docs])

    def _deliver(self, collection: str, subscriber: _Subscriber, docs: List[dict]) -> None:
        try:
            subscriber.on_change(docs)
        except Exception as exc:
            self._deliver_error(collection, subscriber, exc)

    @staticmethod
    def _deliver_error(collection: str, subscriber: _Subscriber, exc: Exception) -> None:
        logger.error(f"Document store subscription error in {collection}: {exc}")
        if subscriber.on_error is None:
            return
        try:
            subscriber.on_error(exc)
        except Exception:
            logger.exception(f"Subscription error handler failed in {collection}")
