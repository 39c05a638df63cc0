"""Document storage for sessions, the conversation log and durable records.

The pipeline only needs four operations on a handful of named
collections: point read, partial merge, append, and "most recent N rows
where field = value".  There are two backends:

* :class:`InMemoryDocumentStore` for local dev, the CLI and tests.
* :class:`DynamoDocumentStore` for AWS.  One table per collection
  (``<prefix><collection>``, hash key ``id``).  ``recent`` queries a GSI
  named ``<field>-index`` with ``timestamp`` as its range key.

Merges are shallow (top-level fields) and last-write-wins; no
transactions are taken.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from careconnect.config import DYNAMODB_TABLE_PREFIX, STORAGE_BACKEND
from careconnect.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Collections ──────────────────────────────────────────────────────
SESSIONS = "sessions"
CONVERSATIONS = "conversations"
OUTBOUND_MESSAGES = "outbound_messages"
BOOKINGS = "bookings"
BOOKING_COOLDOWNS = "booking_cooldowns"
KNOWLEDGE_BASE = "knowledge_base"


class StorageError(Exception):
    """Raised when the storage backend cannot complete an operation."""


class DocumentStore(ABC):
    """Minimal document-store contract used by the pipeline."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the document or ``None`` if it does not exist."""

    @abstractmethod
    async def merge(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Create or partially update a document (top-level fields)."""

    @abstractmethod
    async def add(
        self, collection: str, document: dict[str, Any], doc_id: str | None = None,
    ) -> str:
        """Insert a new document and return its id."""

    @abstractmethod
    async def recent(
        self,
        collection: str,
        *,
        field: str,
        value: Any,
        order_by: str = "timestamp",
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Return up to *limit* documents with ``field == value``, newest first."""

    @abstractmethod
    async def scan(self, collection: str) -> list[dict[str, Any]]:
        """Return every document in *collection* (monitoring only)."""


# ── In-memory backend ───────────────────────────────────────────────


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, seed: dict[str, dict[str, dict[str, Any]]] | None = None) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = copy.deepcopy(seed or {})
        self._lock = threading.Lock()

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    async def merge(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            doc = self._data.setdefault(collection, {}).setdefault(doc_id, {"id": doc_id})
            doc.update(copy.deepcopy(fields))

    async def add(
        self, collection: str, document: dict[str, Any], doc_id: str | None = None,
    ) -> str:
        doc_id = doc_id or uuid.uuid4().hex
        with self._lock:
            self._data.setdefault(collection, {})[doc_id] = {"id": doc_id, **copy.deepcopy(document)}
        return doc_id

    async def recent(
        self,
        collection: str,
        *,
        field: str,
        value: Any,
        order_by: str = "timestamp",
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = [
                copy.deepcopy(doc)
                for doc in self._data.get(collection, {}).values()
                if doc.get(field) == value
            ]
        # Stable sort keeps insertion order for identical timestamps.
        rows = list(enumerate(rows))
        rows.sort(key=lambda pair: (str(pair[1].get(order_by) or ""), pair[0]), reverse=True)
        return [doc for _, doc in rows[:limit]]

    async def scan(self, collection: str) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._data.get(collection, {}).values()]


# ── DynamoDB backend ────────────────────────────────────────────────


def _to_dynamo(value: dict[str, Any]) -> dict[str, Any]:
    """DynamoDB rejects floats; round-trip through JSON with Decimal."""
    return json.loads(json.dumps(value, default=str), parse_float=Decimal)


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


class DynamoDocumentStore(DocumentStore):
    """boto3-backed store; blocking calls are pushed to a worker thread."""

    def __init__(self, table_prefix: str = DYNAMODB_TABLE_PREFIX, resource=None) -> None:
        self._prefix = table_prefix
        self._resource = resource  # lazy-init
        self._tables: dict[str, Any] = {}

    def _table(self, collection: str):
        if collection not in self._tables:
            if self._resource is None:
                import boto3

                self._resource = boto3.resource("dynamodb")
            self._tables[collection] = self._resource.Table(f"{self._prefix}{collection}")
        return self._tables[collection]

    async def _call(self, operation: str, fn, *args, **kwargs):
        try:
            with metrics.timed("dynamodb", operation):
                return await asyncio.to_thread(fn, *args, **kwargs)
        except Exception as exc:
            raise StorageError(f"DynamoDB {operation} failed: {exc}") from exc

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        resp = await self._call("get_item", self._table(collection).get_item, Key={"id": doc_id})
        item = resp.get("Item")
        return _from_dynamo(item) if item else None

    async def merge(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        fields = {k: v for k, v in fields.items() if k != "id"}
        if not fields:
            return
        names = {f"#f{i}": key for i, key in enumerate(fields)}
        values = {f":v{i}": value for i, value in enumerate(_to_dynamo(fields).values())}
        expression = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(fields)))
        await self._call(
            "update_item",
            self._table(collection).update_item,
            Key={"id": doc_id},
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
        )

    async def add(
        self, collection: str, document: dict[str, Any], doc_id: str | None = None,
    ) -> str:
        doc_id = doc_id or uuid.uuid4().hex
        await self._call(
            "put_item", self._table(collection).put_item, Item=_to_dynamo({**document, "id": doc_id}),
        )
        return doc_id

    async def recent(
        self,
        collection: str,
        *,
        field: str,
        value: Any,
        order_by: str = "timestamp",
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        from boto3.dynamodb.conditions import Key

        resp = await self._call(
            "query",
            self._table(collection).query,
            IndexName=f"{field}-index",
            KeyConditionExpression=Key(field).eq(value),
            ScanIndexForward=False,
            Limit=limit,
        )
        return [_from_dynamo(item) for item in resp.get("Items", [])]

    async def scan(self, collection: str) -> list[dict[str, Any]]:
        table = self._table(collection)
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {}
        while True:
            resp = await self._call("scan", table.scan, **kwargs)
            items.extend(_from_dynamo(item) for item in resp.get("Items", []))
            if "LastEvaluatedKey" not in resp:
                return items
            kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]


def create_document_store(backend: str = STORAGE_BACKEND) -> DocumentStore:
    if backend == "dynamodb":
        logger.info("Using DynamoDB document store (prefix=%s)", DYNAMODB_TABLE_PREFIX)
        return DynamoDocumentStore()
    if backend != "memory":
        logger.warning("Unknown STORAGE_BACKEND %r, using in-memory store", backend)
    return InMemoryDocumentStore()
