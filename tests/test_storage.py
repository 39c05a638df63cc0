"""Tests for the document-store backends."""

from __future__ import annotations

import inspect
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from careconnect.services.storage import (
    DocumentStore,
    DynamoDocumentStore,
    InMemoryDocumentStore,
    StorageError,
    create_document_store,
)


class TestInMemoryDocumentStore:
    async def test_get_missing_returns_none(self, store):
        assert await store.get("sessions", "nobody") is None

    async def test_merge_creates_then_updates(self, store):
        await store.merge("sessions", "u1", {"mode": "AI_MODE", "count": 1})
        await store.merge("sessions", "u1", {"count": 2})
        assert await store.get("sessions", "u1") == {"id": "u1", "mode": "AI_MODE", "count": 2}

    async def test_returned_documents_are_copies(self, store):
        await store.merge("sessions", "u1", {"booking_state": {"step": "x"}})
        doc = await store.get("sessions", "u1")
        doc["booking_state"]["step"] = "changed"
        assert (await store.get("sessions", "u1"))["booking_state"] == {"step": "x"}

    async def test_add_generates_id(self, store):
        doc_id = await store.add("bookings", {"customer_name": "Kim"})
        assert (await store.get("bookings", doc_id))["customer_name"] == "Kim"

    async def test_add_with_explicit_id(self, store):
        assert await store.add("bookings", {"a": 1}, doc_id="evt-1") == "evt-1"

    async def test_recent_filters_orders_and_limits(self, store):
        for i, user in enumerate(["u1", "u2", "u1", "u1"]):
            await store.add("conversations", {"user_id": user, "text": str(i),
                                              "timestamp": f"2025-01-15T02:00:0{i}"})
        rows = await store.recent("conversations", field="user_id", value="u1", limit=2)
        assert [r["text"] for r in rows] == ["3", "2"]

    async def test_scan_returns_all(self):
        store = InMemoryDocumentStore(seed={"sessions": {"a": {"id": "a"}, "b": {"id": "b"}}})
        assert {d["id"] for d in await store.scan("sessions")} == {"a", "b"}
        assert await store.scan("empty") == []


class TestDynamoDocumentStore:
    @pytest.fixture
    def table(self):
        return MagicMock()

    @pytest.fixture
    def dynamo(self, table):
        resource = MagicMock()
        resource.Table.return_value = table
        return DynamoDocumentStore(table_prefix="test-", resource=resource)

    async def test_get_converts_decimals(self, dynamo, table):
        table.get_item.return_value = {"Item": {"id": "u1", "conversation_count": Decimal("3")}}
        assert await dynamo.get("sessions", "u1") == {"id": "u1", "conversation_count": 3}
        table.get_item.assert_called_once_with(Key={"id": "u1"})

    async def test_get_missing_item(self, dynamo, table):
        table.get_item.return_value = {}
        assert await dynamo.get("sessions", "u1") is None

    async def test_merge_builds_update_expression(self, dynamo, table):
        await dynamo.merge("sessions", "u1", {"id": "u1", "mode": "HUMAN_MODE", "score": 0.5})
        kwargs = table.update_item.call_args.kwargs
        assert kwargs["Key"] == {"id": "u1"}
        assert kwargs["UpdateExpression"] == "SET #f0 = :v0, #f1 = :v1"
        assert kwargs["ExpressionAttributeNames"] == {"#f0": "mode", "#f1": "score"}
        assert kwargs["ExpressionAttributeValues"] == {":v0": "HUMAN_MODE", ":v1": Decimal("0.5")}

    async def test_table_name_uses_prefix(self, dynamo):
        await dynamo.add("bookings", {"a": 1}, doc_id="evt-1")
        dynamo._resource.Table.assert_called_once_with("test-bookings")

    async def test_backend_errors_become_storage_error(self, dynamo, table):
        table.get_item.side_effect = RuntimeError("throttled")
        with pytest.raises(StorageError, match="get_item"):
            await dynamo.get("sessions", "u1")

    async def test_scan_follows_pagination(self, dynamo, table):
        table.scan.side_effect = [
            {"Items": [{"id": "a"}], "LastEvaluatedKey": {"id": "a"}},
            {"Items": [{"id": "b"}]},
        ]
        assert [d["id"] for d in await dynamo.scan("sessions")] == ["a", "b"]
        assert table.scan.call_args_list[1].kwargs == {"ExclusiveStartKey": {"id": "a"}}


class TestCreateDocumentStore:
    def test_memory_backend(self):
        assert isinstance(create_document_store("memory"), InMemoryDocumentStore)

    def test_unknown_backend_falls_back_to_memory(self):
        assert isinstance(create_document_store("redis"), InMemoryDocumentStore)

    def test_dynamodb_backend(self):
        assert isinstance(create_document_store("dynamodb"), DynamoDocumentStore)


class TestBackendSignatures:
    @pytest.mark.parametrize("backend", [InMemoryDocumentStore, DynamoDocumentStore])
    @pytest.mark.parametrize("method", ["get", "merge", "add", "recent", "scan"])
    def test_backends_match_the_abstract_contract(self, backend, method):
        expected = inspect.signature(getattr(DocumentStore, method))
        assert inspect.signature(getattr(backend, method)) == expected
