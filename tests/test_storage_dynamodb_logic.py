"""Unit tests for DynamoDB and S3 adapter logic that do not require a live endpoint."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest
from boto3.dynamodb.types import Binary
from botocore.exceptions import ClientError

from cardboard.config import CardboardConfig
from cardboard.errors import ConditionalCheckFailedError, StorageBackendError
from cardboard.storage import MUST_NOT_EXIST, Condition
from cardboard.storage_dynamodb import (
    DynamoDBKeyValueStore,
    _condition_expression,
    _from_dynamo,
    _to_dynamo,
    _update_expression,
)
from cardboard.storage_s3 import S3BlobStore


def _client_error(code: str, operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _StubTable:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.pages: list[dict[str, Any]] = []
        self.error: ClientError | None = None

    def _record(self, name: str, kwargs: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error
        return self.pages.pop(0) if self.pages else {}

    def put_item(self, **kwargs: Any) -> dict[str, Any]:
        return self._record("put_item", kwargs)

    def update_item(self, **kwargs: Any) -> dict[str, Any]:
        return self._record("update_item", kwargs)

    def query(self, **kwargs: Any) -> dict[str, Any]:
        return self._record("query", kwargs)

    def get_item(self, **kwargs: Any) -> dict[str, Any]:
        return self._record("get_item", kwargs)


class _StubResource:
    def __init__(self, responses: list[dict[str, Any]]) -> None:
        self.responses = responses
        self.requests: list[dict[str, Any]] = []

    def batch_get_item(self, RequestItems: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(RequestItems)
        return self.responses.pop(0)


def _store(table: _StubTable | None = None, resource: Any = None) -> DynamoDBKeyValueStore:
    store = object.__new__(DynamoDBKeyValueStore)
    store.table_name = "geo"
    store._config = CardboardConfig()
    store._table = table or _StubTable()
    store._resource = resource
    return store


def test_value_conversion() -> None:
    item = {"version": 5, "west": -77.5, "aggregated": True, "cells": ["a"], "val": b"x", "blob": None}
    converted = _to_dynamo(item)
    assert converted["west"] == Decimal("-77.5")
    assert converted["version"] == 5
    assert converted["blob"] is None
    back = _from_dynamo({**converted, "version": Decimal("5"), "val": Binary(b"x")})
    assert back == item
    assert isinstance(back["version"], int)


def test_condition_expression_compiles() -> None:
    assert _condition_expression(None) is None
    assert _condition_expression(Condition()) is None
    expr = _condition_expression(Condition(exists=True, equals={"version": 3}))
    assert expr is not None
    assert expr.get_expression()["operator"] == "AND"


def test_update_expression_placeholders() -> None:
    expr, names, values = _update_expression({"west": 1.5}, {"count": 1, "size": -3})
    assert expr == "SET #set0 = :set0 ADD #add0 :add0, #add1 :add1"
    assert names == {"#set0": "west", "#add0": "count", "#add1": "size"}
    assert values[":set0"] == Decimal("1.5")
    assert values[":add1"] == -3


def test_conditional_failure_maps_to_domain_error() -> None:
    table = _StubTable()
    table.error = _client_error("ConditionalCheckFailedException")
    store = _store(table)
    with pytest.raises(ConditionalCheckFailedError):
        store.put_item({"dataset": "d", "id": "x"}, condition=MUST_NOT_EXIST)
    assert "ConditionExpression" in table.calls[0][1]


def test_other_client_errors_map_to_storage_error() -> None:
    table = _StubTable()
    table.error = _client_error("ProvisionedThroughputExceededException")
    store = _store(table)
    with pytest.raises(StorageBackendError) as exc:
        store.get_item("d", "x")
    assert exc.value.operation == "get_item"


def test_update_item_return_values() -> None:
    table = _StubTable()
    table.pages = [{"Attributes": {"dataset": "d", "id": "x", "version": Decimal("7")}}, {}]
    store = _store(table)
    old = store.update_item("d", "x", set={"version": 8}, return_values="ALL_OLD")
    assert old == {"dataset": "d", "id": "x", "version": 7}
    assert table.calls[0][1]["ReturnValues"] == "ALL_OLD"
    assert store.update_item("d", "x", add={"count": 1}) is None
    with pytest.raises(StorageBackendError):
        store.update_item("d", "x")


def test_query_follows_pagination() -> None:
    table = _StubTable()
    table.pages = [
        {"Items": [{"dataset": "d", "id": "id!a"}], "LastEvaluatedKey": {"dataset": "d", "id": "id!a"}},
        {"Items": [{"dataset": "d", "id": "id!b"}]},
    ]
    store = _store(table)
    assert [i["id"] for i in store.query("d", "id!")] == ["id!a", "id!b"]
    assert table.calls[1][1]["ExclusiveStartKey"] == {"dataset": "d", "id": "id!a"}
    assert table.calls[0][1]["ConsistentRead"] is True


def test_batch_get_retries_unprocessed_keys_and_keeps_order(monkeypatch) -> None:
    monkeypatch.setattr("cardboard.storage_dynamodb.time.sleep", lambda _s: None)
    resource = _StubResource(
        [
            {
                "Responses": {"geo": [{"dataset": "d", "id": "b"}]},
                "UnprocessedKeys": {"geo": {"Keys": [{"dataset": "d", "id": "a"}]}},
            },
            {"Responses": {"geo": [{"dataset": "d", "id": "a"}]}},
        ]
    )
    store = _store(resource=resource)
    got = store.batch_get_items("d", ["a", "b", "a"])
    assert [i["id"] for i in got] == ["a", "b"]
    assert len(resource.requests) == 2
    assert resource.requests[1] == {"geo": {"Keys": [{"dataset": "d", "id": "a"}]}}


def test_batch_get_chunks_by_hundred(monkeypatch) -> None:
    ids = [f"id!{i:03d}" for i in range(150)]
    resource = _StubResource(
        [
            {"Responses": {"geo": [{"dataset": "d", "id": i} for i in ids[:100]]}},
            {"Responses": {"geo": [{"dataset": "d", "id": i} for i in ids[100:]]}},
        ]
    )
    store = _store(resource=resource)
    got = store.batch_get_items("d", ids)
    assert [i["id"] for i in got] == ids
    assert [len(r["geo"]["Keys"]) for r in resource.requests] == [100, 50]


class _StubS3:
    def __init__(self, error: ClientError | None = None) -> None:
        self.error = error
        self.deleted: list[str] = []

    def delete_object(self, Bucket: str, Key: str) -> None:
        if self.error is not None:
            raise self.error
        self.deleted.append(Key)


def _s3(client: _StubS3) -> S3BlobStore:
    store = object.__new__(S3BlobStore)
    store.bucket = "bucket"
    store.prefix = "root"
    store._config = CardboardConfig()
    store._s3 = client
    return store


def test_s3_keys_are_prefixed() -> None:
    client = _StubS3()
    _s3(client).delete_object("/cardboard/d/f/1")
    assert client.deleted == ["root/cardboard/d/f/1"]


def test_s3_delete_missing_is_noop() -> None:
    _s3(_StubS3(_client_error("NoSuchKey", "DeleteObject"))).delete_object("k")


def test_s3_delete_other_errors_raise() -> None:
    with pytest.raises(StorageBackendError):
        _s3(_StubS3(_client_error("AccessDenied", "DeleteObject"))).delete_object("k")
