"""DynamoDB key-value backend with server-side conditional writes."""

from __future__ import annotations

import logging
import random
import time
from decimal import Decimal
from typing import Any, Iterator, Mapping

import boto3
from boto3.dynamodb.conditions import Attr, ConditionBase, Key
from boto3.dynamodb.types import Binary
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cardboard.config import CardboardConfig
from cardboard.errors import ConditionalCheckFailedError, StorageBackendError
from cardboard.storage import Condition

logger = logging.getLogger(__name__)

_BATCH_GET_LIMIT = 100


def _to_dynamo(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, Binary):
        return bytes(value.value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


def _condition_expression(condition: Condition | None) -> ConditionBase | None:
    """Compile a Condition into a boto3 condition expression."""
    if condition is None:
        return None
    parts: list[ConditionBase] = []
    if condition.exists is True:
        parts.append(Attr("id").exists())
    elif condition.exists is False:
        parts.append(Attr("id").not_exists())
    for name, value in condition.equals.items():
        parts.append(Attr(name).eq(_to_dynamo(value)))
    for name, value in condition.greater_than.items():
        parts.append(Attr(name).gt(_to_dynamo(value)))
    for name, value in condition.less_than.items():
        parts.append(Attr(name).lt(_to_dynamo(value)))
    if not parts:
        return None
    expr = parts[0]
    for part in parts[1:]:
        expr = expr & part
    return expr


def _update_expression(
    set: Mapping[str, Any] | None,
    add: Mapping[str, int | float] | None,
) -> tuple[str, dict[str, str], dict[str, Any]]:
    """Build an UpdateExpression with its own placeholder namespace."""
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    clauses: list[str] = []

    set_parts = []
    for i, (name, value) in enumerate((set or {}).items()):
        names[f"#set{i}"] = name
        values[f":set{i}"] = _to_dynamo(value)
        set_parts.append(f"#set{i} = :set{i}")
    if set_parts:
        clauses.append("SET " + ", ".join(set_parts))

    add_parts = []
    for i, (name, delta) in enumerate((add or {}).items()):
        names[f"#add{i}"] = name
        values[f":add{i}"] = _to_dynamo(delta)
        add_parts.append(f"#add{i} :add{i}")
    if add_parts:
        clauses.append("ADD " + ", ".join(add_parts))

    return " ".join(clauses), names, values


class DynamoDBKeyValueStore:
    """DynamoDB table with hash key ``dataset`` and range key ``id``."""

    def __init__(self, *, table: str, config: CardboardConfig) -> None:
        self.table_name = table
        self._config = config
        self._session = boto3.Session(region_name=config.region)
        self._resource = self._session.resource(
            "dynamodb",
            region_name=config.region,
            endpoint_url=config.dynamodb_endpoint_url,
            config=BotoConfig(
                connect_timeout=config.request_timeout_s,
                read_timeout=config.request_timeout_s,
                retries={"max_attempts": 5, "mode": "standard"},
            ),
        )
        self._table = self._resource.Table(table)

    def _call(self, operation: str, fn: Any, **kwargs: Any) -> Any:
        try:
            return fn(**kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "ConditionalCheckFailedException":
                raise ConditionalCheckFailedError() from e
            raise StorageBackendError(operation, str(e)) from e
        except BotoCoreError as e:
            raise StorageBackendError(operation, str(e)) from e

    def create_table(self) -> None:
        try:
            self._resource.create_table(
                TableName=self.table_name,
                KeySchema=[
                    {"AttributeName": "dataset", "KeyType": "HASH"},
                    {"AttributeName": "id", "KeyType": "RANGE"},
                ],
                AttributeDefinitions=[
                    {"AttributeName": "dataset", "AttributeType": "S"},
                    {"AttributeName": "id", "AttributeType": "S"},
                ],
                BillingMode="PAY_PER_REQUEST",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code != "ResourceInUseException":
                raise StorageBackendError("create_table", str(e)) from e
            logger.info("Table %s already exists", self.table_name)
            return
        except BotoCoreError as e:
            raise StorageBackendError("create_table", str(e)) from e
        self._resource.meta.client.get_waiter("table_exists").wait(TableName=self.table_name)
        logger.info("Created table %s", self.table_name)

    def close(self) -> None:
        self._resource.meta.client.close()

    def storage_info(self) -> dict[str, Any]:
        return {
            "backend": "dynamodb",
            "table": self.table_name,
            "region": self._config.region,
            "endpoint_url": self._config.dynamodb_endpoint_url,
        }

    def get_item(self, dataset: str, id: str) -> dict[str, Any] | None:
        resp = self._call(
            "get_item",
            self._table.get_item,
            Key={"dataset": dataset, "id": id},
            ConsistentRead=True,
        )
        item = resp.get("Item")
        return _from_dynamo(item) if item is not None else None

    def put_item(self, item: dict[str, Any], *, condition: Condition | None = None) -> None:
        kwargs: dict[str, Any] = {"Item": _to_dynamo(item)}
        expr = _condition_expression(condition)
        if expr is not None:
            kwargs["ConditionExpression"] = expr
        self._call("put_item", self._table.put_item, **kwargs)

    def update_item(
        self,
        dataset: str,
        id: str,
        *,
        set: Mapping[str, Any] | None = None,
        add: Mapping[str, int | float] | None = None,
        condition: Condition | None = None,
        return_values: str = "NONE",
    ) -> dict[str, Any] | None:
        update_expr, names, values = _update_expression(set, add)
        if not update_expr:
            raise StorageBackendError("update_item", "update requires at least one action")
        kwargs: dict[str, Any] = {
            "Key": {"dataset": dataset, "id": id},
            "UpdateExpression": update_expr,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
            "ReturnValues": return_values,
        }
        expr = _condition_expression(condition)
        if expr is not None:
            kwargs["ConditionExpression"] = expr
        resp = self._call("update_item", self._table.update_item, **kwargs)
        attrs = resp.get("Attributes")
        if return_values == "NONE" or attrs is None:
            return None
        return _from_dynamo(attrs)

    def delete_item(self, dataset: str, id: str, *, condition: Condition | None = None) -> None:
        kwargs: dict[str, Any] = {"Key": {"dataset": dataset, "id": id}}
        expr = _condition_expression(condition)
        if expr is not None:
            kwargs["ConditionExpression"] = expr
        self._call("delete_item", self._table.delete_item, **kwargs)

    def query(self, dataset: str, prefix: str = "") -> Iterator[dict[str, Any]]:
        key_expr = Key("dataset").eq(dataset)
        if prefix:
            key_expr = key_expr & Key("id").begins_with(prefix)
        kwargs: dict[str, Any] = {"KeyConditionExpression": key_expr, "ConsistentRead": True}
        while True:
            resp = self._call("query", self._table.query, **kwargs)
            for item in resp.get("Items", []):
                yield _from_dynamo(item)
            last = resp.get("LastEvaluatedKey")
            if not last:
                return
            kwargs["ExclusiveStartKey"] = last

    def batch_get_items(self, dataset: str, ids: list[str]) -> list[dict[str, Any]]:
        unique = list(dict.fromkeys(ids))
        out: list[dict[str, Any]] = []
        for start in range(0, len(unique), _BATCH_GET_LIMIT):
            chunk = unique[start : start + _BATCH_GET_LIMIT]
            request: dict[str, Any] = {
                self.table_name: {
                    "Keys": [{"dataset": dataset, "id": id} for id in chunk],
                    "ConsistentRead": True,
                }
            }
            attempt = 0
            while request:
                resp = self._call(
                    "batch_get_item", self._resource.batch_get_item, RequestItems=request
                )
                for item in resp.get("Responses", {}).get(self.table_name, []):
                    out.append(_from_dynamo(item))
                request = resp.get("UnprocessedKeys") or {}
                if request:
                    attempt += 1
                    logger.debug("Retrying %d unprocessed keys", len(request[self.table_name]["Keys"]))
                    time.sleep(min(1.0, 0.05 * (2**attempt)) * random.uniform(0.5, 1.0))
        order = {id: i for i, id in enumerate(unique)}
        out.sort(key=lambda item: order[item["id"]])
        return out

    def scan(self) -> Iterator[dict[str, Any]]:
        kwargs: dict[str, Any] = {"ConsistentRead": True}
        while True:
            resp = self._call("scan", self._table.scan, **kwargs)
            for item in resp.get("Items", []):
                yield _from_dynamo(item)
            last = resp.get("LastEvaluatedKey")
            if not last:
                return
            kwargs["ExclusiveStartKey"] = last
