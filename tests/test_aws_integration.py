"""DynamoDB + S3 integration tests (dynamodb-local / MinIO compatible)."""

from __future__ import annotations

import json
import os
import uuid

import boto3
import pytest
from typer.testing import CliRunner

from cardboard import Cardboard, CardboardConfig
from cardboard.cli import app
from cardboard.errors import ConditionalCheckFailedError
from tests.fixtures import DC, HAITI, NULL_ISLAND, fixture

pytestmark = pytest.mark.aws


@pytest.fixture
def aws_backend() -> dict[str, str]:
    if os.getenv("CARDBOARD_AWS_TEST") != "1":
        pytest.skip("AWS integration tests disabled (set CARDBOARD_AWS_TEST=1)")

    dynamodb_endpoint = os.getenv("CARDBOARD_DYNAMODB_ENDPOINT", "http://127.0.0.1:8000")
    s3_endpoint = os.getenv("CARDBOARD_S3_ENDPOINT", "http://127.0.0.1:9000")
    bucket = os.getenv("CARDBOARD_S3_BUCKET", "cardboard-test")
    region = os.getenv("CARDBOARD_REGION", "us-east-1")

    s3 = boto3.client("s3", endpoint_url=s3_endpoint, region_name=region)
    existing = {b["Name"] for b in s3.list_buckets().get("Buckets", [])}
    if bucket not in existing:
        s3.create_bucket(Bucket=bucket)

    table = f"cardboard-it-{uuid.uuid4().hex[:12]}"
    return {
        "storage_uri": f"dynamodb://{table}",
        "blob_uri": f"s3://{bucket}/it/{uuid.uuid4().hex}",
        "dynamodb_endpoint": dynamodb_endpoint,
        "s3_endpoint": s3_endpoint,
        "region": region,
        "table": table,
    }


def _cfg(backend: dict[str, str], **overrides) -> CardboardConfig:
    return CardboardConfig(
        table=backend["table"],
        region=backend["region"],
        dynamodb_endpoint_url=backend["dynamodb_endpoint"],
        s3_endpoint_url=backend["s3_endpoint"],
        **overrides,
    )


@pytest.fixture
def aws_cardboard(aws_backend):
    cb = Cardboard.open(
        aws_backend["storage_uri"],
        aws_backend["blob_uri"],
        _cfg(aws_backend, blob_threshold_bytes=256),
    )
    cb.create_table()
    yield cb
    cb.close()


def test_insert_query_remove_roundtrip(aws_cardboard):
    cb = aws_cardboard
    cb.insert(fixture(NULL_ISLAND, "n"), "default")
    cb.insert(fixture(DC, "d"), "default")
    cb.insert(fixture(HAITI, "h"), "default")

    assert [f["id"] for f in cb.bbox_query([-10, -10, 10, 10], "default")["features"]] == ["n"]
    assert [f["id"] for f in cb.bbox_query([-79, 38, -76, 40], "default")["features"]] == ["d"]
    assert cb.get("h", "default")["features"][0] == fixture(HAITI, "h")
    assert cb.get_record("h", "default")["blob"]

    info = cb.get_dataset_info("default")
    assert info["count"] == 3

    assert cb.remove("h", "default") is True
    assert cb.get_dataset_info("default")["count"] == 2


def test_insert_replay_and_stale_update(aws_cardboard):
    cb = aws_cardboard
    first = cb.insert(fixture(DC, "d"), "default")
    assert cb.insert(fixture(DC, "d"), "default") == first
    assert cb.get_dataset_info("default")["count"] == 1

    edited = fixture(DC, "d")
    edited["properties"]["name"] = "washington"
    cb.update(edited, "default", first["version"])
    with pytest.raises(ConditionalCheckFailedError):
        cb.update(edited, "default", first["version"])


def test_cli_against_aws(aws_backend, tmp_path, monkeypatch):
    monkeypatch.setenv("CARDBOARD_DYNAMODB_ENDPOINT", aws_backend["dynamodb_endpoint"])
    monkeypatch.setenv("CARDBOARD_S3_ENDPOINT", aws_backend["s3_endpoint"])
    monkeypatch.setenv("CARDBOARD_REGION", aws_backend["region"])
    path = tmp_path / "dc.geojson"
    path.write_text(json.dumps(fixture(DC, "d")))

    runner = CliRunner()
    base = ["--storage-uri", aws_backend["storage_uri"], "--blob-uri", aws_backend["blob_uri"]]
    assert runner.invoke(app, base + ["init"], catch_exceptions=False).exit_code == 0
    assert runner.invoke(app, base + ["insert", "dc", str(path)], catch_exceptions=False).exit_code == 0
    result = runner.invoke(app, base + ["--json", "datasets"], catch_exceptions=False)
    assert result.exit_code == 0
    assert json.loads(result.stdout) == ["dc"]
