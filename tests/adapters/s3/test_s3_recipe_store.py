from __future__ import annotations

import io

import boto3  # type: ignore[import-untyped]
import pytest
from botocore.response import StreamingBody  # type: ignore[import-untyped]
from botocore.stub import ANY, Stubber  # type: ignore[import-untyped]

from adapters.filesystem.json_utils import dump_json_bytes
from adapters.s3.recipe_store import S3RecipeStore
from domain.errors import RecipeAlreadyExistsError, RecipeNotFoundError
from domain.models import ProcedureLogic, RecipeRecord


def _body(record: RecipeRecord) -> dict[str, StreamingBody]:
    payload = dump_json_bytes(record.to_dict())
    return {"Body": StreamingBody(io.BytesIO(payload), len(payload))}


def _stubbed() -> tuple[S3RecipeStore, Stubber]:
    client = boto3.client("s3", region_name="us-east-1")
    return S3RecipeStore(client, "rwe-bucket", "recipes"), Stubber(client)


def test_build_key_normalizes_prefix() -> None:
    client = boto3.client("s3", region_name="us-east-1")

    assert S3RecipeStore(client, "b", "recipes").build_key("RCP-1") == "recipes/RCP-1.json"
    assert S3RecipeStore(client, "b", "/recipes/").build_key("RCP-1") == "recipes/RCP-1.json"
    assert S3RecipeStore(client, "b", "./").build_key("RCP-1") == "RCP-1.json"


def test_load_procedure_reads_record() -> None:
    store, stubber = _stubbed()
    document = ProcedureLogic.model_validate(
        {"workflow": {"nodes": [{"id": "RCP-1", "type": "RECIPE"}], "edges": []}}
    )
    record = RecipeRecord(id="RCP-1", name="Yogurt", procedure_logic=document)
    stubber.add_response(
        "get_object",
        _body(record),
        {"Bucket": "rwe-bucket", "Key": "recipes/RCP-1.json"},
    )

    with stubber:
        loaded = store.load_procedure("RCP-1")

    assert loaded.root_name == "Yogurt"
    assert loaded.document == document
    stubber.assert_no_pending_responses()


def test_missing_object_raises_not_found() -> None:
    store, stubber = _stubbed()
    stubber.add_client_error(
        "get_object",
        service_error_code="NoSuchKey",
        http_status_code=404,
        expected_params={"Bucket": "rwe-bucket", "Key": "recipes/RCP-9.json"},
    )

    with stubber, pytest.raises(RecipeNotFoundError):
        store.get_recipe("RCP-9")


def test_save_procedure_rewrites_record() -> None:
    store, stubber = _stubbed()
    record = RecipeRecord(id="RCP-1", name="Yogurt", description="Plain")
    stubber.add_response(
        "get_object",
        _body(record),
        {"Bucket": "rwe-bucket", "Key": "recipes/RCP-1.json"},
    )
    stubber.add_response(
        "put_object",
        {},
        {
            "Bucket": "rwe-bucket",
            "Key": "recipes/RCP-1.json",
            "Body": ANY,
            "ContentType": "application/json",
        },
    )

    with stubber:
        store.save_procedure("RCP-1", ProcedureLogic())

    stubber.assert_no_pending_responses()


def test_create_recipe_checks_existing_key() -> None:
    store, stubber = _stubbed()
    record = RecipeRecord(id="RCP-1", name="Yogurt")
    key = {"Bucket": "rwe-bucket", "Key": "recipes/RCP-1.json"}
    stubber.add_client_error(
        "head_object", service_error_code="404", http_status_code=404, expected_params=key
    )
    stubber.add_response(
        "put_object",
        {},
        {**key, "Body": dump_json_bytes(record.to_dict()), "ContentType": "application/json"},
    )
    stubber.add_response("head_object", {}, key)

    with stubber:
        assert store.create_recipe(record) == record
        with pytest.raises(RecipeAlreadyExistsError):
            store.create_recipe(record)


def test_list_recipes_follows_pagination() -> None:
    store, stubber = _stubbed()
    stubber.add_response(
        "list_objects_v2",
        {
            "IsTruncated": True,
            "NextContinuationToken": "next",
            "Contents": [{"Key": "recipes/RCP-2.json"}, {"Key": "recipes/nested/RCP-3.json"}],
        },
        {"Bucket": "rwe-bucket", "Prefix": "recipes/"},
    )
    stubber.add_response(
        "get_object",
        _body(RecipeRecord(id="RCP-2", name="Yogurt")),
        {"Bucket": "rwe-bucket", "Key": "recipes/RCP-2.json"},
    )
    stubber.add_response(
        "list_objects_v2",
        {"IsTruncated": False, "Contents": [{"Key": "recipes/RCP-1.json"}]},
        {"Bucket": "rwe-bucket", "Prefix": "recipes/", "ContinuationToken": "next"},
    )
    stubber.add_response(
        "get_object",
        _body(RecipeRecord(id="RCP-1", name="Butter")),
        {"Bucket": "rwe-bucket", "Key": "recipes/RCP-1.json"},
    )

    with stubber:
        records = store.list_recipes()

    assert [record.id for record in records] == ["RCP-1", "RCP-2"]


def test_delete_missing_recipe() -> None:
    store, stubber = _stubbed()
    stubber.add_client_error(
        "head_object",
        service_error_code="404",
        http_status_code=404,
        expected_params={"Bucket": "rwe-bucket", "Key": "recipes/RCP-1.json"},
    )

    with stubber, pytest.raises(RecipeNotFoundError):
        store.delete_recipe("RCP-1")
