from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Any, cast

import boto3  # type: ignore[import-untyped]
import orjson
from botocore.client import BaseClient  # type: ignore[import-untyped]
from botocore.config import Config  # type: ignore[import-untyped]
from botocore.exceptions import ClientError  # type: ignore[import-untyped]
from botocore.response import StreamingBody  # type: ignore[import-untyped]

from adapters.filesystem.json_utils import dump_json_bytes
from domain.errors import RecipeAlreadyExistsError, RecipeNotFoundError
from domain.models import ProcedureLogic, RecipeRecord, StoredProcedure
from domain.ports.recipes import RecipeRepository

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3RecipeStore(RecipeRepository):
    def __init__(self, client: BaseClient, bucket: str, prefix: str = "") -> None:
        self._client = client
        self._bucket = bucket
        self._prefix = self._normalize_prefix(prefix)

    @classmethod
    def from_settings(cls, settings: Any) -> S3RecipeStore:
        config = Config(s3={"addressing_style": "path"}) if settings.use_path_style else None
        client = boto3.client(
            "s3",
            region_name=settings.region,
            endpoint_url=settings.endpoint_url or None,
            aws_access_key_id=settings.access_key_id or None,
            aws_secret_access_key=settings.secret_access_key or None,
            aws_session_token=settings.session_token or None,
            config=config,
        )
        return cls(client, settings.bucket, settings.prefix)

    def load_procedure(self, recipe_id: str) -> StoredProcedure:
        record = self.get_recipe(recipe_id)
        return StoredProcedure(root_name=record.name, document=record.procedure_logic)

    def save_procedure(self, recipe_id: str, document: ProcedureLogic) -> None:
        record = self.get_recipe(recipe_id)
        self._put(replace(record, procedure_logic=document))

    def create_recipe(self, record: RecipeRecord) -> RecipeRecord:
        if self._exists(record.id):
            raise RecipeAlreadyExistsError(record.id)
        self._put(record)
        return record

    def get_recipe(self, recipe_id: str) -> RecipeRecord:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=self.build_key(recipe_id))
        except ClientError as exc:
            if self._is_missing(exc):
                raise RecipeNotFoundError(recipe_id) from exc
            raise
        payload = orjson.loads(self._read_body(response.get("Body")) or b"{}")
        return RecipeRecord.from_dict(payload if isinstance(payload, dict) else {})

    def list_recipes(self) -> list[RecipeRecord]:
        records: list[RecipeRecord] = []
        for key in self._iter_keys():
            recipe_id = key[len(self._prefix) : -len(".json")]
            records.append(self.get_recipe(recipe_id))
        return sorted(records, key=lambda record: (record.name.lower(), record.id))

    def delete_recipe(self, recipe_id: str) -> None:
        if not self._exists(recipe_id):
            raise RecipeNotFoundError(recipe_id)
        self._client.delete_object(Bucket=self._bucket, Key=self.build_key(recipe_id))

    def build_key(self, recipe_id: str) -> str:
        return f"{self._prefix}{recipe_id.strip()}.json"

    def _put(self, record: RecipeRecord) -> None:
        self._client.put_object(
            Bucket=self._bucket,
            Key=self.build_key(record.id),
            Body=dump_json_bytes(record.to_dict()),
            ContentType="application/json",
        )

    def _exists(self, recipe_id: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=self.build_key(recipe_id))
        except ClientError as exc:
            if self._is_missing(exc):
                return False
            raise
        return True

    def _iter_keys(self) -> Iterable[str]:
        token: str | None = None
        while True:
            payload: dict[str, Any] = {"Bucket": self._bucket, "Prefix": self._prefix}
            if token:
                payload["ContinuationToken"] = token
            response = self._client.list_objects_v2(**payload)
            for entry in response.get("Contents", []) or []:
                key = entry.get("Key")
                if not key or not key.endswith(".json") or "/" in key[len(self._prefix) :]:
                    continue
                yield key
            if not response.get("IsTruncated"):
                break
            token = response.get("NextContinuationToken")

    def _read_body(self, body: Any) -> bytes:
        if isinstance(body, bytes | bytearray):
            return bytes(body)
        if isinstance(body, StreamingBody):
            return cast(bytes, body.read())
        if hasattr(body, "read"):
            return cast(bytes, body.read())
        return b""

    def _is_missing(self, exc: ClientError) -> bool:
        code = exc.response.get("Error", {}).get("Code", "")
        return str(code) in _MISSING_CODES

    def _normalize_prefix(self, prefix: str) -> str:
        normalized = prefix.lstrip("/")
        if normalized in {".", "./"}:
            return ""
        if normalized and not normalized.endswith("/"):
            normalized = f"{normalized}/"
        return normalized
