from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.domain.dto import KeyPage
from app.domain.errors import PipelineError
from app.lib.storage import DEFAULT_LIST_PAGE_SIZE
from app.settings import StorageSettings


class S3ObjectStore:
    """S3/R2-compatible object store on a single bucket.

    Errors surface as PipelineError(STORAGE_FAILED); there are no retries at this layer.
    """

    def __init__(self, *, settings: StorageSettings, client: Any | None = None) -> None:
        self._bucket = settings.bucket
        if client is None:
            session = boto3.session.Session(
                aws_access_key_id=settings.access_key_id,
                aws_secret_access_key=settings.secret_access_key,
                region_name=settings.region or "auto",
            )
            client = session.client(
                "s3",
                endpoint_url=settings.endpoint_url,
                config=Config(s3={"addressing_style": "path" if settings.force_path_style else "auto"}),
            )
        self._client = client

    @property
    def bucket(self) -> str:
        return self._bucket

    def put_bytes(self, *, key: str, payload: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=payload, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise PipelineError("STORAGE_FAILED", f"put_object failed for {key}: {exc}") from exc
        return key

    def get_bytes(self, *, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise PipelineError("STORAGE_FAILED", f"get_object failed for {key}: {exc}") from exc

    def delete_key(self, *, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise PipelineError("STORAGE_FAILED", f"delete_object failed for {key}: {exc}") from exc

    def list_keys(self, *, prefix: str, continuation_token: str | None = None) -> KeyPage:
        params: dict[str, object] = {
            "Bucket": self._bucket,
            "Prefix": prefix,
            "MaxKeys": DEFAULT_LIST_PAGE_SIZE,
        }
        if continuation_token is not None:
            params["ContinuationToken"] = continuation_token
        try:
            response = self._client.list_objects_v2(**params)
        except (BotoCoreError, ClientError) as exc:
            raise PipelineError("STORAGE_FAILED", f"list_objects_v2 failed for {prefix}: {exc}") from exc

        keys = tuple(item["Key"] for item in response.get("Contents", []) if item.get("Key"))
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return KeyPage(keys=keys, next_token=next_token)

    def presigned_url(self, *, key: str, expires_in_seconds: int) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise PipelineError("STORAGE_FAILED", f"presign failed for {key}: {exc}") from exc
