from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from core.exceptions import ObjectNotFoundError, PreconditionFailedError, StorageUnavailableError
from core.storage import StoredObject

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
_PRECONDITION_CODES = {"PreconditionFailed", "ConditionalRequestConflict", "412"}


class S3Storage:
    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: Optional[str] = None,
        *,
        endpoint_url: Optional[str] = None,
        force_path_style: bool = True,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        if client is None:
            # Retries are left to the HTTP caller; botocore must not retry inline.
            config = BotoConfig(
                signature_version="s3v4",
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"total_max_attempts": 1, "mode": "standard"},
                s3={"addressing_style": "path" if force_path_style else "auto"},
            )
            session = boto3.session.Session(region_name=region) if region else boto3.session.Session()
            client = session.client("s3", endpoint_url=endpoint_url, config=config)
        self.client = client

    def _key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def _classify(self, exc: Exception, key: str) -> Exception:
        details = {"bucket": self.bucket, "key": key, "error": str(exc)}
        if isinstance(exc, ClientError):
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return ObjectNotFoundError(f"No such key: {key}", details)
            if code in _PRECONDITION_CODES:
                return PreconditionFailedError(f"Conditional write rejected: {key}", details)
        return StorageUnavailableError(f"Storage operation failed: {key}", details)

    def get_object(self, key: str) -> StoredObject:
        s3_key = self._key(key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=s3_key)
            data = response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise self._classify(exc, s3_key) from exc
        return StoredObject(data=data, etag=response.get("ETag", ""))

    def get_bytes(self, key: str) -> bytes:
        return self.get_object(key).data

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        if_match: str | None = None,
        if_none_match: bool = False,
    ) -> str:
        s3_key = self._key(key)
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": s3_key, "Body": data}
        if if_none_match:
            params["IfNoneMatch"] = "*"
        elif if_match is not None:
            params["IfMatch"] = if_match
        try:
            response = self.client.put_object(**params)
        except (BotoCoreError, ClientError) as exc:
            raise self._classify(exc, s3_key) from exc
        logger.debug("Wrote s3://{bucket}/{key} ({size} bytes)", bucket=self.bucket, key=s3_key, size=len(data))
        return response.get("ETag", "")

    def get_presigned_url(self, key: str, expires: int = 600) -> str:
        s3_key = self._key(key)
        try:
            return self.client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": s3_key},
                ExpiresIn=expires,
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._classify(exc, s3_key) from exc


__all__ = ["S3Storage"]
