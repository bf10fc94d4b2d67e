from __future__ import annotations
"""Async adapter over a boto3 S3 client bound to a single bucket."""
import asyncio
import logging
import os
from typing import Callable, Iterable, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .models import (
    BulkFailure,
    ListPage,
    ObjectBody,
    ObjectDetails,
    ObjectSummary,
    UploadOperation,
    UploadStatus,
)

LOGGER = logging.getLogger(__name__)

MAX_DELETE_BATCH = 1000
NOT_FOUND_CODES = {"404", "NotFound", "NoSuchKey"}


class TransferCancelledError(RuntimeError):
    """Raised when an upload is cancelled by the caller."""


def describe_error(exc: BaseException) -> tuple[str, str]:
    """Return an ``(error_code, message)`` pair for a backend failure."""

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        code = str(error.get("Code") or "Error")
        return code, str(error.get("Message") or exc)
    return type(exc).__name__, str(exc)


def is_not_found(exc: ClientError) -> bool:
    error = exc.response.get("Error", {}) or {}
    status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
    return status == 404 or str(error.get("Code")) in NOT_FOUND_CODES


class BucketService:
    """Storage primitives for one bucket, awaitable from the event loop.

    boto3 is blocking, so each call is pushed to a worker thread; the event
    loop is suspended at every backend call boundary and nowhere else.
    """

    def __init__(self, client, bucket: str, *, region: str | None = None):
        self._client = client
        self.bucket = bucket
        self.region = region

    @classmethod
    def connect(
        cls,
        *,
        endpoint_url: str | None,
        access_key: str,
        secret_key: str,
        region: str | None,
        bucket: str,
        client_factory: Callable[..., object] | None = None,
    ) -> "BucketService":
        factory = client_factory or boto3.client
        client = factory(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region or None,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version="s3v4"),
        )
        return cls(client, bucket, region=region)

    async def check_access(self) -> None:
        """Issue a minimal listing to validate credentials and bucket."""

        await self.list_objects("", delimiter="/", max_keys=1)

    async def list_objects(
        self,
        prefix: str = "",
        *,
        delimiter: str | None = None,
        max_keys: int = 1000,
        continuation_token: str | None = None,
    ) -> ListPage:
        response = await asyncio.to_thread(
            self._list_objects_raw, prefix, delimiter, max_keys, continuation_token
        )
        return ListPage(
            keys=[obj["Key"] for obj in response.get("Contents", [])],
            prefixes=[common["Prefix"] for common in response.get("CommonPrefixes", [])],
            next_token=self._next_token(response),
        )

    async def list_summaries(
        self,
        prefix: str = "",
        *,
        delimiter: str | None = "/",
        max_keys: int = 1000,
        continuation_token: str | None = None,
    ) -> tuple[list[ObjectSummary], list[str], str | None]:
        response = await asyncio.to_thread(
            self._list_objects_raw, prefix, delimiter, max_keys, continuation_token
        )
        summaries = [
            ObjectSummary(
                key=obj["Key"],
                size=obj.get("Size"),
                last_modified=obj.get("LastModified"),
            )
            for obj in response.get("Contents", [])
        ]
        prefixes = [common["Prefix"] for common in response.get("CommonPrefixes", [])]
        return summaries, prefixes, self._next_token(response)

    async def get_object(self, key: str) -> ObjectBody:
        return await asyncio.to_thread(self._get_object, key)

    async def put_object(
        self,
        key: str,
        body: bytes = b"",
        *,
        content_type: str | None = None,
    ) -> None:
        params = {"Bucket": self.bucket, "Key": key, "Body": body, "ContentLength": len(body)}
        if content_type:
            params["ContentType"] = content_type
        await asyncio.to_thread(lambda: self._client.put_object(**params))

    async def copy_object(self, source_key: str, destination_key: str) -> None:
        await asyncio.to_thread(
            lambda: self._client.copy_object(
                Bucket=self.bucket,
                Key=destination_key,
                CopySource={"Bucket": self.bucket, "Key": source_key},
            )
        )

    async def delete_object(self, key: str) -> None:
        await asyncio.to_thread(
            lambda: self._client.delete_object(Bucket=self.bucket, Key=key)
        )

    async def delete_objects(self, keys: Iterable[str]) -> tuple[list[str], list[BulkFailure]]:
        """Delete up to :data:`MAX_DELETE_BATCH` keys in one request.

        Returns the deleted keys and the per-key errors reported by the
        backend. Transport failures propagate.
        """

        batch = list(keys)
        if len(batch) > MAX_DELETE_BATCH:
            raise ValueError(f"delete_objects accepts at most {MAX_DELETE_BATCH} keys")
        if not batch:
            return [], []
        response = await asyncio.to_thread(
            lambda: self._client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in batch], "Quiet": False},
            )
        )
        deleted = [entry["Key"] for entry in response.get("Deleted", [])]
        errors = [
            BulkFailure(
                key=entry.get("Key", ""),
                code=entry.get("Code") or "Error",
                message=entry.get("Message") or "",
            )
            for entry in response.get("Errors", [])
        ]
        return deleted, errors

    async def head_object(self, key: str) -> bool:
        """Return whether ``key`` exists; errors other than not-found propagate."""

        try:
            await asyncio.to_thread(
                lambda: self._client.head_object(Bucket=self.bucket, Key=key)
            )
        except ClientError as exc:
            if is_not_found(exc):
                return False
            raise
        return True

    async def get_object_details(self, key: str) -> ObjectDetails:
        response = await asyncio.to_thread(
            lambda: self._client.head_object(Bucket=self.bucket, Key=key)
        )
        return ObjectDetails(
            bucket=self.bucket,
            key=key,
            size=response.get("ContentLength"),
            last_modified=response.get("LastModified"),
            storage_class=response.get("StorageClass"),
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata") or {}),
        )

    async def upload_file(
        self,
        operation: UploadOperation,
        *,
        multipart_threshold: int,
        multipart_chunk_size: int,
        max_concurrency: int,
        progress_callback: Optional[Callable[[UploadOperation], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> UploadOperation:
        """Upload ``operation.source_path`` to ``operation.key``.

        The operation record is updated in place. Cancellation marks it
        aborted and re-raises :class:`TransferCancelledError`; backend errors
        mark it failed and propagate.
        """

        await asyncio.to_thread(
            self._upload_file,
            operation,
            TransferConfig(
                multipart_threshold=multipart_threshold,
                multipart_chunksize=multipart_chunk_size,
                max_concurrency=max_concurrency,
            ),
            progress_callback,
            cancel_requested,
        )
        return operation

    def _list_objects_raw(
        self,
        prefix: str,
        delimiter: str | None,
        max_keys: int,
        continuation_token: str | None,
    ) -> dict:
        list_params = {"Bucket": self.bucket, "MaxKeys": max_keys}
        if prefix:
            list_params["Prefix"] = prefix
        if delimiter:
            list_params["Delimiter"] = delimiter
        if continuation_token:
            list_params["ContinuationToken"] = continuation_token
        return self._client.list_objects_v2(**list_params)

    @staticmethod
    def _next_token(response: dict) -> str | None:
        if response.get("IsTruncated"):
            return response.get("NextContinuationToken") or None
        return None

    def _get_object(self, key: str) -> ObjectBody:
        response = self._client.get_object(Bucket=self.bucket, Key=key)
        stream = response["Body"]
        try:
            body = stream.read()
        finally:
            close = getattr(stream, "close", None)
            if close:
                close()
        return ObjectBody(
            key=key,
            body=body,
            content_type=response.get("ContentType") or "application/octet-stream",
        )

    def _upload_file(
        self,
        operation: UploadOperation,
        config: TransferConfig,
        progress_callback: Optional[Callable[[UploadOperation], None]],
        cancel_requested: Optional[Callable[[], bool]],
    ) -> None:
        try:
            operation.total_bytes = os.path.getsize(operation.source_path)
        except OSError:
            operation.total_bytes = 0

        def _callback(bytes_amount: int) -> None:
            if cancel_requested and cancel_requested():
                raise TransferCancelledError("Transfer cancelled by user")
            operation.transferred_bytes += bytes_amount
            if progress_callback:
                progress_callback(operation)

        operation.status = UploadStatus.RUNNING
        try:
            self._client.upload_file(
                operation.source_path,
                self.bucket,
                operation.key,
                Callback=_callback,
                Config=config,
            )
        except TransferCancelledError:
            operation.status = UploadStatus.ABORTED
            raise
        except (ClientError, BotoCoreError, S3UploadFailedError, OSError) as exc:
            operation.status = UploadStatus.FAILED
            operation.error = describe_error(exc)[1]
            raise
        operation.status = UploadStatus.COMPLETED
        LOGGER.debug("Uploaded %s to s3://%s/%s", operation.source_path, self.bucket, operation.key)
