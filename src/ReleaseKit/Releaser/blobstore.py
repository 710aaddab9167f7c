# === NAVMAP v1 ===
# {
#   "module": "ReleaseKit.Releaser.blobstore",
#   "purpose": "Blob storage interface and its Amazon S3 implementation",
#   "sections": [
#     {
#       "id": "blobstore",
#       "name": "BlobStore",
#       "anchor": "class-blobstore",
#       "kind": "class"
#     },
#     {
#       "id": "encode-tags",
#       "name": "encode_tags",
#       "anchor": "function-encode-tags",
#       "kind": "function"
#     },
#     {
#       "id": "s3blobstore",
#       "name": "S3BlobStore",
#       "anchor": "class-s3blobstore",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Blob storage used by the releaser.

The releaser only needs put/get/list/delete by key, so it talks to a small
:class:`BlobStore` protocol. :class:`S3BlobStore` implements it with boto3:
uploads go through the managed transfer (``upload_fileobj``) so streamed,
non-seekable bodies such as a :class:`~ReleaseKit.concurrency.PipeReader` are
split into multipart uploads automatically.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO, List, Mapping, Optional, Protocol, Union
from urllib.parse import urlencode

import boto3

__all__ = ["BlobStore", "S3BlobStore", "encode_tags", "Body"]

logger = logging.getLogger(__name__)

Body = Union[bytes, BinaryIO, io.RawIOBase]


class BlobStore(Protocol):
    """Minimal object storage interface."""

    def put(
        self,
        bucket: str,
        key: str,
        body: Body,
        *,
        content_encoding: Optional[str] = None,
        content_type: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> None: ...

    def get(self, bucket: str, key: str) -> bytes: ...

    def list(self, bucket: str, prefix: str = "") -> List[str]: ...

    def delete(self, bucket: str, key: str) -> None: ...


def encode_tags(tags: Optional[Mapping[str, str]]) -> Optional[str]:
    """Encode tags as a query string with sorted keys, or ``None`` when empty.

    Examples:
        >>> encode_tags({"team": "infra", "app": "agent"})
        'app=agent&team=infra'
        >>> encode_tags({}) is None
        True
    """
    if not tags:
        return None
    return urlencode(sorted(tags.items()))


class S3BlobStore:
    """:class:`BlobStore` backed by Amazon S3 (or any S3-compatible endpoint)."""

    def __init__(
        self,
        client=None,
        *,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ) -> None:
        """Create the store.

        Args:
            client: Pre-built ``boto3`` S3 client. Built from the default
                credential chain when omitted.
            region: Region for a client built here.
            endpoint_url: Custom endpoint (e.g. MinIO) for a client built here.
        """
        if client is None:
            logger.info(
                "Connecting to S3",
                extra={"region": region or "default", "endpoint_url": endpoint_url},
            )
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        self.client = client

    def put(
        self,
        bucket: str,
        key: str,
        body: Body,
        *,
        content_encoding: Optional[str] = None,
        content_type: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> None:
        extra_args = {}
        if content_encoding:
            extra_args["ContentEncoding"] = content_encoding
        if content_type:
            extra_args["ContentType"] = content_type
        tagging = encode_tags(tags)
        if tagging:
            extra_args["Tagging"] = tagging

        if isinstance(body, (bytes, bytearray)):
            fileobj = io.BytesIO(body)
        elif isinstance(body, io.RawIOBase):
            # The transfer manager expects read(n) to return n bytes unless at EOF.
            fileobj = io.BufferedReader(body)
        else:
            fileobj = body

        self.client.upload_fileobj(fileobj, bucket, key, ExtraArgs=extra_args or None)
        logger.debug("upload complete", extra={"bucket": bucket, "key": key})

    def get(self, bucket: str, key: str) -> bytes:
        response = self.client.get_object(Bucket=bucket, Key=key)
        return response["Body"].read()

    def list(self, bucket: str, prefix: str = "") -> List[str]:
        keys: List[str] = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])
        return keys

    def delete(self, bucket: str, key: str) -> None:
        self.client.delete_object(Bucket=bucket, Key=key)
