"""Publishing of build outputs to blob storage and release promotion."""

from .blobstore import BlobStore, S3BlobStore, encode_tags
from .manifest import MANIFEST_NAME, ManifestEntry, format_manifest, parse_manifest, sha256_file
from .releaser import (
    DEFAULT_ENVIRONMENT,
    PublishParameters,
    Releaser,
    ReleaseParameters,
    walk_files,
)

__all__ = [
    "BlobStore",
    "S3BlobStore",
    "encode_tags",
    "MANIFEST_NAME",
    "ManifestEntry",
    "format_manifest",
    "parse_manifest",
    "sha256_file",
    "DEFAULT_ENVIRONMENT",
    "PublishParameters",
    "ReleaseParameters",
    "Releaser",
    "walk_files",
]
