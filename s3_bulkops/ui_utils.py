from __future__ import annotations
"""UI-agnostic helpers for key handling and user-facing text."""
from dataclasses import dataclass
from datetime import datetime
from importlib.metadata import PackageNotFoundError, metadata, version
import re

from botocore.exceptions import BotoCoreError, ClientError

from .models import BulkOperation, BulkStatus

DIST_NAME = "s3-bulkops"
PATH_SEPARATOR = "/"
DIRECTORY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

_OPERATION_VERBS = {
    "delete": ("Deleted", "delete"),
    "move": ("Moved", "move"),
    "download": ("Fetched", "download"),
}


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: str
    summary: str
    homepage: str | None


def load_package_info(dist_name: str = DIST_NAME) -> PackageInfo:
    try:
        distribution_metadata = metadata(dist_name)
        package_version = version(dist_name)
    except PackageNotFoundError:
        return PackageInfo(
            name="S3 Bulk Operations",
            version="",
            summary="Bulk delete, move and archive download for S3 buckets.",
            homepage=None,
        )
    homepage = distribution_metadata.get("Home-page")
    for entry in distribution_metadata.get_all("Project-URL") or []:
        label, _, link = entry.partition(",")
        if label.strip().lower() == "homepage" and not homepage:
            homepage = link.strip()
    return PackageInfo(
        name=distribution_metadata.get("Name"),
        version=package_version,
        summary=distribution_metadata.get("Summary") or "",
        homepage=homepage or None,
    )


def format_size(size: int | None) -> str:
    if size is None:
        return "-"
    suffixes = ["B", "KB", "MB", "GB", "TB"]
    value = float(max(size, 0))
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}" if suffix != "B" else f"{int(value)} {suffix}"
        value /= 1024
    return f"{size} B"


def is_prefix(key: str) -> bool:
    return key.endswith(PATH_SEPARATOR)


def base_name(key: str) -> str:
    """Return the part of ``key`` after the last path separator."""

    return key.rsplit(PATH_SEPARATOR, 1)[-1]


def normalize_prefix(prefix: str) -> str:
    cleaned = prefix.strip().lstrip(PATH_SEPARATOR)
    if cleaned and not cleaned.endswith(PATH_SEPARATOR):
        cleaned += PATH_SEPARATOR
    return cleaned


def compose_s3_key(prefix: str, name: str) -> str:
    key_name = name.strip()
    if not key_name:
        raise ValueError("Object name cannot be empty")
    return f"{normalize_prefix(prefix)}{key_name}"


def validate_directory_name(name: str) -> str:
    trimmed = (name or "").strip()
    if not DIRECTORY_NAME_PATTERN.match(trimmed):
        raise ValueError("Invalid name. Allowed: letters, numbers, dot, underscore, hyphen.")
    return trimmed


def format_archive_name(now: datetime | None = None) -> str:
    moment = now or datetime.now()
    return f"s3-download-{moment:%Y%m%d-%H%M%S}.zip"


def summarize_operation(operation: BulkOperation) -> str:
    done_verb, verb = _OPERATION_VERBS.get(operation.kind, ("Processed", "process"))
    if operation.status is BulkStatus.CANCELLED:
        return f"{operation.kind.capitalize()} dismissed after {operation.items_done} of {operation.items_total} item(s)."
    if operation.failures:
        return f"{len(operation.failures)} item(s) failed to {verb}. Review and retry."
    return f"{done_verb} {operation.items_total} item(s)."


def categorize_error(exc: Exception) -> str:
    """Describe a connection error in terms an operator can act on."""

    status = None
    code = None
    if isinstance(exc, ClientError):
        status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
        code = (exc.response.get("Error", {}) or {}).get("Code")
    category = "Unknown error"
    if status == 403 and code == "SignatureDoesNotMatch":
        category = "Authentication failed (signature mismatch)."
    elif status == 403 and code == "AccessDenied":
        category = "Insufficient permissions (AccessDenied)."
    elif status == 404 and code == "NoSuchBucket":
        category = "NoSuchBucket (bucket not found)."
    elif status == 301 or code in ("AuthorizationHeaderMalformed", "PermanentRedirect"):
        category = "Region mismatch (bucket is in a different region)."
    elif isinstance(exc, BotoCoreError) or isinstance(exc, (ConnectionError, TimeoutError)):
        category = "Network interruption or timeout."
    message = str(exc)
    return f"{category} - {message}" if message else category
