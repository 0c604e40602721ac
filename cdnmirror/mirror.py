# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mirror synchronization from cdnjs into a COS bucket.

One synchronization handles one asset coordinate and makes at most three
sequential requests:

1. **Probe**: ``HEAD`` on the bucket's public domain.  A success status
   means the asset is already mirrored; the ETag yields its fingerprint.
   Any other status, and any transport error, means "not mirrored".
2. **Fetch**: ``GET`` from cdnjs, streamed.
3. **Upload**: signed ``PUT`` to the bucket, with the fetched body
   streamed through as the payload.

The probe makes repeated calls for the same coordinate idempotent.
Nothing is retried and partial progress is not rolled back; callers may
simply run the synchronization again.
"""

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx

from cdnmirror.config import DEFAULT_CDNJS_BASE_URL, CosConfig
from cdnmirror.errors import InputValidationError, SigningPreconditionError
from cdnmirror.signing import CosSigner, SignableRequest
from cdnmirror.signing.cos import url_encode


logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_JS = "application/javascript; charset=utf-8"

#: Extension -> MIME type, used when the source declares no type.
CONTENT_TYPES: dict[str, str] = {
    ".js": _JS,
    ".mjs": _JS,
    ".cjs": _JS,
    ".css": "text/css; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".map": "application/octet-stream",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
}


def guess_content_type(key: str) -> str:
    """Infer a MIME type from an asset key's extension.

    Args:
        key: Asset key (file path within the library version).

    Returns:
        MIME type, ``application/octet-stream`` when unknown.
    """
    lower = key.lower()
    for extension, content_type in CONTENT_TYPES.items():
        if lower.endswith(extension):
            return content_type
    return DEFAULT_CONTENT_TYPE


def etag_fingerprint(etag: str | None) -> str | None:
    """Extract a content fingerprint from an ETag.

    Quotes are removed and the part before the first ``.`` is kept.

    Returns:
        The fingerprint, or None if the ETag is absent or empty.
    """
    if not etag:
        return None
    return etag.replace('"', "").split(".")[0] or None


# ---------------------------------------------------------------------------
# Coordinates and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetCoordinate:
    """One file of one library version.

    Attributes:
        name: Library name as known to cdnjs (e.g. ``jquery``).
        version: Library version (e.g. ``3.6.0``).
        key: File path within the version (e.g. ``jquery.min.js``).
    """

    name: str
    version: str
    key: str

    def __post_init__(self) -> None:
        """Reject empty or non-string fields.

        Raises:
            InputValidationError: If a field is empty.
        """
        for field_name in ("name", "version", "key"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value:
                raise InputValidationError(
                    f"Asset coordinate field '{field_name}' is required"
                )

    @property
    def storage_key(self) -> str:
        """Object key in the bucket: ``<name>/<version>/<key>``."""
        return f"{self.name}/{self.version}/{self.key}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "AssetCoordinate":
        """Build a coordinate from a decoded JSON body.

        Raises:
            InputValidationError: If *data* is not a mapping or lacks a
                field.
        """
        if not isinstance(data, Mapping):
            raise InputValidationError("Request body must be a JSON object")
        return cls(
            name=data.get("name"),  # type: ignore[arg-type]
            version=data.get("version"),  # type: ignore[arg-type]
            key=data.get("key"),  # type: ignore[arg-type]
        )


class SyncStatus(StrEnum):
    """Terminal states of one synchronization."""

    ALREADY_MIRRORED = "already-mirrored"
    UPLOADED = "uploaded"
    FAILED = "failed"


class SyncStage(StrEnum):
    """Network stage a failure happened in."""

    FETCH = "fetch"
    UPLOAD = "upload"


@dataclass(frozen=True)
class SyncOutcome:
    """Result of one synchronization.

    Attributes:
        status: Terminal state.
        storage_key: Object key of the asset.
        content_hash: ETag fingerprint (``already-mirrored`` only).
        stage: Failing stage (``failed`` only).
        detail: Upstream status or error text (``failed`` only).
    """

    status: SyncStatus
    storage_key: str
    content_hash: str | None = None
    stage: SyncStage | None = None
    detail: str | None = None

    @classmethod
    def already_mirrored(
        cls, storage_key: str, content_hash: str | None
    ) -> "SyncOutcome":
        return cls(SyncStatus.ALREADY_MIRRORED, storage_key, content_hash)

    @classmethod
    def uploaded(cls, storage_key: str) -> "SyncOutcome":
        return cls(SyncStatus.UPLOADED, storage_key)

    @classmethod
    def failed(
        cls, storage_key: str, stage: SyncStage, detail: str
    ) -> "SyncOutcome":
        return cls(SyncStatus.FAILED, storage_key, stage=stage, detail=detail)

    @property
    def ok(self) -> bool:
        """True unless the synchronization failed."""
        return self.status != SyncStatus.FAILED

    @property
    def http_status(self) -> int:
        """HTTP status that represents this outcome."""
        return 200 if self.ok else 500

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON response payload."""
        if self.status == SyncStatus.ALREADY_MIRRORED:
            return {
                "code": 200,
                "msg": "ok",
                "data": {"hash": self.content_hash, "key": self.storage_key},
            }
        if self.status == SyncStatus.UPLOADED:
            return {"code": 200, "msg": "ok", "data": {"key": self.storage_key}}
        error = (
            "Download failed"
            if self.stage == SyncStage.FETCH
            else "Upload failed"
        )
        return {
            "code": 500,
            "error": error,
            "stage": str(self.stage),
            "detail": self.detail,
        }


# ---------------------------------------------------------------------------
# Synchronizer
# ---------------------------------------------------------------------------


def source_url(base_url: str, coordinate: AssetCoordinate) -> str:
    """Build the cdnjs URL of an asset.

    Name and version are percent-encoded; the key is used as-is.
    """
    return (
        f"{base_url.rstrip('/')}/{url_encode(coordinate.name)}"
        f"/{url_encode(coordinate.version)}/{coordinate.key}"
    )


class MirrorSynchronizer:
    """Mirrors cdnjs assets into a COS bucket.

    Attributes:
        cos: Destination bucket settings.
        cdnjs_base_url: Base URL of the cdnjs ``/ajax/libs`` tree.
    """

    def __init__(
        self,
        cos: CosConfig,
        cdnjs_base_url: str = DEFAULT_CDNJS_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            cos: Destination bucket settings.
            cdnjs_base_url: Source CDN base URL.
            client: HTTP client to use.  When None, a client that follows
                redirects is created and closed for every synchronization.

        Raises:
            SigningPreconditionError: If the COS credentials are
                incomplete.
        """
        if not cos.credential.is_complete:
            raise SigningPreconditionError("Missing COS credentials")
        self.cos = cos
        self.cdnjs_base_url = cdnjs_base_url
        self._client = client
        self._signer = CosSigner(cos.credential, ttl=cos.sign_ttl)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(follow_redirects=True) as client:
            yield client

    async def sync(self, coordinate: AssetCoordinate) -> SyncOutcome:
        """Synchronize one asset.

        Args:
            coordinate: Asset to mirror.

        Returns:
            ``already-mirrored``, ``uploaded`` or ``failed`` outcome.
        """
        async with self._session() as client:
            found, fingerprint = await self._probe(client, coordinate)
            if found:
                logger.info(
                    "Already mirrored: %s (%s)",
                    coordinate.storage_key,
                    fingerprint,
                )
                return SyncOutcome.already_mirrored(
                    coordinate.storage_key, fingerprint
                )
            return await self._fetch_and_upload(client, coordinate)

    async def _probe(
        self, client: httpx.AsyncClient, coordinate: AssetCoordinate
    ) -> tuple[bool, str | None]:
        """Check whether the asset is served from the public domain.

        Errors and non-success statuses both count as "not mirrored".

        Returns:
            Tuple of (found, fingerprint).
        """
        url = self.cos.public_url(coordinate.storage_key)
        try:
            response = await client.head(url)
        except httpx.HTTPError as e:
            logger.warning("Existence probe failed for %s: %s", url, e)
            return False, None

        if not response.is_success:
            logger.debug(
                "Existence probe %s returned %d", url, response.status_code
            )
            return False, None
        return True, etag_fingerprint(response.headers.get("etag"))

    async def _fetch_and_upload(
        self, client: httpx.AsyncClient, coordinate: AssetCoordinate
    ) -> SyncOutcome:
        url = source_url(self.cdnjs_base_url, coordinate)
        storage_key = coordinate.storage_key
        try:
            async with client.stream("GET", url) as source:
                # 204 is a success status that carries no body.
                if not source.is_success or source.status_code == 204:
                    logger.warning(
                        "Source fetch %s returned %d", url, source.status_code
                    )
                    return SyncOutcome.failed(
                        storage_key, SyncStage.FETCH, str(source.status_code)
                    )
                content_type = source.headers.get(
                    "content-type"
                ) or guess_content_type(coordinate.key)
                return await self._upload(
                    client, coordinate, source, content_type
                )
        except httpx.TimeoutException:
            logger.warning("Source fetch %s timed out", url)
            return SyncOutcome.failed(storage_key, SyncStage.FETCH, "timeout")
        except httpx.HTTPError as e:
            logger.warning("Source fetch %s failed: %s", url, e)
            return SyncOutcome.failed(storage_key, SyncStage.FETCH, str(e))

    async def _upload(
        self,
        client: httpx.AsyncClient,
        coordinate: AssetCoordinate,
        source: httpx.Response,
        content_type: str,
    ) -> SyncOutcome:
        """Stream the source body into the bucket with a signed PUT."""
        host = self.cos.host
        storage_key = coordinate.storage_key
        path = f"/{storage_key}"
        authorization = self._signer.authorize(
            SignableRequest(
                method="PUT",
                host=host,
                path=path,
                headers={"Host": host, "Content-Type": content_type},
            )
        )

        try:
            response = await client.put(
                f"https://{host}{path}",
                headers={
                    "Authorization": authorization,
                    "Host": host,
                    "Content-Type": content_type,
                    "Content-Disposition": "inline",
                },
                content=source.aiter_bytes(),
            )
        except httpx.TimeoutException:
            logger.warning("Upload of %s timed out", storage_key)
            return SyncOutcome.failed(storage_key, SyncStage.UPLOAD, "timeout")
        except httpx.HTTPError as e:
            logger.warning("Upload of %s failed: %s", storage_key, e)
            return SyncOutcome.failed(storage_key, SyncStage.UPLOAD, str(e))

        if not response.is_success:
            detail = response.text or response.reason_phrase
            logger.warning(
                "Upload of %s returned %d", storage_key, response.status_code
            )
            return SyncOutcome.failed(storage_key, SyncStage.UPLOAD, detail)

        logger.info("Uploaded %s (%s)", storage_key, content_type)
        return SyncOutcome.uploaded(storage_key)


async def sync_asset(
    cos: CosConfig,
    coordinate: AssetCoordinate,
    *,
    cdnjs_base_url: str = DEFAULT_CDNJS_BASE_URL,
    client: httpx.AsyncClient | None = None,
) -> SyncOutcome:
    """Synchronize one asset with a one-off ``MirrorSynchronizer``."""
    synchronizer = MirrorSynchronizer(
        cos, cdnjs_base_url=cdnjs_base_url, client=client
    )
    return await synchronizer.sync(coordinate)
