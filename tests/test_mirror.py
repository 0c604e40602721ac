# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for mirror synchronization."""

import httpx
import pytest

from cdnmirror.config import CosConfig
from cdnmirror.errors import InputValidationError, SigningPreconditionError
from cdnmirror.mirror import (
    DEFAULT_CONTENT_TYPE,
    AssetCoordinate,
    MirrorSynchronizer,
    SyncOutcome,
    SyncStage,
    SyncStatus,
    etag_fingerprint,
    guess_content_type,
    source_url,
    sync_asset,
)
from cdnmirror.signing import Credential


CDN = "https://cdn.example.com"
SOURCE = "https://cdnjs.cloudflare.com/ajax/libs"
BUCKET = "https://libs-1250000000.cos.ap-guangzhou.myqcloud.com"
JQUERY = AssetCoordinate("jquery", "3.6.0", "jquery.min.js")
BODY = b"/*! jQuery v3.6.0 */ !function(e,t){}"


class FakeUpstreams:
    """Probe domain, source CDN and bucket behind one mock transport.

    Objects PUT into the bucket become visible on the probe domain, so
    repeated synchronizations see their own uploads.
    """

    def __init__(self) -> None:
        self.store: dict[str, tuple[bytes, str]] = {}
        self.sources: dict[str, httpx.Response] = {}
        self.requests: list[httpx.Request] = []
        self.put_status = 200
        self.put_text = ""
        self.probe_error: Exception | None = None
        self.source_error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url.startswith(CDN):
            if self.probe_error is not None:
                raise self.probe_error
            key = url.removeprefix(CDN + "/")
            if key in self.store:
                return httpx.Response(200, headers={"ETag": '"d41d8cd9.1"'})
            return httpx.Response(404)

        if url.startswith(SOURCE):
            if self.source_error is not None:
                raise self.source_error
            return self.sources.get(url, httpx.Response(404))

        if url.startswith(BUCKET):
            assert request.method == "PUT"
            if self.put_status >= 300:
                return httpx.Response(self.put_status, text=self.put_text)
            key = url.removeprefix(BUCKET + "/")
            self.store[key] = (
                request.content,
                request.headers["content-type"],
            )
            return httpx.Response(200)

        raise AssertionError(f"Unexpected request: {request.method} {url}")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def methods(self) -> list[str]:
        return [r.method for r in self.requests]


@pytest.fixture
def upstreams() -> FakeUpstreams:
    fake = FakeUpstreams()
    fake.sources[f"{SOURCE}/jquery/3.6.0/jquery.min.js"] = httpx.Response(
        200, content=BODY
    )
    return fake


class TestHelpers:
    """Tests for the module-level helpers."""

    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("jquery.min.js", "application/javascript; charset=utf-8"),
            ("dist/app.MJS", "application/javascript; charset=utf-8"),
            ("css/bootstrap.min.css", "text/css; charset=utf-8"),
            ("package.json", "application/json; charset=utf-8"),
            ("fonts/icons.woff2", "font/woff2"),
            ("logo.svg", "image/svg+xml"),
            ("README", DEFAULT_CONTENT_TYPE),
        ],
    )
    def test_guess_content_type(self, key: str, expected: str) -> None:
        assert guess_content_type(key) == expected

    @pytest.mark.parametrize(
        ("etag", "expected"),
        [
            ('"abc123.gz"', "abc123"),
            ('"abc123"', "abc123"),
            ("abc123", "abc123"),
            ("", None),
            (None, None),
        ],
    )
    def test_etag_fingerprint(
        self, etag: str | None, expected: str | None
    ) -> None:
        assert etag_fingerprint(etag) == expected

    def test_source_url_encodes_name_and_version(self) -> None:
        coordinate = AssetCoordinate("font awesome", "6.0.0+1", "css/all.css")
        assert source_url(SOURCE + "/", coordinate) == (
            f"{SOURCE}/font%20awesome/6.0.0%2B1/css/all.css"
        )


class TestAssetCoordinate:
    """Tests for AssetCoordinate."""

    def test_storage_key(self) -> None:
        assert JQUERY.storage_key == "jquery/3.6.0/jquery.min.js"

    def test_same_triple_same_key(self) -> None:
        other = AssetCoordinate("jquery", "3.6.0", "jquery.min.js")
        assert other == JQUERY
        assert other.storage_key == JQUERY.storage_key

    @pytest.mark.parametrize("missing", ["name", "version", "key"])
    def test_from_mapping_missing_field(self, missing: str) -> None:
        data = {"name": "jquery", "version": "3.6.0", "key": "jquery.js"}
        del data[missing]
        with pytest.raises(InputValidationError, match=missing):
            AssetCoordinate.from_mapping(data)

    def test_from_mapping_rejects_non_string(self) -> None:
        with pytest.raises(InputValidationError):
            AssetCoordinate.from_mapping(
                {"name": "jquery", "version": 3, "key": "jquery.js"}
            )

    def test_from_mapping_rejects_non_mapping(self) -> None:
        with pytest.raises(InputValidationError, match="JSON object"):
            AssetCoordinate.from_mapping(["jquery"])  # type: ignore[arg-type]


class TestSyncOutcome:
    """Tests for SyncOutcome serialization."""

    def test_already_mirrored(self) -> None:
        outcome = SyncOutcome.already_mirrored("a/1/a.js", "abc")
        assert outcome.ok
        assert outcome.http_status == 200
        assert outcome.to_dict() == {
            "code": 200,
            "msg": "ok",
            "data": {"hash": "abc", "key": "a/1/a.js"},
        }

    def test_uploaded(self) -> None:
        outcome = SyncOutcome.uploaded("a/1/a.js")
        assert outcome.to_dict() == {
            "code": 200,
            "msg": "ok",
            "data": {"key": "a/1/a.js"},
        }

    def test_failed_fetch(self) -> None:
        outcome = SyncOutcome.failed("a/1/a.js", SyncStage.FETCH, "404")
        assert not outcome.ok
        assert outcome.http_status == 500
        assert outcome.to_dict() == {
            "code": 500,
            "error": "Download failed",
            "stage": "fetch",
            "detail": "404",
        }

    def test_failed_upload(self) -> None:
        outcome = SyncOutcome.failed("a/1/a.js", SyncStage.UPLOAD, "denied")
        assert outcome.to_dict()["error"] == "Upload failed"
        assert outcome.to_dict()["stage"] == "upload"


class TestMirrorSynchronizer:
    """Tests for MirrorSynchronizer.sync."""

    @pytest.mark.asyncio
    async def test_uploads_missing_asset(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        """Probe 404, fetch without content type, upload as JavaScript."""
        async with upstreams.client() as client:
            outcome = await MirrorSynchronizer(cos_config, client=client).sync(
                JQUERY
            )

        assert outcome.status == SyncStatus.UPLOADED
        assert outcome.storage_key == "jquery/3.6.0/jquery.min.js"
        assert upstreams.methods() == ["HEAD", "GET", "PUT"]

        put = upstreams.requests[-1]
        assert str(put.url) == f"{BUCKET}/jquery/3.6.0/jquery.min.js"
        assert put.headers["content-type"] == (
            "application/javascript; charset=utf-8"
        )
        assert put.headers["content-disposition"] == "inline"
        authorization = put.headers["authorization"]
        assert authorization.startswith(
            "q-sign-algorithm=sha1&q-ak=AKIDcosexample&q-sign-time="
        )
        assert "&q-header-list=content-type;host&" in authorization
        assert upstreams.store["jquery/3.6.0/jquery.min.js"] == (
            BODY,
            "application/javascript; charset=utf-8",
        )

    @pytest.mark.asyncio
    async def test_source_content_type_preserved(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        upstreams.sources[f"{SOURCE}/jquery/3.6.0/jquery.min.js"] = (
            httpx.Response(
                200,
                content=BODY,
                headers={"Content-Type": "text/javascript"},
            )
        )
        async with upstreams.client() as client:
            await sync_asset(cos_config, JQUERY, client=client)

        assert upstreams.requests[-1].headers["content-type"] == (
            "text/javascript"
        )

    @pytest.mark.asyncio
    async def test_second_sync_is_already_mirrored(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        """Repeating a synchronization does not upload again."""
        async with upstreams.client() as client:
            synchronizer = MirrorSynchronizer(cos_config, client=client)
            first = await synchronizer.sync(JQUERY)
            second = await synchronizer.sync(JQUERY)

        assert first.status == SyncStatus.UPLOADED
        assert second.status == SyncStatus.ALREADY_MIRRORED
        assert second.content_hash == "d41d8cd9"
        assert second.to_dict()["data"] == {
            "hash": "d41d8cd9",
            "key": "jquery/3.6.0/jquery.min.js",
        }
        assert upstreams.methods() == ["HEAD", "GET", "PUT", "HEAD"]

    @pytest.mark.asyncio
    async def test_probe_error_treated_as_missing(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        upstreams.probe_error = httpx.ConnectError("connection refused")
        async with upstreams.client() as client:
            outcome = await sync_asset(cos_config, JQUERY, client=client)

        assert outcome.status == SyncStatus.UPLOADED
        assert upstreams.methods() == ["HEAD", "GET", "PUT"]

    @pytest.mark.asyncio
    async def test_source_not_found(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        missing = AssetCoordinate("jquery", "0.0.0", "nope.js")
        async with upstreams.client() as client:
            outcome = await sync_asset(cos_config, missing, client=client)

        assert outcome.status == SyncStatus.FAILED
        assert outcome.stage == SyncStage.FETCH
        assert outcome.detail == "404"
        assert "PUT" not in upstreams.methods()

    @pytest.mark.asyncio
    async def test_source_without_body(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        upstreams.sources[f"{SOURCE}/jquery/3.6.0/jquery.min.js"] = (
            httpx.Response(204)
        )
        async with upstreams.client() as client:
            outcome = await sync_asset(cos_config, JQUERY, client=client)

        assert outcome.stage == SyncStage.FETCH
        assert outcome.detail == "204"

    @pytest.mark.asyncio
    async def test_source_timeout(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        upstreams.source_error = httpx.ReadTimeout("read timed out")
        async with upstreams.client() as client:
            outcome = await sync_asset(cos_config, JQUERY, client=client)

        assert outcome.to_dict() == {
            "code": 500,
            "error": "Download failed",
            "stage": "fetch",
            "detail": "timeout",
        }

    @pytest.mark.asyncio
    async def test_source_transport_error(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        upstreams.source_error = httpx.ConnectError("connection reset")
        async with upstreams.client() as client:
            outcome = await sync_asset(cos_config, JQUERY, client=client)

        assert outcome.stage == SyncStage.FETCH
        assert outcome.detail == "connection reset"

    @pytest.mark.asyncio
    async def test_upload_rejected(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        upstreams.put_status = 403
        upstreams.put_text = "<Error><Code>AccessDenied</Code></Error>"
        async with upstreams.client() as client:
            outcome = await sync_asset(cos_config, JQUERY, client=client)

        assert outcome.status == SyncStatus.FAILED
        assert outcome.stage == SyncStage.UPLOAD
        assert outcome.detail == "<Error><Code>AccessDenied</Code></Error>"
        assert outcome.to_dict()["error"] == "Upload failed"

    @pytest.mark.asyncio
    async def test_upload_rejected_without_body(
        self, cos_config: CosConfig, upstreams: FakeUpstreams
    ) -> None:
        """Without an error body the status text is reported."""
        upstreams.put_status = 403
        async with upstreams.client() as client:
            outcome = await sync_asset(cos_config, JQUERY, client=client)

        assert outcome.detail == "Forbidden"

    @pytest.mark.asyncio
    async def test_custom_source_base_url(
        self, cos_config: CosConfig
    ) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(404)

        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            await sync_asset(
                cos_config,
                JQUERY,
                cdnjs_base_url="https://mirror.example.net/libs",
                client=client,
            )

        assert seen[1] == (
            "https://mirror.example.net/libs/jquery/3.6.0/jquery.min.js"
        )

    def test_incomplete_credentials_rejected(self) -> None:
        """Credentials are checked before any request is made."""
        cos = CosConfig(
            bucket="libs-1",
            region="ap-guangzhou",
            credential=Credential("AKIDcosexample", ""),
            custom_domain="cdn.example.com",
        )
        with pytest.raises(SigningPreconditionError):
            MirrorSynchronizer(cos)
