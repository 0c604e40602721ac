# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the cdnjs library metadata proxy."""

import httpx
import pytest

from cdnmirror.errors import InputValidationError, UpstreamUnavailableError
from cdnmirror.libraries import fetch_library, library_url


API = "https://api.cdnjs.com/libraries"


class TestLibraryUrl:
    """Tests for library_url."""

    def test_name_only(self) -> None:
        assert library_url(API, "jquery") == f"{API}/jquery"

    def test_name_and_version(self) -> None:
        assert library_url(API + "/", "jquery", "3.6.0") == (
            f"{API}/jquery/3.6.0"
        )

    def test_encodes_segments(self) -> None:
        assert library_url(API, "a/b", "1 0") == f"{API}/a%2Fb/1%200"


class TestFetchLibrary:
    """Tests for fetch_library."""

    @pytest.mark.asyncio
    async def test_passes_status_and_body_through(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"name": "jquery", "files": []})

        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            status, data = await fetch_library(
                "jquery", "3.6.0", client=client
            )

        assert status == 200
        assert data == {"name": "jquery", "files": []}
        assert seen == [f"{API}/jquery/3.6.0"]

    @pytest.mark.asyncio
    async def test_upstream_error_status_mirrored(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": True, "status": 404})

        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            status, data = await fetch_library("no-such-lib", client=client)

        assert status == 404
        assert data == {"error": True, "status": 404}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", [None, ""])
    async def test_missing_name(self, name: str | None) -> None:
        with pytest.raises(InputValidationError, match="Missing library name"):
            await fetch_library(name)

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(UpstreamUnavailableError) as exc_info:
                await fetch_library("jquery", client=client)

        assert exc_info.value.detail == "connection refused"
        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(UpstreamUnavailableError, match="non-JSON"):
                await fetch_library("jquery", client=client)
