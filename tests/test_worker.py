from __future__ import annotations

import bz2
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx
import zstandard

from solve_server.core.config import settings
from solve_server.workers.fetcher import (
    DecodeError,
    NetworkError,
    ParseError,
    fetch_repodata,
)

_CHANNEL = "https://conda.anaconda.org/conda-forge/"
_SUBDIR = f"{_CHANNEL}linux-64/"


def _body(repodata: dict) -> bytes:
    return json.dumps(repodata).encode()


# ---------------------------------------------------------------------------
# Plain downloads
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("no_probe")
class TestFetcher:
    async def test_successful_fetch(self, small_repodata):
        with respx.mock:
            route = respx.get(f"{_SUBDIR}repodata.json").mock(
                return_value=httpx.Response(200, content=_body(small_repodata))
            )
            repodata = await fetch_repodata(_CHANNEL, "linux-64")

        assert route.call_count == 1
        assert repodata.channel == _CHANNEL
        assert repodata.subdir == "linux-64"
        assert {r.name for r in repodata.records} == {"_libgcc_mutex", "libgomp"}

    async def test_records_know_where_they_come_from(self, small_repodata):
        with respx.mock:
            respx.get(f"{_SUBDIR}repodata.json").mock(
                return_value=httpx.Response(200, content=_body(small_repodata))
            )
            repodata = await fetch_repodata(_CHANNEL, "linux-64")

        (libgomp,) = repodata.by_name["libgomp"]
        assert libgomp.filename == "libgomp-12.2.0-h65d4601_19.tar.bz2"
        assert libgomp.url == f"{_SUBDIR}libgomp-12.2.0-h65d4601_19.tar.bz2"
        assert libgomp.channel == _CHANNEL
        assert libgomp.depends == ("_libgcc_mutex 0.1 conda_forge",)

    async def test_packages_conda_are_included(self, empty_repodata):
        empty_repodata["packages.conda"] = {
            "tzdata-2023c-h71feb2d_0.conda": {
                "name": "tzdata",
                "version": "2023c",
                "build": "h71feb2d_0",
                "build_number": 0,
                "subdir": "noarch",
            }
        }
        with respx.mock:
            respx.get(f"{_CHANNEL}noarch/repodata.json").mock(
                return_value=httpx.Response(200, content=_body(empty_repodata))
            )
            repodata = await fetch_repodata(_CHANNEL, "noarch")

        (tzdata,) = repodata.records
        assert tzdata.filename.endswith(".conda")

    async def test_invalid_versions_are_skipped(self, small_repodata):
        small_repodata["packages"]["broken-1-0.tar.bz2"] = {
            "name": "broken",
            "version": "1-2",
            "build": "0",
        }
        with respx.mock:
            respx.get(f"{_SUBDIR}repodata.json").mock(
                return_value=httpx.Response(200, content=_body(small_repodata))
            )
            repodata = await fetch_repodata(_CHANNEL, "linux-64")

        assert "broken" not in repodata.by_name
        assert len(repodata.records) == 2

    async def test_non_200_response_raises_network_error(self):
        with respx.mock:
            respx.get(f"{_SUBDIR}repodata.json").mock(return_value=httpx.Response(404))
            with pytest.raises(NetworkError, match="HTTP 404") as excinfo:
                await fetch_repodata(_CHANNEL, "linux-64")

        assert excinfo.value.url == f"{_SUBDIR}repodata.json"

    async def test_malformed_json_raises_parse_error(self):
        with respx.mock:
            respx.get(f"{_SUBDIR}repodata.json").mock(
                return_value=httpx.Response(200, content=b'{"packages": ')
            )
            with pytest.raises(ParseError, match="Malformed JSON"):
                await fetch_repodata(_CHANNEL, "linux-64")

    async def test_json_that_is_not_repodata_raises_parse_error(self):
        with respx.mock:
            respx.get(f"{_SUBDIR}repodata.json").mock(
                return_value=httpx.Response(200, content=b'{"packages": ["not", "a", "mapping"]}')
            )
            with pytest.raises(ParseError, match="not a repodata document"):
                await fetch_repodata(_CHANNEL, "linux-64")

    async def test_timeout_retries_and_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "http_max_retries", 1)
        with (
            patch("asyncio.sleep", new_callable=AsyncMock),
            patch(
                "solve_server.workers.fetcher._do_download", new_callable=AsyncMock
            ) as mock_download,
        ):
            mock_download.side_effect = httpx.TimeoutException("timed out")
            with pytest.raises(NetworkError, match="after 2 attempts"):
                await fetch_repodata(_CHANNEL, "linux-64")
        assert mock_download.call_count == 2

    async def test_connect_error_retries_and_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "http_max_retries", 1)
        with (
            patch("asyncio.sleep", new_callable=AsyncMock),
            patch(
                "solve_server.workers.fetcher._do_download", new_callable=AsyncMock
            ) as mock_download,
        ):
            mock_download.side_effect = httpx.ConnectError("refused")
            with pytest.raises(NetworkError):
                await fetch_repodata(_CHANNEL, "linux-64")
        assert mock_download.call_count == 2

    async def test_transient_error_then_success(self, monkeypatch, small_repodata):
        monkeypatch.setattr(settings, "http_max_retries", 2)
        with patch("asyncio.sleep", new_callable=AsyncMock), respx.mock:
            route = respx.get(f"{_SUBDIR}repodata.json").mock(
                side_effect=[
                    httpx.ConnectError("refused"),
                    httpx.Response(200, content=_body(small_repodata)),
                ]
            )
            repodata = await fetch_repodata(_CHANNEL, "linux-64")

        assert route.call_count == 2
        assert len(repodata.records) == 2


# ---------------------------------------------------------------------------
# Compressed variants
# ---------------------------------------------------------------------------


class TestCompressedVariants:
    async def test_zst_is_preferred(self, small_repodata):
        payload = zstandard.ZstdCompressor().compress(_body(small_repodata))
        with respx.mock(assert_all_called=False) as respx_mock:
            respx_mock.head(f"{_SUBDIR}repodata.json.zst").mock(return_value=httpx.Response(200))
            zst = respx_mock.get(f"{_SUBDIR}repodata.json.zst").mock(
                return_value=httpx.Response(200, content=payload)
            )
            plain = respx_mock.get(f"{_SUBDIR}repodata.json")
            repodata = await fetch_repodata(_CHANNEL, "linux-64")

        assert zst.call_count == 1
        assert not plain.called
        assert len(repodata.records) == 2

    async def test_bz2_when_zst_is_missing(self, small_repodata):
        with respx.mock:
            respx.head(f"{_SUBDIR}repodata.json.zst").mock(return_value=httpx.Response(404))
            respx.head(f"{_SUBDIR}repodata.json.bz2").mock(return_value=httpx.Response(200))
            respx.get(f"{_SUBDIR}repodata.json.bz2").mock(
                return_value=httpx.Response(200, content=bz2.compress(_body(small_repodata)))
            )
            repodata = await fetch_repodata(_CHANNEL, "linux-64")

        assert repodata.by_name["libgomp"][0].version == "12.2.0"

    async def test_failed_probes_fall_back_to_plain_json(self, small_repodata):
        with respx.mock:
            respx.head(f"{_SUBDIR}repodata.json.zst").mock(
                side_effect=httpx.ConnectError("refused")
            )
            respx.head(f"{_SUBDIR}repodata.json.bz2").mock(return_value=httpx.Response(404))
            plain = respx.get(f"{_SUBDIR}repodata.json").mock(
                return_value=httpx.Response(200, content=_body(small_repodata))
            )
            await fetch_repodata(_CHANNEL, "linux-64")

        assert plain.call_count == 1

    async def test_truncated_zst_raises_decode_error(self, small_repodata):
        payload = zstandard.ZstdCompressor().compress(_body(small_repodata))
        with respx.mock:
            respx.head(f"{_SUBDIR}repodata.json.zst").mock(return_value=httpx.Response(200))
            respx.get(f"{_SUBDIR}repodata.json.zst").mock(
                return_value=httpx.Response(200, content=payload[: len(payload) // 2])
            )
            with pytest.raises(DecodeError, match="Cannot decompress"):
                await fetch_repodata(_CHANNEL, "linux-64")

    async def test_corrupt_zst_raises_decode_error(self):
        with respx.mock:
            respx.head(f"{_SUBDIR}repodata.json.zst").mock(return_value=httpx.Response(200))
            respx.get(f"{_SUBDIR}repodata.json.zst").mock(
                return_value=httpx.Response(200, content=b"definitely not zstd")
            )
            with pytest.raises(DecodeError, match="Cannot decompress"):
                await fetch_repodata(_CHANNEL, "linux-64")
