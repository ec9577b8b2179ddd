"""Tests for the apibay torrent index client."""

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from tracksync.config import TorrentIndexSettings
from tracksync.domain.dtos import TorrentSearchResult
from tracksync.infrastructure.integrations.apibay_client import (
    ApibayTorrentIndex,
    dedupe_results,
    generate_query_variants,
    matches_all_words,
    normalize_query,
)


def _row(torrent_id: str, name: str, info_hash: str, seeders: int) -> dict[str, Any]:
    return {
        "id": torrent_id,
        "name": name,
        "info_hash": info_hash,
        "size": "123456",
        "seeders": str(seeders),
        "leechers": "0",
    }


def _index(
    handler: Callable[[httpx.Request], httpx.Response], **settings: Any
) -> tuple[ApibayTorrentIndex, list[str]]:
    queries: list[str] = []

    def recording(request: httpx.Request) -> httpx.Response:
        queries.append(request.url.params["q"])
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return ApibayTorrentIndex(TorrentIndexSettings(**settings), client=client), queries


class TestQueryHelpers:
    """Test query normalization and variants."""

    def test_normalize_query(self) -> None:
        """Separators split, short words dropped."""
        assert normalize_query("Salmo-Hellvisback_2016 a") == ["salmo", "hellvisback", "2016"]

    def test_variants_original_first(self) -> None:
        """The untouched query is tried first, then separator spellings."""
        variants = generate_query_variants("Salmo Hellvisback")
        assert variants[0] == "Salmo Hellvisback"
        assert "salmo-hellvisback" in variants
        assert "salmo.hellvisback" in variants
        assert "salmohellvisback" in variants
        assert variants[-1] == "salmo"
        assert len(variants) == len(set(variants))

    def test_single_word_has_no_variants(self) -> None:
        """One word is searched as is."""
        assert generate_query_variants("M83") == ["M83"]

    def test_matches_all_words(self) -> None:
        """Dots, dashes and underscores count as spaces."""
        assert matches_all_words("M83.Hurry_Up-2011", ["m83", "hurry", "up"]) is True
        assert matches_all_words("M83 Live", ["m83", "hurry"]) is False

    def test_dedupe_on_hash(self) -> None:
        """Same info hash (any case) is one torrent."""
        results = [
            TorrentSearchResult("1", "A", "abc", 1, 1),
            TorrentSearchResult("2", "A copy", "ABC", 1, 1),
            TorrentSearchResult("3", "B", "def", 1, 1),
        ]
        assert [r.torrent_id for r in dedupe_results(results)] == ["1", "3"]

    def test_magnet_uri(self) -> None:
        """Magnet carries the hash and the encoded name."""
        result = TorrentSearchResult("1", "M83 Hurry Up", "abc123", 1, 1)
        assert result.magnet == "magnet:?xt=urn:btih:abc123&dn=M83%20Hurry%20Up"


class TestApibayTorrentIndex:
    """Test search against a mocked apibay."""

    async def test_search_merges_filters_and_sorts(self) -> None:
        """Variants are merged, off-topic hits filtered, best seeded first."""
        rows = [
            _row("10", "M83 - Hurry Up, We're Dreaming [FLAC]", "AAA", 5),
            _row("11", "M83 Hurry Up Were Dreaming 320", "BBB", 50),
            _row("12", "Some Other Album", "CCC", 500),
        ]
        index, queries = _index(lambda request: httpx.Response(200, json=rows))

        results = await index.search("M83 Hurry Up")

        assert sorted(queries) == ["M83 Hurry Up", "m83 hurry up"]
        assert [r.torrent_id for r in results] == ["11", "10"]
        assert results[1].info_hash == "aaa"
        assert results[0].seeders == 50

    async def test_no_results_placeholder(self) -> None:
        """apibay's id "0" row means nothing was found."""
        placeholder = [_row("0", "No results returned", "0" * 40, 0)]
        index, _ = _index(lambda request: httpx.Response(200, json=placeholder))

        assert await index.search("nothing here") == []

    async def test_unfiltered_when_filter_removes_everything(self) -> None:
        """If no title has every word, fall back to the raw hits."""
        rows = [_row("20", "Hurry Up", "AAA", 1)]
        index, _ = _index(lambda request: httpx.Response(200, json=rows))

        results = await index.search("M83 Hurry Up")

        assert [r.torrent_id for r in results] == ["20"]

    async def test_capped_at_max_results(self) -> None:
        """Only max_results come back."""
        rows = [_row(str(i), f"M83 Album {i}", f"H{i}", i) for i in range(1, 10)]
        index, _ = _index(lambda request: httpx.Response(200, json=rows), max_results=3)

        results = await index.search("M83 Album")

        assert [r.torrent_id for r in results] == ["9", "8", "7"]

    @pytest.mark.parametrize(
        ("status", "body"),
        [
            (502, {"text": "Bad Gateway"}),
            (200, {"text": "<html>not json</html>"}),
            (200, {"json": {"unexpected": "shape"}}),
        ],
    )
    async def test_bad_answers_are_empty(self, status: int, body: dict[str, Any]) -> None:
        """Index failures degrade to an empty result."""
        index, _ = _index(lambda request: httpx.Response(status, **body))

        assert await index.search("M83 Hurry Up") == []

    async def test_network_error_is_empty(self) -> None:
        """Transport errors are logged, not raised."""

        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("apibay down", request=request)

        index, _ = _index(fail)

        assert await index.search("M83") == []
