"""Public torrent index client (apibay JSON API)."""

import asyncio
import logging
import re

import httpx

from tracksync.config import TorrentIndexSettings
from tracksync.domain.dtos import TorrentSearchResult
from tracksync.domain.ports import ITorrentIndex
from tracksync.infrastructure.integrations.http_pool import PooledClientMixin

logger = logging.getLogger(__name__)

_QUERY_SPLIT = re.compile(r"[\s\-_.]+")
_TITLE_SEPARATORS = re.compile(r"[\-_.]")
_WHITESPACE = re.compile(r"\s+")

# apibay answers "no results" with a single placeholder row whose id is "0"
_EMPTY_RESULT_ID = "0"


def normalize_query(query: str) -> list[str]:
    """Lowercase query words, split on spaces and common filename separators.

    Words shorter than 2 characters are dropped.
    """
    return [word for word in _QUERY_SPLIT.split(query.lower()) if len(word) >= 2]


# Yo, uploaders name releases "Salmo-Hellvisback", "salmo.hellvisback", "SalmoHellvisback"...
# The index does plain substring search, so we ask for every spelling and merge.
def generate_query_variants(query: str) -> list[str]:
    """Build query spellings with different separators, original first."""
    words = normalize_query(query)
    if len(words) <= 1:
        return [query]

    variants: list[str] = []
    for variant in (
        query,
        " ".join(words),
        "-".join(words),
        ".".join(words),
        "_".join(words),
        "".join(words),
    ):
        if variant not in variants:
            variants.append(variant)
    if len(words[0]) >= 3 and words[0] not in variants:
        variants.append(words[0])
    return variants


def matches_all_words(title: str, query_words: list[str]) -> bool:
    """True if every query word appears in the title (separators ignored)."""
    normalized = _WHITESPACE.sub(" ", _TITLE_SEPARATORS.sub(" ", title.lower()))
    return all(word in normalized for word in query_words)


def dedupe_results(results: list[TorrentSearchResult]) -> list[TorrentSearchResult]:
    """Drop repeated torrents, keyed on info hash (title when the hash is missing)."""
    seen: set[str] = set()
    unique = []
    for result in results:
        key = (result.info_hash or result.name).lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique


class ApibayTorrentIndex(PooledClientMixin, ITorrentIndex):
    """ITorrentIndex over the apibay.org JSON endpoint."""

    # Number of query variants sent per search
    MAX_VARIANTS = 2

    def __init__(
        self, settings: TorrentIndexSettings, client: httpx.AsyncClient | None = None
    ) -> None:
        """Initialize index client.

        Args:
            settings: Torrent index configuration
            client: Optional injected httpx client
        """
        self.settings = settings
        self._http = client
        self._base_url = settings.apibay_url.rstrip("/")

    async def _search_once(self, query: str) -> list[TorrentSearchResult]:
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self._base_url}/q.php",
                params={"q": query},
                headers={"Accept": "application/json"},
                timeout=self.settings.request_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Torrent index search failed for '%s': %s", query, e)
            return []

        if not isinstance(data, list):
            return []

        results = []
        for item in data:
            if str(item.get("id", _EMPTY_RESULT_ID)) == _EMPTY_RESULT_ID:
                continue
            results.append(
                TorrentSearchResult(
                    torrent_id=str(item["id"]),
                    name=item.get("name") or "",
                    info_hash=(item.get("info_hash") or "").lower(),
                    size=int(item.get("size") or 0),
                    seeders=int(item.get("seeders") or 0),
                )
            )
        return results

    async def search(self, query: str) -> list[TorrentSearchResult]:
        """Search the index with query variants, merged and ranked.

        Results are deduped, filtered to titles containing all query words (when that leaves
        anything), sorted by seeders and capped at max_results.
        """
        variants = generate_query_variants(query)[: self.MAX_VARIANTS]
        batches = await asyncio.gather(*(self._search_once(variant) for variant in variants))
        results = dedupe_results([result for batch in batches for result in batch])

        query_words = normalize_query(query)
        if len(query_words) > 1:
            filtered = [result for result in results if matches_all_words(result.name, query_words)]
            if filtered:
                results = filtered

        results.sort(key=lambda result: result.seeders, reverse=True)
        logger.info(
            "Torrent index: %d results for '%s' (%d variants)",
            len(results),
            query,
            len(variants),
        )
        return results[: self.settings.max_results]
