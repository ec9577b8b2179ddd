"""Fuzzy title matching for noisy filenames and remote search results.

Hey future me - this is the gatekeeper that decides "is this file the song the user wanted?".
Torrent filenames look like "01 - Midnight_City_(Explicit)_M83.flac", streaming mirrors return
"Midnight City (Remastered 2021)". Pure equality misses almost everything, pure substring
matches "Intro" against half the internet. So we run a graduated ladder of checks:

1. Normalize both sides (accents, apostrophes, (...) and [...] segments, punctuation).
2. Containment either way.
3. All significant title words present.
4. Long titles (4+ words) tolerate one missing word.
5. Short titles (<= 3 words) need every word.
6. Symmetric fallback for truncated filenames.

Everything in here is pure: no I/O, no globals that change. Same input, same answer.
"""

import re
import unicodedata

from rapidfuzz import fuzz

# Italian + English articles/prepositions, plus audio extensions that leak in from filenames.
STOP_WORDS: frozenset[str] = frozenset(
    {
        "a",
        "e",
        "i",
        "o",
        "u",
        "il",
        "la",
        "lo",
        "le",
        "gli",
        "un",
        "una",
        "uno",
        "di",
        "da",
        "in",
        "con",
        "su",
        "per",
        "tra",
        "fra",
        "del",
        "della",
        "dei",
        "degli",
        "al",
        "alla",
        "the",
        "an",
        "of",
        "to",
        "and",
        "or",
        "for",
        "mp3",
        "flac",
        "wav",
        "m4a",
        "aac",
        "ogg",
    }
)

_APOSTROPHES = re.compile("['‘’`]")
_PARENTHETICAL = re.compile(r"\([^)]*\)")
_BRACKETED = re.compile(r"\[[^\]]*\]")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_NUMERIC = re.compile(r"^\d+$")

# Partial-coverage thresholds
LONG_TITLE_WORDS = 4
LONG_TITLE_MIN_PRESENT = 3
FALLBACK_MIN_WORDS = 2
FALLBACK_RATIO = 0.8


def _strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_for_match(text: str) -> str:
    """Normalize a title or filename for comparison.

    Args:
        text: Raw title, filename or path

    Returns:
        Lowercase ASCII-ish text with brackets, punctuation and extra spaces removed
    """
    normalized = _strip_diacritics(text.lower())
    normalized = _APOSTROPHES.sub("", normalized)
    normalized = _PARENTHETICAL.sub("", normalized)
    normalized = _BRACKETED.sub("", normalized)
    normalized = _NON_ALNUM.sub(" ", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def normalize_loose(text: str) -> str:
    """Normalize without dropping bracketed segments.

    Used for scoring remote search results where "(Live)" or "[Remix]" should still count
    against an exact title hit.
    """
    normalized = _strip_diacritics(text.lower())
    normalized = _NON_ALNUM.sub(" ", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def extract_significant_words(text: str) -> list[str]:
    """Split text into words worth matching on.

    Drops stop words, single characters and purely numeric tokens (track numbers, years).

    Args:
        text: Raw text (normalized internally)

    Returns:
        Significant words in original order
    """
    return [
        word
        for word in normalize_for_match(text).split()
        if len(word) > 1 and word not in STOP_WORDS and not _NUMERIC.match(word)
    ]


def title_matches(candidate_text: str, target_title: str) -> bool:
    """Decide whether a candidate (filename, path, remote title) is the target track.

    Args:
        candidate_text: Free-text candidate, e.g. "01 Midnight City.flac"
        target_title: Title from the metadata provider, e.g. "Midnight City"

    Returns:
        True if the candidate is considered the same song
    """
    normalized_candidate = normalize_for_match(candidate_text)
    normalized_target = normalize_for_match(target_title)

    if not normalized_candidate or not normalized_target:
        return False

    if normalized_target in normalized_candidate:
        return True
    if len(normalized_target) > 3 and normalized_candidate in normalized_target:
        return True

    title_words = extract_significant_words(target_title)
    if not title_words:
        return False

    present = [word for word in title_words if word in normalized_candidate]

    # Short titles land here only with full coverage
    if len(present) == len(title_words):
        return True
    if len(title_words) >= LONG_TITLE_WORDS and len(present) >= LONG_TITLE_MIN_PRESENT:
        return True

    # Truncated filenames: most of what the file says is in the title
    candidate_words = extract_significant_words(candidate_text)
    if len(candidate_words) >= FALLBACK_MIN_WORDS:
        in_title = [word for word in candidate_words if word in title_words]
        if (
            len(in_title) >= len(candidate_words) * FALLBACK_RATIO
            and len(in_title) >= FALLBACK_MIN_WORDS
        ):
            return True

    return False


def _score_field(remote: str, wanted: str) -> float:
    if remote == wanted:
        return 100.0
    if remote and wanted and (wanted in remote or remote in wanted):
        return 50.0
    words = [word for word in wanted.split(" ") if len(word) > 2]
    hits = [word for word in words if word in remote]
    return len(hits) / max(len(words), 1) * 40.0


def score_remote_match(
    remote_title: str, remote_artist: str, title: str, artist: str
) -> float:
    """Score a streaming search result against the wanted track.

    Title and artist contribute up to 100 points each: exact hit 100, containment 50,
    otherwise the share of words (longer than 2 chars) found, times 40.

    Args:
        remote_title: Title reported by the backend
        remote_artist: Main artist reported by the backend
        title: Wanted title
        artist: Wanted artist

    Returns:
        Score between 0 and 200
    """
    return _score_field(normalize_loose(remote_title), normalize_loose(title)) + _score_field(
        normalize_loose(remote_artist), normalize_loose(artist)
    )


def rank_by_similarity(query: str, titles: list[str]) -> list[int]:
    """Order titles by token-set similarity to a query.

    Args:
        query: Search query ("album artist")
        titles: Candidate titles (torrent names)

    Returns:
        Indices into titles, best match first (stable for ties)
    """
    normalized_query = normalize_loose(query)
    scores = [
        fuzz.token_set_ratio(normalized_query, normalize_loose(title)) for title in titles
    ]
    return sorted(range(len(titles)), key=lambda index: -scores[index])
