"""Tests for source selection value objects."""

import pytest

from tracksync.domain.exceptions import ValidationError
from tracksync.domain.value_objects import (
    MONOCHROME,
    REAL_DEBRID,
    SQUIDWTF,
    AudioQuality,
    SourceConfig,
    SourceMode,
    quality_from_filename,
)


class TestSourceConfig:
    """Test SourceConfig construction."""

    def test_single_debrid_source(self) -> None:
        """Single real-debrid source is debrid priority."""
        config = SourceConfig.single(REAL_DEBRID)
        assert config.mode == SourceMode.DEBRID_PRIORITY
        assert config.sources == (REAL_DEBRID,)

    def test_single_scraping_source(self) -> None:
        """Single scraping source is scraping priority."""
        config = SourceConfig.single(MONOCHROME, quality=AudioQuality.LOW)
        assert config.mode == SourceMode.SCRAPING_PRIORITY
        assert config.quality == AudioQuality.LOW

    def test_chain_keeps_order(self) -> None:
        """Chain order is exactly the order given."""
        config = SourceConfig.chain(SQUIDWTF, REAL_DEBRID, allow_parallel_pending=True)
        assert config.mode == SourceMode.HYBRID_PRIORITY
        assert config.sources == (SQUIDWTF, REAL_DEBRID)
        assert config.allow_parallel_pending is True

    def test_empty_chain_rejected(self) -> None:
        """A config must name at least one source."""
        with pytest.raises(ValidationError):
            SourceConfig.chain()

    def test_duplicate_sources_rejected(self) -> None:
        """The same source twice in a chain is a config bug."""
        with pytest.raises(ValidationError, match="Duplicate"):
            SourceConfig.chain(SQUIDWTF, SQUIDWTF)


class TestAudioQuality:
    """Test quality mapping."""

    @pytest.mark.parametrize(
        ("quality", "expected"),
        [
            (AudioQuality.HIGH, "LOSSLESS"),
            (AudioQuality.MEDIUM, "HIGH"),
            (AudioQuality.LOW, "LOW"),
        ],
    )
    def test_to_tidal_quality(self, quality: AudioQuality, expected: str) -> None:
        """Each tier maps to a Tidal quality name."""
        assert quality.to_tidal_quality() == expected

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("01 Midnight City.flac", "FLAC"),
            ("M83 - Hurry Up [320kbps]/01.mp3", "320kbps"),
            ("album 256 vbr/track.mp3", "256kbps"),
            ("track.mp3", "MP3"),
        ],
    )
    def test_quality_from_filename(self, filename: str, expected: str) -> None:
        """Quality label is guessed from the file name."""
        assert quality_from_filename(filename) == expected
