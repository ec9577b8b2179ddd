"""Tests for the source adapter registry."""

from collections.abc import Callable
from typing import Any

from tracksync.infrastructure.providers import SourceRegistry


class TestSourceRegistry:
    """Test registration and availability."""

    def test_register_and_get(self, make_adapter: Callable[..., Any]) -> None:
        """Adapters are found by source id."""
        registry = SourceRegistry()
        adapter = make_adapter("squidwtf")

        registry.register(adapter)

        assert registry.get("squidwtf") is adapter
        assert "squidwtf" in registry
        assert len(registry) == 1
        assert registry.get("monochrome") is None

    def test_register_replaces(self, make_adapter: Callable[..., Any]) -> None:
        """Registering the same id twice keeps the newer adapter."""
        registry = SourceRegistry()
        registry.register(make_adapter("squidwtf"))
        newer = make_adapter("squidwtf")

        registry.register(newer)

        assert registry.get("squidwtf") is newer
        assert len(registry) == 1

    def test_unregister(self, make_adapter: Callable[..., Any]) -> None:
        """Unregistering removes; unknown ids are ignored."""
        registry = SourceRegistry()
        registry.register(make_adapter("squidwtf"))

        registry.unregister("squidwtf")
        registry.unregister("never-registered")

        assert "squidwtf" not in registry

    def test_get_all_keeps_order(self, make_adapter: Callable[..., Any]) -> None:
        """get_all lists adapters in registration order."""
        registry = SourceRegistry()
        for name in ("real-debrid", "squidwtf", "monochrome"):
            registry.register(make_adapter(name))

        assert [a.source_name for a in registry.get_all()] == [
            "real-debrid",
            "squidwtf",
            "monochrome",
        ]

    async def test_get_available(self, make_adapter: Callable[..., Any]) -> None:
        """Unavailable and crashing checks are filtered out."""
        registry = SourceRegistry()
        registry.register(make_adapter("real-debrid", available=True))
        registry.register(make_adapter("squidwtf", available=False))
        registry.register(make_adapter("monochrome", available=RuntimeError("boom")))

        available = await registry.get_available()

        assert [a.source_name for a in available] == ["real-debrid"]
