"""Page publisher used for auto-posting finished articles."""

from __future__ import annotations

from typing import Any, Protocol


class PagePublisher(Protocol):
    def publish(self, *, keyword: str, article: dict[str, Any], seo: dict[str, Any] | None) -> str:
        """Create a page for a finished article and return its id."""
