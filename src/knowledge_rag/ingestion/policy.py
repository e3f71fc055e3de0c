"""Per-category retention policy and path-based category inference."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path

from knowledge_rag.config import Settings, settings

DEFAULT_CATEGORY = "general"

# Keyword → category, checked in order against the lower-cased path.
_PATH_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("menu", "carta"), "menu"),
    (("policy", "politica", "política"), "policy"),
    (("recipe", "receta"), "recipe"),
    (("history", "historia"), "history"),
    (("faq", "pregunta"), "faq"),
    (("training", "capacita"), "training"),
    (("promo",), "promo"),
)


class CategoryPolicy:
    """Read-only mapping ``category → ttl`` where ``None`` means no expiry.

    Unknown categories resolve to the TTL of *default_category*.
    """

    def __init__(
        self,
        ttls: Mapping[str, timedelta | None],
        *,
        default_category: str = DEFAULT_CATEGORY,
    ) -> None:
        self._ttls = dict(ttls)
        self.default_category = default_category

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> CategoryPolicy:
        config = config or settings
        return cls(
            {
                category: timedelta(days=days) if days is not None else None
                for category, days in config.category_ttl_days.items()
            }
        )

    def ttl_for(self, category: str | None) -> timedelta | None:
        if category in self._ttls:
            return self._ttls[category]
        return self._ttls.get(self.default_category)

    def categories(self) -> list[str]:
        return list(self._ttls)

    def __contains__(self, category: object) -> bool:
        return category in self._ttls


def detect_category_from_path(path: str | Path) -> str:
    """Infer a category from keywords in a file path."""
    lower = str(path).lower()
    for keywords, category in _PATH_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return category
    return DEFAULT_CATEGORY
