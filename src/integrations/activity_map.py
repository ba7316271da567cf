"""Load and validate the provider activity taxonomy.

The mapping lives in ``activity_map.yaml`` alongside this module.  It is
loaded once and cached; ``reload_activity_map()`` re-reads it from disk.

Usage::

    from src.integrations.activity_map import get_activity_map

    activity_map = get_activity_map()
    activity_map.lookup("whoop", 0)       # 'running'
    activity_map.lookup("strava", "Kite") # 'other'
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("ritual.integrations.activity_map")

_MAP_PATH = Path(__file__).parent / "activity_map.yaml"

FALLBACK_CATEGORY = "other"


class ActivityMapError(ValueError):
    """Raised when activity_map.yaml fails validation."""


@dataclass
class ActivityTypeMap:
    """Closed internal category set plus one lookup table per provider.

    Provider codes are normalised to strings so integer sport ids and
    string sport types share one lookup path.
    """

    version: str
    categories: frozenset[str]
    tables: dict[str, dict[str, str]] = field(default_factory=dict)

    def lookup(self, provider: str, code: object) -> str:
        """Return the internal category for a provider code.

        Unmapped codes (and unknown providers) fall back to ``other``;
        this never raises.
        """
        if code is None:
            return FALLBACK_CATEGORY
        return self.tables.get(provider, {}).get(str(code), FALLBACK_CATEGORY)


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Activity map not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ActivityMapError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> ActivityTypeMap:
    """Validate the parsed YAML and construct an ActivityTypeMap.

    Raises:
        ActivityMapError: If categories are missing or a mapped value falls
                          outside the closed category set.
    """
    errors: list[str] = []

    categories = raw.get("categories") or []
    if not categories:
        errors.append("'categories' section is missing or empty")
    category_set = frozenset(str(c) for c in categories)
    if categories and FALLBACK_CATEGORY not in category_set:
        errors.append(f"'categories' must include '{FALLBACK_CATEGORY}'")

    tables: dict[str, dict[str, str]] = {}
    for provider, table in (raw.get("providers") or {}).items():
        if not isinstance(table, dict):
            errors.append(f"providers.{provider} must be a mapping of code→category")
            continue
        tables[provider] = {}
        for code, category in table.items():
            if category not in category_set:
                errors.append(
                    f"providers.{provider}.{code} = {category!r} is not a known category"
                )
                continue
            tables[provider][str(code)] = category

    if errors:
        raise ActivityMapError(
            f"activity_map.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ActivityTypeMap(
        version=str(raw.get("version", "1.0")),
        categories=category_set,
        tables=tables,
    )


def load_activity_map(path: Path | None = None) -> ActivityTypeMap:
    target = path or _MAP_PATH
    activity_map = _validate_and_build(_load_yaml(target))
    logger.info(
        "Loaded activity map v%s from %s (%d providers)",
        activity_map.version,
        target,
        len(activity_map.tables),
    )
    return activity_map


# ---------------------------------------------------------------------------
# Global singleton with reload support
# ---------------------------------------------------------------------------

_activity_map: ActivityTypeMap | None = None
_map_lock = threading.Lock()


def get_activity_map() -> ActivityTypeMap:
    """Return the cached ActivityTypeMap, loading it on first call."""
    global _activity_map
    if _activity_map is None:
        with _map_lock:
            if _activity_map is None:
                _activity_map = load_activity_map()
    return _activity_map


def reload_activity_map(path: Path | None = None) -> ActivityTypeMap:
    """Re-read the mapping; the old one is kept if validation fails."""
    global _activity_map
    new_map = load_activity_map(path)
    with _map_lock:
        _activity_map = new_map
    return new_map
