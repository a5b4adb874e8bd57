"""
memopad Configuration

Configuration dataclasses for storage, autosave, search, and export. Includes
load_config() for reading a JSON config file with silent fallback to compiled
defaults.

Author: memopad contributors
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from memopad.autosave import (
    DEBOUNCE_DELAY,
    MAX_RETRIES,
    RETRY_BACKOFF_CAP,
    RETRY_BASE_DELAY,
)
from memopad.export import UNTITLED_PLACEHOLDER
from memopad.store import STORAGE_KEY, STORAGE_QUOTA_LIMIT

SEARCH_DEBOUNCE_DELAY = 0.3
VALID_BACKENDS: set = {"memory", "file", "sqlite"}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        types = typ if isinstance(typ, tuple) else (typ,)
        expected = "|".join(t.__name__ for t in types)
        errors.append(f"{name}: expected {expected}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


@dataclass
class StorageConfig:
    """Backend and persistence limits."""
    backend: str = "file"
    path: str = ".memopad"
    key: str = STORAGE_KEY
    quota_bytes: int = STORAGE_QUOTA_LIMIT
    wal_mode: bool = True

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if self.backend not in VALID_BACKENDS:
            errors.append(
                f"storage.backend: {self.backend!r} not in {sorted(VALID_BACKENDS)}"
            )
        if not self.key:
            errors.append("storage.key: must not be empty")
        _check_range(errors, "storage.quota_bytes",
                      self.quota_bytes, 1024, 1024 * 1024 * 1024, int)
        return errors


@dataclass
class AutosaveConfig:
    """Debounce and retry settings for edits (seconds)."""
    debounce: float = DEBOUNCE_DELAY
    max_retries: int = MAX_RETRIES
    base_delay: float = RETRY_BASE_DELAY
    backoff_cap: float = RETRY_BACKOFF_CAP

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "autosave.debounce",
                      self.debounce, 0.0, 60.0, (int, float))
        _check_range(errors, "autosave.max_retries",
                      self.max_retries, 0, 20, int)
        _check_range(errors, "autosave.base_delay",
                      self.base_delay, 0.0, 60.0, (int, float))
        _check_range(errors, "autosave.backoff_cap",
                      self.backoff_cap, 0.0, 600.0, (int, float))
        if not errors and self.backoff_cap < self.base_delay:
            errors.append(
                f"autosave.backoff_cap: {self.backoff_cap} < base_delay {self.base_delay}"
            )
        return errors


@dataclass
class SearchConfig:
    """Search box behaviour."""
    debounce: float = SEARCH_DEBOUNCE_DELAY
    case_sensitive: bool = False

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "search.debounce",
                      self.debounce, 0.0, 10.0, (int, float))
        return errors


@dataclass
class ExportConfig:
    """Export rendering options."""
    untitled: str = UNTITLED_PLACEHOLDER

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        return []


@dataclass
class MemopadConfig:
    """Top-level memopad configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    autosave: AutosaveConfig = field(default_factory=AutosaveConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemopadConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "storage" in d:
            kwargs["storage"] = StorageConfig(**d["storage"])
        if "autosave" in d:
            kwargs["autosave"] = AutosaveConfig(**d["autosave"])
        if "search" in d:
            kwargs["search"] = SearchConfig(**d["search"])
        if "export" in d:
            kwargs["export"] = ExportConfig(**d["export"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.storage.validate())
        errors.extend(self.autosave.validate())
        errors.extend(self.search.validate())
        errors.extend(self.export.validate())
        if (
            not errors
            and self.search.debounce >= self.autosave.debounce
            and self.autosave.debounce > 0
        ):
            errors.append(
                f"search.debounce: {self.search.debounce} must be shorter than "
                f"autosave.debounce {self.autosave.debounce}"
            )
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> MemopadConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        MemopadConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = MemopadConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = MemopadConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = MemopadConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
