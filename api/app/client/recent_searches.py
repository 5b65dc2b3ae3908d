"""Bounded most-recent-first search history behind a pluggable store."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from app.client.config import get_client_settings

logger = logging.getLogger("app.client.recent_searches")


class SearchHistoryStore(Protocol):
    def load(self) -> list[str]: ...

    def save(self, entries: list[str]) -> None: ...


class InMemorySearchHistoryStore:
    def __init__(self, entries: list[str] | None = None) -> None:
        self.entries = list(entries or [])

    def load(self) -> list[str]:
        return list(self.entries)

    def save(self, entries: list[str]) -> None:
        self.entries = list(entries)


class JsonFileSearchHistoryStore:
    """Persist history as a JSON array; unreadable files load as empty."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> list[str]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable search history at %s: %s", self.path, exc)
            return []
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, str)]

    def save(self, entries: list[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(entries), encoding="utf-8")


class RecentSearches:
    """Ordered, de-duplicated set of recent queries, newest first."""

    def __init__(self, store: SearchHistoryStore | None = None, *, limit: int | None = None) -> None:
        if limit is None:
            limit = get_client_settings().recent_searches_limit
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.store = store or InMemorySearchHistoryStore()
        self.limit = limit
        self._entries = self._normalize(self.store.load())

    @property
    def entries(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def add(self, query: str) -> list[str]:
        """Record a query; blank input is ignored."""
        term = query.strip()
        if not term:
            return self.entries
        self._entries = self._normalize([term, *self._entries])
        self.store.save(self._entries)
        return self.entries

    def remove(self, query: str) -> list[str]:
        term = query.strip()
        remaining = [entry for entry in self._entries if entry.casefold() != term.casefold()]
        if len(remaining) != len(self._entries):
            self._entries = remaining
            self.store.save(self._entries)
        return self.entries

    def clear(self) -> None:
        self._entries = []
        self.store.save([])

    def _normalize(self, entries: list[str]) -> list[str]:
        seen: set[str] = set()
        result: list[str] = []
        for entry in entries:
            term = entry.strip()
            folded = term.casefold()
            if not term or folded in seen:
                continue
            seen.add(folded)
            result.append(term)
            if len(result) == self.limit:
                break
        return result
