"""
Hostname blocklist for a focus session.

Entries are hostname fragments; a hostname is blocked when any entry is a
substring of it, so ``example.com`` also blocks ``www.example.com`` and
``sub.example.com`` (and, less obviously, ``notexample.com``).
"""

from typing import Iterable, Iterator


def normalize(site: str) -> str:
    return site.strip().lower()


class Blocklist:
    """Immutable set of normalized hostname fragments."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[str] = ()):
        self._entries = frozenset(entries)

    @classmethod
    def build(cls, sites: Iterable[str]) -> "Blocklist":
        """Normalize every site; blank entries are dropped."""
        normalized = (normalize(s) for s in sites)
        return cls(s for s in normalized if s)

    def matches(self, hostname: str) -> bool:
        host = hostname.lower()
        return any(entry in host for entry in self._entries)

    @property
    def entries(self) -> list[str]:
        return sorted(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __repr__(self) -> str:
        return f"Blocklist({self.entries!r})"
