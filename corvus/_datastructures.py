"""
Core data structures for request handling.

Provides:
- MultiDict: Multi-value dictionary for query params and form fields
- Headers: Case-insensitive view over raw ASGI headers
- ContentType: Content-Type header parsing helper
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple


class MultiDict:
    """Ordered dictionary that keeps every value of a repeated key."""

    def __init__(self, items: Optional[List[Tuple[str, str]]] = None):
        self._data: Dict[str, List[str]] = {}
        for key, value in items or ():
            self.add(key, value)

    def add(self, key: str, value: str) -> None:
        self._data.setdefault(key, []).append(value)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for a key."""
        values = self._data.get(key)
        return values[0] if values else default

    def get_all(self, key: str) -> List[str]:
        return list(self._data.get(key, ()))

    def to_dict(self) -> Dict[str, str]:
        """First value of every key."""
        return {key: values[0] for key, values in self._data.items() if values}

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"MultiDict({self._data})"


@dataclass
class Headers:
    """
    Case-insensitive header access over raw ASGI header pairs.

    Header names are normalized on lookup; the raw list is kept untouched.
    """

    raw: List[Tuple[bytes, bytes]] = field(default_factory=list)
    _index: Dict[str, List[str]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        for name, value in self.raw:
            key = name.decode("latin-1").lower()
            self._index.setdefault(key, []).append(value.decode("latin-1"))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self._index.get(name.lower())
        return values[0] if values else default

    def get_all(self, name: str) -> List[str]:
        return list(self._index.get(name.lower(), ()))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._index

    def items(self) -> Iterator[Tuple[str, str]]:
        for name, value in self.raw:
            yield name.decode("latin-1"), value.decode("latin-1")


@dataclass
class ContentType:
    """Parsed Content-Type header (media type plus parameters)."""

    media_type: str
    params: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, header: Optional[str]) -> Optional["ContentType"]:
        if not header:
            return None

        media_type, *rest = header.split(";")
        params = {}
        for part in rest:
            if "=" in part:
                key, value = part.split("=", 1)
                params[key.strip().lower()] = value.strip().strip('"')

        return cls(media_type=media_type.strip().lower(), params=params)

    @property
    def charset(self) -> str:
        return self.params.get("charset", "utf-8")

    def matches(self, media_type: str) -> bool:
        """Match an exact type or a ``+suffix`` variant (``application/*+json``)."""
        if self.media_type == media_type:
            return True
        _, _, subtype = media_type.partition("/")
        return self.media_type.endswith(f"+{subtype}")
