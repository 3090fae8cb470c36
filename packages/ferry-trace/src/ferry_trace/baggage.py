"""Baggage: ordered, immutable cross-cutting key/value context.

Wire format is the W3C ``baggage`` header: ``k1=v1,k2=v2``. Keys and values
are percent-encoded (UTF-8) so that ``=``, ``,``, ``;``, ``%``, whitespace and
non-ASCII text survive the round trip exactly.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from urllib.parse import quote, unquote

from ferry_trace.errors import MalformedCarrier

MAX_MEMBERS = 180
MAX_MEMBER_BYTES = 4096
MAX_HEADER_BYTES = 8192

BAGGAGE_HEADER = "baggage"

# Printable ASCII minus space, DQUOTE, comma, semicolon, backslash, '=' and '%'
_SAFE_CHARS = "!#$&'()*+-./:<>?@[]^_`{|}~"
# W3C baggage-octet, with '=' allowed in values
_RAW_KEY = re.compile(r"^[\x21\x23-\x2b\x2d-\x3a\x3c\x3e-\x5b\x5d-\x7e]+$")
_RAW_VALUE = re.compile(r"^[\x21\x23-\x2b\x2d-\x3a\x3c-\x5b\x5d-\x7e]*$")
_BROKEN_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

logger = logging.getLogger("ferry.trace")


class Baggage(Mapping[str, str]):
    """Immutable ordered mapping of baggage entries.

    ``set`` and ``merge`` return new instances; the original is never
    touched, so a Baggage can be shared between concurrent units of work.
    Overwriting an existing key keeps its original position. Keys must be
    non-empty, since an empty key cannot be carried in the header.

    Example:
        >>> baggage = Baggage().set("team", "payments")
        >>> baggage.set("team", "billing")["team"]
        'billing'
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries: dict[str, str] = dict(entries) if entries else {}
        if "" in self._entries:
            msg = "Baggage keys must not be empty"
            raise ValueError(msg)

    def __getitem__(self, key: str) -> str:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Baggage):
            return self._entries == other._entries
        return super().__eq__(other)

    def __hash__(self) -> int:
        return hash(tuple(self._entries.items()))

    def __repr__(self) -> str:
        return f"Baggage({self._entries!r})"

    def set(self, key: str, value: str) -> Baggage:
        """Return a copy with ``key`` set to ``value``."""
        return Baggage({**self._entries, key: value})

    def merge(self, entries: Mapping[str, str]) -> Baggage:
        """Return a copy with every entry of ``entries`` applied in order."""
        if not entries:
            return self
        return Baggage({**self._entries, **entries})


EMPTY_BAGGAGE = Baggage()


def encode_baggage(baggage: Mapping[str, str]) -> str:
    """Encode baggage into a ``baggage`` header value.

    Members over the W3C size limits are skipped, never truncated.
    """
    members: list[str] = []
    total = 0
    for key, value in baggage.items():
        if len(members) >= MAX_MEMBERS:
            logger.debug("Baggage member limit reached, skipping %r", key)
            break
        member = f"{quote(key, safe=_SAFE_CHARS)}={quote(value, safe=_SAFE_CHARS)}"
        size = len(member)
        if size > MAX_MEMBER_BYTES:
            logger.debug("Baggage member %r exceeds %d bytes", key, MAX_MEMBER_BYTES)
            continue
        separator = 1 if members else 0
        if total + separator + size > MAX_HEADER_BYTES:
            logger.debug("Baggage header limit reached, skipping %r", key)
            continue
        members.append(member)
        total += separator + size
    return ",".join(members)


def decode_baggage(header: str) -> Baggage:
    """Decode a ``baggage`` header value.

    Malformed members are dropped one by one; the rest are kept.
    """
    entries: dict[str, str] = {}
    for raw_member in header.split(","):
        if not raw_member.strip():
            continue
        if len(entries) >= MAX_MEMBERS:
            logger.debug("Baggage member limit reached, ignoring the rest")
            break
        try:
            key, value = _decode_member(raw_member)
        except MalformedCarrier as e:
            logger.debug("Dropping baggage member: %s", e)
            continue
        entries[key] = value
    return Baggage(entries)


def _decode_member(raw_member: str) -> tuple[str, str]:
    try:
        size = len(raw_member.encode())
    except UnicodeEncodeError as e:
        raise MalformedCarrier(BAGGAGE_HEADER, raw_member[:32], "not encodable as UTF-8") from e
    if size > MAX_MEMBER_BYTES:
        raise MalformedCarrier(BAGGAGE_HEADER, raw_member[:32], "member too long")

    # Member properties after ';' carry no value for us
    pair = raw_member.split(";", 1)[0]
    if "=" not in pair:
        raise MalformedCarrier(BAGGAGE_HEADER, raw_member, "missing '='")

    raw_key, raw_value = (part.strip() for part in pair.split("=", 1))
    if not _RAW_KEY.match(raw_key):
        raise MalformedCarrier(BAGGAGE_HEADER, raw_member, "invalid key")
    if not _RAW_VALUE.match(raw_value):
        raise MalformedCarrier(BAGGAGE_HEADER, raw_member, "invalid value")
    if _BROKEN_ESCAPE.search(raw_key) or _BROKEN_ESCAPE.search(raw_value):
        raise MalformedCarrier(BAGGAGE_HEADER, raw_member, "broken percent escape")

    try:
        key = unquote(raw_key, errors="strict")
        value = unquote(raw_value, errors="strict")
    except UnicodeDecodeError as e:
        raise MalformedCarrier(BAGGAGE_HEADER, raw_member, "invalid UTF-8") from e
    return key, value
