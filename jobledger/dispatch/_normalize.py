"""
Event name normalization — client free text in, stable machine token out.

A pure function over a fixed keyword table. It is a best-effort classifier,
not a parser: anything that signals both "T minus 15 minutes" and "open
live chat" collapses to one token, everything else is only tidied up.
"""

from __future__ import annotations

import re

LIVE_CHAT_EVENT = "t-15min_open_live_chat"

# Matched against the compact form: lower-cased, whitespace/_/- removed.
T_MINUS_15_MARKERS: tuple[str, ...] = (
    "t15",
    "tminus15",
    "t−15",  # U+2212 minus sign
    "15min",
    "15นาที",
)

LIVE_CHAT_MARKERS: tuple[str, ...] = (
    "livechat",
    "ไลฟ์แชท",
    "ไลฟ์แชต",  # alternate spelling of the same Thai word
    "แชทสด",
    "แชตสด",
)

_WHITESPACE = re.compile(r"\s+")
_COMPACT_STRIP = re.compile(r"[\s_\-]+")


def compact(raw: str) -> str:
    return _COMPACT_STRIP.sub("", raw.strip().lower())


def is_live_chat_signal(raw: str) -> bool:
    text = compact(raw)
    return any(m in text for m in T_MINUS_15_MARKERS) and any(
        m in text for m in LIVE_CHAT_MARKERS
    )


def normalize_event_name(raw: str | None) -> str:
    """
    Normalize a client event name.

        >>> normalize_event_name("  Arrived ")
        'arrived'
        >>> normalize_event_name("En Route")
        'en_route'
        >>> normalize_event_name("T-15min เปิด live chat")
        't-15min_open_live_chat'

    Empty or whitespace-only input gives "".
    """
    if raw is None:
        return ""
    text = raw.strip().lower()
    if not text:
        return ""
    if is_live_chat_signal(text):
        return LIVE_CHAT_EVENT
    return _WHITESPACE.sub("_", text)


__all__ = (
    "LIVE_CHAT_EVENT",
    "T_MINUS_15_MARKERS",
    "LIVE_CHAT_MARKERS",
    "compact",
    "is_live_chat_signal",
    "normalize_event_name",
)
