import pytest
from hypothesis import given, strategies as st

from jobledger.dispatch import LIVE_CHAT_EVENT, is_live_chat_signal, normalize_event_name


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("  Arrived ", "arrived"),
        ("En Route", "en_route"),
        ("final   payment\tconfirmed", "final_payment_confirmed"),
        ("WORK_STARTED", "work_started"),
        ("", ""),
        ("   ", ""),
        (None, ""),
    ],
)
def test_tidies_free_text(raw: str | None, expected: str) -> None:
    assert normalize_event_name(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "T-15min open live chat",
        "t15 livechat",
        "T minus 15 live-chat",
        "t−15 live chat",
        "15 นาที ไลฟ์แชท",
        "15นาที ไลฟ์แชต",
        "T-15min แชทสด",
        "t-15 แชตสด",
        "T-15MIN_OPEN_LIVE_CHAT",
    ],
)
def test_live_chat_variants_collapse_to_one_token(raw: str) -> None:
    assert normalize_event_name(raw) == LIVE_CHAT_EVENT


@pytest.mark.parametrize("raw", ["open live chat", "t-15min reminder", "15 min late"])
def test_needs_both_signals(raw: str) -> None:
    assert not is_live_chat_signal(raw)
    assert normalize_event_name(raw) != LIVE_CHAT_EVENT


@given(st.text())
def test_output_has_no_whitespace_and_is_lowercase(raw: str) -> None:
    out = normalize_event_name(raw)
    assert not any(ch.isspace() for ch in out)
    assert out == out.lower()


@given(st.text())
def test_idempotent(raw: str) -> None:
    once = normalize_event_name(raw)
    assert normalize_event_name(once) == once
