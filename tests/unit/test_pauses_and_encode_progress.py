"""Unit tests for the inter-segment pause policy and encode progress parsing."""

from __future__ import annotations

import pytest

from chaptervoice.audio.pauses import CLOSING_PAUSE_MS, PausePolicy, pause_duration_ms
from chaptervoice.audio.progress import EncodeProgressSink, parse_elapsed_seconds
from chaptervoice.models.datatypes import EncodeProgress, Segment


def _segment(index: int, segment_type: str, speaker_id: int) -> Segment:
    """Build a segment with placeholder text."""

    return Segment(chapter_id="ch1", index=index, text="...", type=segment_type, speaker_id=speaker_id)


def test_dialogue_followed_by_narration_pauses_750ms() -> None:
    """Dialogue to narration by different speakers should use the dialogue rule."""

    current = _segment(0, "dialogue", 2)
    following = _segment(1, "narration", 1)

    assert pause_duration_ms(current, following) == 750


@pytest.mark.parametrize(
    ("current", "following", "expected"),
    [
        (("announcement", 3), ("narration", 1), 1000),
        (("narration", 1), ("sound_effect", 3), 1000),
        (("dialogue", 2), ("announcement", 3), 1000),
        (("dialogue", 2), ("narration", 2), 750),
        (("narration", 1), ("dialogue", 2), 500),
        (("dialogue", 2), ("dialogue", 4), 500),
        (("dialogue", 2), ("dialogue", 2), 300),
        (("narration", 1), ("narration", 1), 300),
    ],
)
def test_pause_precedence_first_matching_rule_wins(
    current: tuple[str, int],
    following: tuple[str, int],
    expected: int,
) -> None:
    """Each pause rule should apply only when no earlier rule matched."""

    assert pause_duration_ms(_segment(0, *current), _segment(1, *following)) == expected


def test_custom_policy_and_closing_pause() -> None:
    """Policy durations should be configurable while the closing pause defaults to 2s."""

    policy = PausePolicy(default_ms=100)

    assert policy.between(_segment(0, "narration", 1), _segment(1, "narration", 1)) == 100
    assert policy.closing_ms == CLOSING_PAUSE_MS == 2000


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("size=     512kB time=00:01:05.50 bitrate= 64.0kbits/s speed=30x", 65.5),
        ("frame=1 time=01:00:00.00 time=01:00:02.25", 3602.25),
        ("size=N/A time= 00:00:07.1 bitrate=N/A", 7.1),
        ("Input #0, concat, from 'filelist.txt':", None),
        ("time=N/A", None),
    ],
)
def test_parse_elapsed_seconds_reads_last_time_field(line: str, expected: float | None) -> None:
    """Only `time=` fields should be parsed, taking the last one on a line."""

    result = parse_elapsed_seconds(line)

    if expected is None:
        assert result is None
    else:
        assert result == pytest.approx(expected)


def test_encode_progress_sink_forwards_events_with_fraction() -> None:
    """The sink should emit events only for lines with elapsed time."""

    events: list[EncodeProgress] = []
    sink = EncodeProgressSink(pass_name="loudnorm", total_seconds=20.0, callback=events.append)

    sink.feed("Stream mapping:")
    sink.feed("size=1kB time=00:00:05.00 bitrate=1")
    sink.feed("size=2kB time=00:00:30.00 bitrate=1")

    assert [event.elapsed_seconds for event in events] == [5.0, 30.0]
    assert events[0].fraction == pytest.approx(0.25)
    assert events[1].fraction == 1.0
    assert sink.last_progress == events[-1]
    assert events[0].pass_name == "loudnorm"


def test_encode_progress_fraction_unknown_without_total() -> None:
    """Fraction should be unavailable when the total duration is unknown."""

    assert EncodeProgress("concat", 3.0).fraction is None
