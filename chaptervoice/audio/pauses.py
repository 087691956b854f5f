"""Inter-segment pause policy.

The first matching rule wins:
1. either neighbour is an `announcement` or `sound_effect` segment
2. dialogue followed by narration
3. the speaker changes
4. otherwise
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models.datatypes import ANNOUNCEMENT_TYPES, Segment

CLOSING_PAUSE_MS = 2000


@dataclass(frozen=True, slots=True)
class PausePolicy:
    """Pause durations, in milliseconds, for each rule of the precedence table."""

    announcement_ms: int = 1000
    dialogue_to_narration_ms: int = 750
    speaker_change_ms: int = 500
    default_ms: int = 300
    closing_ms: int = CLOSING_PAUSE_MS

    def between(self, current: Segment, following: Segment) -> int:
        """Return the pause to insert after `current` when `following` comes next."""

        if current.type in ANNOUNCEMENT_TYPES or following.type in ANNOUNCEMENT_TYPES:
            return self.announcement_ms
        if current.type == "dialogue" and following.type == "narration":
            return self.dialogue_to_narration_ms
        if current.speaker_id != following.speaker_id:
            return self.speaker_change_ms
        return self.default_ms


DEFAULT_PAUSE_POLICY = PausePolicy()


def pause_duration_ms(current: Segment, following: Segment) -> int:
    """Return the default-policy pause between two adjacent segments."""

    return DEFAULT_PAUSE_POLICY.between(current, following)
