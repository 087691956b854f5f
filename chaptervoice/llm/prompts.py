"""Prompt templates for speaker attribution.

Responsibilities:
- Centralize prompt construction for batched span attribution.
- Render known speakers, character aliases, and context windows deterministically.
"""

from __future__ import annotations

import json
from typing import Sequence

from ..models.datatypes import CharacterProfile, TextSpan


def _truncate(text: str, max_chars: int) -> str:
    """Collapse whitespace and cap text length for context rendering."""

    compact = " ".join(text.split())
    if len(compact) <= max_chars:
        return compact
    return f"{compact[: max(0, max_chars - 3)]}..."


class PromptLibrary:
    """Build prompt strings for attribution requests."""

    def attribution_system_prompt(
        self,
        known_speakers: Sequence[str],
        characters: Sequence[CharacterProfile],
    ) -> str:
        """Return the system prompt describing attribution rules and output shape."""

        known = ", ".join(known_speakers) if known_speakers else "None yet"
        lines = [
            "You are a dialogue attribution specialist for audiobook production.",
            "You receive numbered spans of a story, already split into narration and "
            "dialogue, and assign a speaker and a type to each span.",
            "",
            f"Known characters from previous chapters: {known}",
        ]
        if characters:
            lines.append("")
            lines.append("CHARACTER ALIASES:")
            for profile in characters:
                description = f" ({profile.description})" if profile.description else ""
                lines.append(f"- {profile.name}{description}")
                if profile.aliases:
                    lines.append(f"  Also known as: {', '.join(profile.aliases)}")
                lines.append(f'  Always use "{profile.name}" as the speaker name.')
        lines.extend(
            [
                "",
                "Return a JSON object with exactly this structure:",
                '{"assignments": [{"index": 12, "speaker": "narrator", "type": "narration"}]}',
                "",
                "RULES:",
                "1. Return one assignment for every span index you are given, and only those.",
                '2. Types: "narration", "dialogue", "thought", "announcement", "sound_effect".',
                '3. Use "narrator" for all non-dialogue text.',
                "4. A short quoted word or phrase with no speech verb nearby is emphasis, "
                'not speech: return type "narration" and speaker "narrator".',
                '5. When the speaker of dialogue is genuinely ambiguous, use "unknown".',
                '6. Bracketed system text like "[Level Up!]" or lines starting with an '
                'alert cue are type "announcement" with speaker "ai_announcer".',
                "7. Use canonical character names, never aliases.",
                "8. Use the context spans only to resolve pronouns and unattributed dialogue.",
            ]
        )
        return "\n".join(lines)

    def attribution_user_prompt(
        self,
        spans: Sequence[TextSpan],
        batch_start: int,
        batch_end: int,
        context_spans: int,
        context_chars: int,
    ) -> str:
        """Return the user prompt for spans `[batch_start, batch_end)` with context."""

        before_start = max(0, batch_start - context_spans)
        after_end = min(len(spans), batch_end + context_spans)
        payload = {
            "context_before": [
                self._context_entry(spans, index, context_chars)
                for index in range(before_start, batch_start)
            ],
            "spans": [
                {"index": index, "type": spans[index].type, "text": spans[index].text.strip()}
                for index in range(batch_start, batch_end)
            ],
            "context_after": [
                self._context_entry(spans, index, context_chars)
                for index in range(batch_end, after_end)
            ],
        }
        return (
            "Assign a speaker and type to every entry in `spans`. "
            "Entries in `context_before` and `context_after` are for reference only.\n\n"
            f"{json.dumps(payload, ensure_ascii=False, indent=2)}"
        )

    @staticmethod
    def _context_entry(
        spans: Sequence[TextSpan], index: int, context_chars: int
    ) -> dict[str, object]:
        """Render one truncated context span."""

        return {
            "index": index,
            "type": spans[index].type,
            "text": _truncate(spans[index].text, context_chars),
        }
