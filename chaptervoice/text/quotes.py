"""Quote-aware lexical segmentation of chapter text.

Responsibilities:
- Split raw prose into ordered `narration`/`dialogue` spans with one
  left-to-right scan toggling on straight and curly double quotes.
- Isolate alert-cue lines and scene-break lines as standalone narration spans.
- Fold special quoted names back into neighbouring narration.
- Preserve every input character: joining span texts reproduces the input.

Key types:
- `QuoteSegmenter`: configurable segmenter with a `segment(text)` entry point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from ..models.datatypes import TextSpan
from ..telemetry.logger import RunLogger

QUOTE_CHARACTERS = frozenset({'"', "“", "”"})
DEFAULT_ALERT_CUES = ("DING!",)
DEFAULT_SCENE_BREAK_MARKERS = ("--",)


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs into single spaces and trim the ends."""

    return " ".join(text.split())


def reconstruction_matches(text: str, spans: Sequence[TextSpan]) -> bool:
    """Return whether spans reproduce the whitespace-normalized input text."""

    return normalize_whitespace("".join(span.text for span in spans)) == normalize_whitespace(
        text
    )


@dataclass(slots=True)
class _WorkingSpan:
    """Mutable span used while segmentation passes run."""

    type: str
    text: str
    isolated: bool = False


class QuoteSegmenter:
    """Partition prose into dialogue and narration spans without losing characters."""

    def __init__(
        self,
        *,
        alert_cues: Iterable[str] = DEFAULT_ALERT_CUES,
        special_quoted_names: Iterable[str] = (),
        scene_break_markers: Iterable[str] = DEFAULT_SCENE_BREAK_MARKERS,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize cue, special-name, and scene-break configuration."""

        self.alert_cues = tuple(cue.strip() for cue in alert_cues if cue.strip())
        self.special_quoted_names = frozenset(
            name.strip() for name in special_quoted_names if name.strip()
        )
        self.scene_break_markers = frozenset(
            marker.strip() for marker in scene_break_markers if marker.strip()
        )
        self._run_logger = run_logger

    def segment(self, text: str) -> list[TextSpan]:
        """Return ordered spans whose concatenation equals `text`."""

        working: list[_WorkingSpan] = []
        for block_text, isolated in self._split_blocks(text):
            if isolated:
                working.append(_WorkingSpan("narration", block_text, isolated=True))
            else:
                working.extend(self._scan_quotes(block_text))

        working = self._fold_whitespace_spans(working)
        working = self._merge_special_names(working)
        spans = [TextSpan(type=span.type, text=span.text) for span in working]

        if not reconstruction_matches(text, spans) and self._run_logger is not None:
            self._run_logger.warning(
                "segment",
                "reconstruction_mismatch",
                input_chars=len(text),
                span_count=len(spans),
            )
        return spans

    def is_alert_line(self, line: str) -> bool:
        """Return whether a line starts with an alert cue, ignoring case and quotes."""

        candidate = line.lstrip()
        while candidate and candidate[0] in QUOTE_CHARACTERS:
            candidate = candidate[1:].lstrip()
        folded = candidate.casefold()
        return any(folded.startswith(cue.casefold()) for cue in self.alert_cues)

    def is_scene_break(self, line: str) -> bool:
        """Return whether a line consists of a scene-break marker only."""

        return line.strip() in self.scene_break_markers

    def _split_blocks(self, text: str) -> list[tuple[str, bool]]:
        """Group lines into quote-scanned blocks and isolated cue/break lines."""

        blocks: list[tuple[str, bool]] = []
        pending: list[str] = []
        for line in text.splitlines(keepends=True):
            if self.is_alert_line(line) or self.is_scene_break(line):
                if pending:
                    blocks.append(("".join(pending), False))
                    pending = []
                blocks.append((line, True))
            else:
                pending.append(line)
        if pending:
            blocks.append(("".join(pending), False))
        return blocks

    @staticmethod
    def _scan_quotes(block: str) -> list[_WorkingSpan]:
        """Scan one block, toggling dialogue state on every quote glyph."""

        spans: list[_WorkingSpan] = []
        buffer: list[str] = []
        in_quote = False
        for character in block:
            if character not in QUOTE_CHARACTERS:
                buffer.append(character)
                continue
            if in_quote:
                buffer.append(character)
                spans.append(_WorkingSpan("dialogue", "".join(buffer)))
                buffer = []
                in_quote = False
            else:
                if buffer:
                    spans.append(_WorkingSpan("narration", "".join(buffer)))
                buffer = [character]
                in_quote = True
        if buffer:
            # An unclosed quote runs as dialogue to the end of the block.
            spans.append(_WorkingSpan("dialogue" if in_quote else "narration", "".join(buffer)))
        return spans

    @staticmethod
    def _fold_whitespace_spans(spans: list[_WorkingSpan]) -> list[_WorkingSpan]:
        """Drop whitespace-only spans, moving their characters into a neighbour."""

        folded: list[_WorkingSpan] = []
        carry = ""
        for span in spans:
            if not span.text.strip():
                if folded:
                    folded[-1].text += span.text
                else:
                    carry += span.text
                continue
            if carry:
                span.text = carry + span.text
                carry = ""
            folded.append(span)
        return folded

    def _merge_special_names(self, spans: list[_WorkingSpan]) -> list[_WorkingSpan]:
        """Merge dialogue spans quoting a special name into adjacent narration."""

        if not self.special_quoted_names:
            return spans

        merged: list[_WorkingSpan] = []
        index = 0
        while index < len(spans):
            span = spans[index]
            if span.type != "dialogue" or not self._is_special_name(span.text):
                merged.append(span)
                index += 1
                continue

            previous = merged[-1] if merged else None
            following = spans[index + 1] if index + 1 < len(spans) else None
            if previous is not None and self._is_merge_target(previous):
                previous.text += span.text
                if following is not None and self._is_merge_target(following):
                    previous.text += following.text
                    index += 1
            elif following is not None and self._is_merge_target(following):
                following.text = span.text + following.text
            else:
                span.type = "narration"
                merged.append(span)
            index += 1
        return merged

    def _is_special_name(self, dialogue_text: str) -> bool:
        """Return whether a dialogue span's inner text is a special quoted name."""

        inner = dialogue_text.strip()
        while inner and inner[0] in QUOTE_CHARACTERS:
            inner = inner[1:]
        while inner and inner[-1] in QUOTE_CHARACTERS:
            inner = inner[:-1]
        return inner.strip() in self.special_quoted_names

    @staticmethod
    def _is_merge_target(span: _WorkingSpan) -> bool:
        """Return whether a span can absorb a special quoted name."""

        return span.type == "narration" and not span.isolated
