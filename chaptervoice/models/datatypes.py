"""Core datatypes shared across Chaptervoice modules.

Responsibilities:
- Represent immutable records exchanged between segmentation, attribution,
  synthesis, assembly, and orchestration.
- Provide explicit typing for persistence and progress reporting.

Key types:
- `Chapter`, `Segment`, `Speaker`, `Voice`: library records.
- `TextSpan`, `AttributedSegment`: segmentation and attribution outputs.
- `SegmentCacheKey`: content-address of one cached segment audio file.
- `AssemblyJob`, `AssemblyResult`, `DebugMergeReport`: assembly inputs/outputs.
- `AttributionProgress`, `AssemblyProgress`, `EncodeProgress`,
  `ProgressSnapshot`: structured progress events and snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Mapping


SEGMENT_TYPES = ("narration", "dialogue", "thought", "announcement", "sound_effect")
ANNOUNCEMENT_TYPES = frozenset({"announcement", "sound_effect"})

NARRATOR_SPEAKER = "narrator"
UNKNOWN_SPEAKER = "unknown"
ANNOUNCER_SPEAKER = "ai_announcer"

CHAPTER_STAGES = ("scraped", "speakers_identified", "audio_processed", "published")


@dataclass(frozen=True, slots=True)
class Chapter:
    """A chapter of narrative text and its pipeline stage timestamps.

    Attributes:
        id: Stable chapter identifier.
        title: Human-readable chapter title.
        text: Raw chapter text.
        extracted_at: When the text was imported.
        speakers_identified_at: When attribution last completed.
        audio_processed_at: When the chapter audio was last assembled.
        published_at: When the chapter was marked published.
        audio_duration_seconds: Duration of the assembled audio file.
        audio_file_size: Size in bytes of the assembled audio file.
    """

    id: str
    title: str
    text: str
    extracted_at: datetime | None = None
    speakers_identified_at: datetime | None = None
    audio_processed_at: datetime | None = None
    published_at: datetime | None = None
    audio_duration_seconds: float | None = None
    audio_file_size: int | None = None

    @property
    def stage(self) -> str:
        """Return the furthest pipeline stage this chapter has reached."""

        if self.published_at is not None:
            return "published"
        if self.audio_processed_at is not None:
            return "audio_processed"
        if self.speakers_identified_at is not None:
            return "speakers_identified"
        return "scraped"

    @property
    def audio_is_stale(self) -> bool:
        """Return whether attribution ran after the last audio build."""

        if self.speakers_identified_at is None or self.audio_processed_at is None:
            return False
        return self.speakers_identified_at > self.audio_processed_at


@dataclass(frozen=True, slots=True)
class TextSpan:
    """One lexical span produced by quote segmentation.

    Attributes:
        type: `narration` or `dialogue`.
        text: Exact substring of the source text, quote glyphs included.
    """

    type: str
    text: str


@dataclass(frozen=True, slots=True)
class AttributedSegment:
    """One span with a resolved speaker name, before persistence.

    Attributes:
        index: 0-based position in the chapter.
        text: Exact span text.
        type: One of `SEGMENT_TYPES`.
        speaker: Canonical character name, `narrator`, `unknown`, or `ai_announcer`.
        sound: Optional sound-effect tag for `sound_effect` segments.
    """

    index: int
    text: str
    type: str
    speaker: str
    sound: str | None = None


@dataclass(frozen=True, slots=True)
class Segment:
    """A persisted, speaker-attributed segment of a chapter.

    Attributes:
        chapter_id: Owning chapter identifier.
        index: 0-based playback position, unique per chapter.
        text: Exact span text.
        type: One of `SEGMENT_TYPES`.
        speaker_id: Identifier of the attributed `Speaker`.
        sound: Optional sound-effect tag.
    """

    chapter_id: str
    index: int
    text: str
    type: str
    speaker_id: int
    sound: str | None = None


@dataclass(frozen=True, slots=True)
class Speaker:
    """A speaking identity with an optional assigned voice.

    Attributes:
        id: Numeric speaker identifier.
        name: Canonical display name, unique in the library.
        voice_id: Assigned voice identifier, or `None` until assigned.
        is_narrator: Whether this speaker is narrator-type (`narrator`, `ai_announcer`).
    """

    id: int
    name: str
    voice_id: str | None = None
    is_narrator: bool = False


@dataclass(frozen=True, slots=True)
class Voice:
    """A synthesis voice offered by one provider.

    Attributes:
        id: Voice identifier (OpenAI preset name or ElevenLabs voice id).
        name: Human-readable voice label.
        provider: Provider identifier (`openai` or `elevenlabs`).
        kind: `preset` for fixed provider voices, `neural` for cloned/neural voices.
        settings: Provider-specific settings blob.
        is_active: Whether the voice can be used for new synthesis.
    """

    id: str
    name: str
    provider: str
    kind: str = "preset"
    settings: Mapping[str, object] = field(default_factory=dict)
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class CharacterProfile:
    """Canonical character identity with its known aliases.

    Attributes:
        name: Canonical speaker name.
        aliases: Alternative names resolving to `name`.
        description: Optional short description passed to attribution.
    """

    name: str
    aliases: tuple[str, ...] = field(default_factory=tuple)
    description: str = ""


@dataclass(frozen=True, slots=True)
class CharacterConfig:
    """Character-level configuration shared by segmentation, attribution, and synthesis.

    Attributes:
        characters: Canonical characters with aliases.
        pronunciations: Spoken replacements applied to synthesis input only.
        special_quoted_names: In-world names that render in quotes but are not speech.
    """

    characters: tuple[CharacterProfile, ...] = field(default_factory=tuple)
    pronunciations: Mapping[str, str] = field(default_factory=dict)
    special_quoted_names: tuple[str, ...] = field(default_factory=tuple)

    def alias_map(self) -> dict[str, str]:
        """Return a case-folded alias/name lookup to canonical names."""

        lookup: dict[str, str] = {}
        for profile in self.characters:
            lookup[profile.name.casefold()] = profile.name
            for alias in profile.aliases:
                lookup[alias.casefold()] = profile.name
        return lookup


@dataclass(frozen=True, slots=True)
class SegmentCacheKey:
    """Content-address of one cached audio file.

    Attributes:
        speaker_id: Attributed speaker identifier, `None` for closing clips.
        voice_id: Voice identifier used for synthesis.
        text_hash: SHA-256 of the exact synthesized text.
    """

    speaker_id: int | None
    voice_id: str
    text_hash: str

    def as_metadata(self, timestamp: str) -> dict[str, object]:
        """Return the sidecar metadata payload for this key."""

        return {
            "speakerId": self.speaker_id,
            "voiceId": self.voice_id,
            "textHash": self.text_hash,
            "timestamp": timestamp,
        }

    def matches(self, metadata: Mapping[str, object] | None) -> bool:
        """Return whether a sidecar metadata payload records this exact key."""

        if metadata is None:
            return False
        return (
            metadata.get("speakerId") == self.speaker_id
            and metadata.get("voiceId") == self.voice_id
            and metadata.get("textHash") == self.text_hash
        )


@dataclass(frozen=True, slots=True)
class AssemblyItem:
    """One segment and the voice resolved for it."""

    segment: Segment
    voice: Voice | None


@dataclass(frozen=True, slots=True)
class AssemblyJob:
    """Everything the assembly engine needs to build one chapter.

    Attributes:
        chapter_id: Chapter identifier.
        items: Ordered segments with resolved voices.
        closing_voice: Voice for the end-of-chapter clip.
        closing_text: Text of the end-of-chapter clip.
    """

    chapter_id: str
    items: tuple[AssemblyItem, ...]
    closing_voice: Voice | None
    closing_text: str = "End of Chapter"


@dataclass(frozen=True, slots=True)
class AssemblyResult:
    """Final assembled chapter audio.

    Attributes:
        chapter_id: Chapter identifier.
        path: Final audio file path.
        duration_seconds: Probed duration of the final file.
        size_bytes: Size of the final file.
        synthesized_segments: Segments synthesized during this build.
        reused_segments: Segments served from the cache during this build.
        reused_output: Whether the existing final file was returned untouched.
    """

    chapter_id: str
    path: Path
    duration_seconds: float
    size_bytes: int
    synthesized_segments: int = 0
    reused_segments: int = 0
    reused_output: bool = False


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Format details reported by the external prober for one file."""

    format_name: str | None
    duration_seconds: float | None
    bit_rate: int | None = None
    sample_rate: int | None = None
    channels: int | None = None


@dataclass(frozen=True, slots=True)
class DebugFileEntry:
    """Diagnostic record for one file referenced by a chapter build.

    Attributes:
        role: Position label (`segment_003`, `pause_003`, `end_chapter`, ...).
        path: File path.
        exists: Whether the file exists.
        size_bytes: File size, when it exists.
        probe: Probe details, when probing succeeded.
        warnings: Prober warnings or probe failure messages.
        text_preview: Leading text of the segment, when applicable.
        speaker_name: Speaker name, when applicable.
        segment_type: Segment type, when applicable.
        created: Whether the file was generated during the debug run.
    """

    role: str
    path: Path
    exists: bool
    size_bytes: int | None = None
    probe: ProbeResult | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)
    text_preview: str | None = None
    speaker_name: str | None = None
    segment_type: str | None = None
    created: bool = False


@dataclass(frozen=True, slots=True)
class DebugMergeReport:
    """Diagnostic report of a debug merge run.

    Attributes:
        chapter_id: Chapter identifier.
        segments_dir: Chapter cache directory.
        output_path: Final output file path.
        concat_list_path: Concat list file kept for inspection.
        intermediate_path: Intermediate file kept for inspection.
        entries: Ordered file records.
        succeeded: Whether the merge produced a final file.
        error: Failure detail when the merge did not succeed.
        output_size_bytes: Final file size on success.
        output_duration_seconds: Final file duration on success.
        output_warnings: Prober warnings for the final file.
    """

    chapter_id: str
    segments_dir: Path
    output_path: Path
    concat_list_path: Path
    intermediate_path: Path
    entries: tuple[DebugFileEntry, ...]
    succeeded: bool
    error: str | None = None
    output_size_bytes: int | None = None
    output_duration_seconds: float | None = None
    output_warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def missing_files(self) -> tuple[Path, ...]:
        """Return referenced files that do not exist."""

        return tuple(entry.path for entry in self.entries if not entry.exists)

    def render(self) -> str:
        """Render the report as human-readable text."""

        lines = [
            f"=== DEBUG MERGE CHAPTER {self.chapter_id} ===",
            f"Segments directory: {self.segments_dir}",
            f"Output file: {self.output_path}",
            f"Total files: {len(self.entries)}",
            "",
        ]
        for entry in self.entries:
            lines.append(f"--- {entry.role} ---")
            lines.append(f"File: {entry.path.name}")
            if entry.text_preview is not None:
                lines.append(f'Text: "{entry.text_preview}"')
            if entry.speaker_name is not None:
                lines.append(f"Speaker: {entry.speaker_name}")
            if entry.segment_type is not None:
                lines.append(f"Type: {entry.segment_type}")
            if not entry.exists:
                lines.append("Status: MISSING")
                lines.append("")
                continue
            status = "CREATED" if entry.created else "EXISTS"
            lines.append(f"Status: {status}")
            if entry.size_bytes is not None:
                lines.append(f"Size: {entry.size_bytes} bytes ({entry.size_bytes / 1024:.1f}KB)")
            if entry.probe is not None:
                if entry.probe.duration_seconds is not None:
                    lines.append(f"Duration: {entry.probe.duration_seconds:.2f}s")
                lines.append(
                    "Format: "
                    f"{entry.probe.format_name or 'unknown'} "
                    f"rate={entry.probe.sample_rate or 'unknown'} "
                    f"channels={entry.probe.channels or 'unknown'} "
                    f"bitrate={entry.probe.bit_rate or 'unknown'}"
                )
            for warning in entry.warnings:
                lines.append(f"Warning: {warning}")
            lines.append("")

        lines.append("=== CONCATENATION ===")
        lines.append(f"File list: {self.concat_list_path}")
        lines.append(f"Intermediate file: {self.intermediate_path}")
        if self.succeeded:
            lines.append("=== OUTPUT FILE VERIFICATION ===")
            if self.output_size_bytes is not None:
                lines.append(f"Output file size: {self.output_size_bytes} bytes")
            if self.output_duration_seconds is not None:
                lines.append(f"Final duration: {self.output_duration_seconds:.2f}s")
            for warning in self.output_warnings:
                lines.append(f"Warning: {warning}")
            if not self.output_warnings:
                lines.append("Final file appears healthy")
            lines.append(f"Chapter {self.chapter_id} debug merge completed successfully")
        else:
            lines.append(f"Debug merge failed: {self.error or 'unknown error'}")
        return "\n".join(lines) + "\n"


@dataclass(frozen=True, slots=True)
class EncodeProgress:
    """Elapsed media time reported by one transcoder pass.

    Attributes:
        pass_name: Transcoder pass label (`concat`, `loudnorm`, ...).
        elapsed_seconds: Media time processed so far.
        total_seconds: Expected media duration, when known.
    """

    pass_name: str
    elapsed_seconds: float
    total_seconds: float | None = None

    @property
    def fraction(self) -> float | None:
        """Return completion in `[0, 1]` when the total duration is known."""

        if self.total_seconds is None or self.total_seconds <= 0.0:
            return None
        return max(0.0, min(1.0, self.elapsed_seconds / self.total_seconds))


@dataclass(frozen=True, slots=True)
class AttributionProgress:
    """One structured attribution progress event.

    Attributes:
        phase: `segmenting`, `attributing`, `complete`, or `error`.
        message: Human-readable status line.
        current_batch: Batches finished so far.
        total_batches: Total batch count.
        new_segments: Segments resolved by the batch that just finished.
        fallback_spans: Spans in that batch resolved by the default rule.
    """

    phase: str
    message: str
    current_batch: int = 0
    total_batches: int = 0
    new_segments: tuple[AttributedSegment, ...] = field(default_factory=tuple)
    fallback_spans: int = 0


@dataclass(frozen=True, slots=True)
class AssemblyProgress:
    """One structured assembly progress event.

    Attributes:
        phase: `synthesizing`, `concatenating`, `normalizing`, or `complete`.
        message: Human-readable status line.
        current: Completed units in this phase.
        total: Total units in this phase.
        encode: Transcoder progress for the transcoding phases.
    """

    phase: str
    message: str
    current: int = 0
    total: int = 0
    encode: EncodeProgress | None = None


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Point-in-time view of one attribution or assembly job.

    Attributes:
        job_id: Monotonic job identifier.
        chapter_id: Chapter identifier.
        kind: `attribution` or `assembly`.
        status: `running`, `completed`, or `failed`.
        phase: Latest phase label.
        message: Latest status line.
        current: Latest progress counter.
        total: Latest progress total.
        last_event: Most recent structured event.
        error: Failure detail, when failed.
        started_at: Job start time.
        updated_at: Last update time.
    """

    job_id: int
    chapter_id: str
    kind: str
    status: str
    phase: str
    message: str
    current: int
    total: int
    last_event: object | None
    error: str | None
    started_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class ChapterProgress:
    """Latest attribution and assembly snapshots for one chapter."""

    chapter_id: str
    attribution: ProgressSnapshot | None = None
    assembly: ProgressSnapshot | None = None
