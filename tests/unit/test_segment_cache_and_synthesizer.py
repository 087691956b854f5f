"""Unit tests for the segment audio cache and cache-aware synthesis."""

from __future__ import annotations

import json
from pathlib import Path
import threading
import time
from typing import Any

import pytest

from chaptervoice.audio.ffmpeg import FFmpegTranscoder
from chaptervoice.errors import SynthesisError
from chaptervoice.llm.http_client import ProviderError
from chaptervoice.models.datatypes import Segment, SegmentCacheKey, Voice
from chaptervoice.tts.cache import SegmentAudioCache
from chaptervoice.tts.providers import ElevenLabsNeuralVoiceProvider
from chaptervoice.tts.synthesizer import VoiceSynthesizer
from tests.fakes import FakeTranscoder, RecordingVoiceProvider

NOVA = Voice(id="nova", name="Nova", provider="openai")
ONYX = Voice(id="onyx", name="Onyx", provider="openai")


def _segment(index: int = 0, text: str = "Hello there.", **overrides: object) -> Segment:
    """Build a narration segment for chapter `ch1`."""

    values: dict[str, object] = {
        "chapter_id": "ch1",
        "index": index,
        "text": text,
        "type": "narration",
        "speaker_id": 1,
    }
    values.update(overrides)
    return Segment(**values)  # type: ignore[arg-type]


class _Setup:
    """Synthesizer wired to a recording provider and fake silence source."""

    def __init__(self, root: Path, **kwargs: object) -> None:
        """Create the cache, transcoder, and synthesizer."""

        self.calls: list[tuple[str, str]] = []
        self.resolved: list[str] = []
        self.transcoder = FakeTranscoder()
        self.cache = SegmentAudioCache(root / "cache")

        def resolve(voice: Voice) -> RecordingVoiceProvider:
            self.resolved.append(voice.id)
            return RecordingVoiceProvider(voice.id, self.calls)

        self.synthesizer = VoiceSynthesizer(
            cache=self.cache,
            provider_resolver=resolve,
            silence_source=self.transcoder,
            **kwargs,  # type: ignore[arg-type]
        )


def test_cache_paths_follow_naming_contract(tmp_path: Path) -> None:
    """Cache file names should be zero-padded per segment and fixed for closing files."""

    cache = SegmentAudioCache(tmp_path)

    assert cache.segment_audio_path("ch 1/x", 7).name == "segment_007.mp3"
    assert cache.segment_metadata_path("ch1", 7).name == "segment_007.json"
    assert cache.pause_path("ch1", 12).name == "pause_012.mp3"
    assert cache.closing_path("ch1", "end_chapter").name == "end_chapter.mp3"
    assert cache.closing_metadata_path("ch1", "end_chapter").name == "end_chapter.json"
    assert cache.silence_path(750) == tmp_path / "_silence" / "silence_750ms.mp3"
    assert cache.chapter_dir("ch 1/x").parent == tmp_path
    with pytest.raises(ValueError):
        cache.closing_path("ch1", "intro")


def test_chapter_directories_never_collide(tmp_path: Path) -> None:
    """Ids that sanitize alike or shadow the silence folder should get distinct directories."""

    cache = SegmentAudioCache(tmp_path)
    directories = [cache.chapter_dir(chapter_id) for chapter_id in ("a/b", "a_b", "a b", "_silence")]

    assert len(set(directories)) == 4
    assert cache.chapter_dir("a_b") == tmp_path / "a_b"
    assert cache.chapter_dir("_silence") != cache.silence_path(300).parent
    assert cache.chapter_dir("a/b") == cache.chapter_dir("a/b")
    assert all(directory.parent == tmp_path for directory in directories)
    assert cache.chapter_dir("..").parent == tmp_path


class _SlowSilencePopen:
    """Popen stand-in that writes its output slowly so concurrent passes overlap."""

    def __init__(self) -> None:
        """Initialize command recording."""

        self.commands: list[list[str]] = []
        self._lock = threading.Lock()

    def __call__(self, command: list[str], **kwargs: Any) -> "_SlowSilencePopen":
        """Record the command and write the output after a short delay."""

        with self._lock:
            self.commands.append(command)
        output = Path(command[-1])
        output.write_bytes(b"")
        time.sleep(0.05)
        output.write_bytes(b"silence")
        self.stderr = iter(())
        return self

    def __enter__(self) -> "_SlowSilencePopen":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def wait(self) -> int:
        """Report a successful exit."""

        return 0


def test_concurrent_chapters_share_one_silence_clip(tmp_path: Path) -> None:
    """Parallel builds asking for the same silence clip should render it once without errors."""

    cache = SegmentAudioCache(tmp_path / "cache")
    popen = _SlowSilencePopen()
    transcoder = FFmpegTranscoder(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe", popen=popen)
    synthesizers = [
        VoiceSynthesizer(
            cache=cache,
            provider_resolver=lambda voice: RecordingVoiceProvider(voice.id, []),
            silence_source=transcoder,
        )
        for _ in range(2)
    ]
    barrier = threading.Barrier(len(synthesizers))
    results: list[Path] = []
    errors: list[Exception] = []

    def build(synthesizer: VoiceSynthesizer) -> None:
        barrier.wait()
        try:
            results.append(synthesizer.ensure_silence(300))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=build, args=(item,)) for item in synthesizers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert results == [cache.silence_path(300)] * 2
    assert cache.silence_path(300).read_bytes() == b"silence"
    assert len(popen.commands) == 1
    assert list(cache.silence_path(300).parent.glob(".*partial*")) == []


def test_first_render_synthesizes_and_writes_sidecar(tmp_path: Path) -> None:
    """A cache miss should call the provider once and record the key."""

    setup = _Setup(tmp_path)
    segment = _segment()

    path = setup.synthesizer.ensure_segment_audio(segment, NOVA)

    assert path.read_bytes() == b"<nova:Hello there.>"
    assert setup.calls == [("nova", "Hello there.")]
    metadata = json.loads(path.with_suffix(".json").read_text(encoding="utf-8"))
    assert metadata["speakerId"] == 1
    assert metadata["voiceId"] == "nova"
    assert metadata["textHash"] == setup.synthesizer.cache_key(segment, NOVA).text_hash
    assert "timestamp" in metadata


def test_unchanged_key_reuses_cached_audio(tmp_path: Path) -> None:
    """A second render with the same key should not call the provider."""

    setup = _Setup(tmp_path)
    setup.synthesizer.ensure_segment_audio(_segment(), NOVA)
    setup.synthesizer.ensure_segment_audio(_segment(), NOVA)

    assert len(setup.calls) == 1
    assert setup.synthesizer.cache_hits == 1
    assert setup.synthesizer.synthesis_calls == 1


@pytest.mark.parametrize(
    ("changed_segment", "voice"),
    [
        (_segment(text="Hello there!"), NOVA),
        (_segment(speaker_id=2), NOVA),
        (_segment(), ONYX),
    ],
)
def test_any_key_component_change_forces_resynthesis(
    tmp_path: Path,
    changed_segment: Segment,
    voice: Voice,
) -> None:
    """Changing text, speaker, or voice should invalidate the cached file."""

    setup = _Setup(tmp_path)
    setup.synthesizer.ensure_segment_audio(_segment(), NOVA)

    assert not setup.synthesizer.is_cached(changed_segment, voice)
    setup.synthesizer.ensure_segment_audio(changed_segment, voice)

    assert len(setup.calls) == 2


def test_missing_or_corrupt_sidecar_is_a_miss(tmp_path: Path) -> None:
    """Audio without a readable sidecar should never be reused."""

    setup = _Setup(tmp_path)
    path = setup.synthesizer.ensure_segment_audio(_segment(), NOVA)
    path.with_suffix(".json").write_text("{not json", encoding="utf-8")

    setup.synthesizer.ensure_segment_audio(_segment(), NOVA)

    assert len(setup.calls) == 2


def test_describe_segment_reports_cache_state(tmp_path: Path) -> None:
    """Cache entries should be described as missing, current, or stale."""

    setup = _Setup(tmp_path)
    key = setup.synthesizer.cache_key(_segment(), NOVA)
    assert setup.cache.describe_segment("ch1", 0, key) == "missing"

    setup.synthesizer.ensure_segment_audio(_segment(), NOVA)
    assert setup.cache.describe_segment("ch1", 0, key) == "current"

    stale_key = SegmentCacheKey(speaker_id=1, voice_id="onyx", text_hash=key.text_hash)
    assert setup.cache.describe_segment("ch1", 0, stale_key) == "stale"


def test_pause_marker_renders_silence_without_provider(tmp_path: Path) -> None:
    """Pause-marker segments should become a 3-second silence clip."""

    setup = _Setup(tmp_path)
    marker = _segment(text="\n--\n")

    assert not setup.synthesizer.needs_voice(marker)
    path = setup.synthesizer.ensure_segment_audio(marker, None)

    assert path.read_bytes() == b"<silence 3000ms>"
    assert setup.calls == []
    assert setup.synthesizer.cache_key(marker, None).voice_id == "pause:3000ms"
    assert setup.transcoder.silence_calls == [3.0]


def test_sound_effect_copies_asset_without_provider(tmp_path: Path) -> None:
    """Sound-effect cues with an asset should be copied into the cache."""

    asset = tmp_path / "ding.mp3"
    asset.write_bytes(b"DING-ASSET")
    setup = _Setup(tmp_path, sound_effects={"ding": asset})
    cue = _segment(text="DING!", type="sound_effect", sound="ding", speaker_id=3)

    path = setup.synthesizer.ensure_segment_audio(cue, None)

    assert path.read_bytes() == b"DING-ASSET"
    assert setup.calls == []
    assert setup.synthesizer.cache_key(cue, None).voice_id == "sound:ding"


def test_sound_effect_without_asset_is_spoken(tmp_path: Path) -> None:
    """Sound-effect cues with no configured asset should fall back to synthesis."""

    setup = _Setup(tmp_path)
    cue = _segment(text="DING!", type="sound_effect", sound="ding", speaker_id=3)

    assert setup.synthesizer.needs_voice(cue)
    setup.synthesizer.ensure_segment_audio(cue, ONYX)

    assert setup.calls == [("onyx", "DING!")]


def test_pronunciations_apply_to_provider_input_only(tmp_path: Path) -> None:
    """Provider input should carry spoken forms while the cache key hashes stored text."""

    setup = _Setup(tmp_path, pronunciations={"Thayne": "Thane"})
    segment = _segment(text="  Jake Thayne nodded.  ")

    setup.synthesizer.ensure_segment_audio(segment, NOVA)

    assert setup.calls == [("nova", "Jake Thane nodded.")]
    assert setup.synthesizer.is_cached(segment, NOVA)


def test_providers_are_resolved_once_per_voice(tmp_path: Path) -> None:
    """Each voice should resolve its provider a single time per synthesizer."""

    setup = _Setup(tmp_path)
    for index in range(3):
        setup.synthesizer.ensure_segment_audio(_segment(index=index, text=f"Line {index}."), NOVA)

    assert setup.resolved == ["nova"]


def test_provider_failure_becomes_synthesis_error(tmp_path: Path) -> None:
    """Provider errors should surface as segment-scoped synthesis errors."""

    class _FailingProvider:
        provider_id = "fake"

        def synthesize(self, text: str) -> bytes:
            raise ProviderError("quota", failure_kind="insufficient_quota")

    synthesizer = VoiceSynthesizer(
        cache=SegmentAudioCache(tmp_path),
        provider_resolver=lambda voice: _FailingProvider(),
        silence_source=FakeTranscoder(),
    )

    with pytest.raises(SynthesisError) as exc_info:
        synthesizer.ensure_segment_audio(_segment(index=4), NOVA)

    assert exc_info.value.segment_index == 4
    assert exc_info.value.stage == "tts"
    assert not SegmentAudioCache(tmp_path).segment_audio_path("ch1", 4).exists()


def test_regenerate_ignores_current_cache_entry(tmp_path: Path) -> None:
    """Regeneration should synthesize again even when the entry is current."""

    setup = _Setup(tmp_path)
    setup.synthesizer.ensure_segment_audio(_segment(), NOVA)
    setup.synthesizer.regenerate_segment_audio(_segment(), NOVA)

    assert len(setup.calls) == 2


def test_closing_clip_is_cached_by_voice_and_text(tmp_path: Path) -> None:
    """Closing clips should be reused until their text or voice changes."""

    setup = _Setup(tmp_path)
    setup.synthesizer.ensure_clip("ch1", "end_chapter", "End of chapter.", NOVA)
    setup.synthesizer.ensure_clip("ch1", "end_chapter", "End of chapter.", NOVA)
    setup.synthesizer.ensure_clip("ch1", "end_chapter", "End of chapter.", ONYX)

    assert setup.calls == [("nova", "End of chapter."), ("onyx", "End of chapter.")]
    with pytest.raises(SynthesisError):
        setup.synthesizer.ensure_clip("ch1", "end_chapter", "End of chapter.", None)


def test_neural_provider_chunks_long_text_and_joins_audio() -> None:
    """Neural voices should synthesize each chunk and join them in order."""

    class _Client:
        def __init__(self) -> None:
            self.texts: list[str] = []

        def synthesize_speech(self, **kwargs: object) -> bytes:
            self.texts.append(str(kwargs["text"]))
            return f"[{kwargs['text']}]".encode("utf-8")

    client = _Client()
    joined: list[list[bytes]] = []

    def joiner(parts: list[bytes]) -> bytes:
        joined.append(list(parts))
        return b"|".join(parts)

    provider = ElevenLabsNeuralVoiceProvider(
        client=client,  # type: ignore[arg-type]
        voice_id="v1",
        joiner=joiner,
        max_chunk_chars=20,
    )

    audio = provider.synthesize("First sentence. Second sentence.")

    assert client.texts == ["First sentence.", "Second sentence."]
    assert audio == b"[First sentence.]|[Second sentence.]"
    assert len(joined) == 1
    assert provider.synthesize("Short.") == b"[Short.]"
