"""Configuration model and loaders for Chaptervoice.

Responsibilities:
- Define runtime configuration as a typed dataclass.
- Resolve provider keys and model identifiers with deterministic precedence.
- Load configuration from YAML files and environment variables.
- Load character configuration (aliases, pronunciations, special quoted names).

Key types:
- `ChapterVoiceConfig`: normalized settings for pipeline construction.
- `ProviderRuntimeConfig`: resolved provider keys and models.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `ChapterVoiceConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
import re
from typing import Any, Mapping

import yaml

from .errors import PipelineStageError
from .models.datatypes import CharacterConfig, CharacterProfile
from .parsing import (
    normalize_optional_string,
    parse_non_negative_float,
    parse_positive_int,
    parse_string_list,
)

_DEFAULT_ATTRIBUTION_MODEL = "gpt-4o"
_DEFAULT_TTS_MODEL = "tts-1"
_DEFAULT_NEURAL_MODEL = "eleven_monolingual_v1"
_DEFAULT_ALERT_CUES = {"DING!": "ding"}


def sound_tag_for_cue(cue: str) -> str:
    """Derive a sound-effect tag from an alert cue (`DING!` -> `ding`)."""

    return re.sub(r"[^a-z0-9]+", "", cue.casefold()) or "cue"


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        secure: Values loaded from secure local credential storage.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    secure: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderRuntimeConfig:
    """Resolved provider keys and model identifiers for one invocation.

    Attributes:
        attribution_model: Classification model for speaker attribution.
        tts_model: OpenAI speech model for preset voices.
        neural_model: ElevenLabs model for neural voices.
        openai_api_key: OpenAI API key, when available.
        elevenlabs_api_key: ElevenLabs API key, when available.
    """

    attribution_model: str
    tts_model: str
    neural_model: str
    openai_api_key: str | None = None
    elevenlabs_api_key: str | None = None


@dataclass(slots=True)
class ChapterVoiceConfig:
    """Settings for building a `ChapterPipeline`.

    Attributes:
        library_path: JSON library file holding chapters, segments, speakers, voices.
        output_dir: Directory of final chapter audio files.
        cache_dir: Root of the per-chapter segment audio cache.
        character_config_path: Optional character configuration file.
        attribution_model: Classification model identifier.
        tts_model: Preset-voice speech model identifier.
        neural_model: Neural-voice model identifier.
        batch_size: Spans per attribution request.
        context_spans: Neighbouring spans sent on each side of a batch.
        context_chars: Truncation length of each context span.
        inter_batch_delay_seconds: Minimum spacing between attribution requests.
        max_attempts: Provider attempts per request, first try included.
        retry_base_delay_seconds: Base delay of exponential retry backoff.
        default_narrator_voice: Voice used by the narrator when none is assigned.
        announcer_voice: Voice used by `ai_announcer` when none is assigned.
        end_of_chapter_text: Text of the closing narration clip.
        alert_cues: Alert cue text mapped to its sound-effect tag.
        sound_effects: Sound-effect tag mapped to a static audio asset.
        openai_api_key: Optional OpenAI API key.
        elevenlabs_api_key: Optional ElevenLabs API key.
        runtime_sources: Runtime source overrides injected by the CLI.
    """

    library_path: Path = Path("library.json")
    output_dir: Path = Path("out/chapters")
    cache_dir: Path = Path("out/segments")
    character_config_path: Path | None = None
    attribution_model: str = _DEFAULT_ATTRIBUTION_MODEL
    tts_model: str = _DEFAULT_TTS_MODEL
    neural_model: str = _DEFAULT_NEURAL_MODEL
    batch_size: int = 20
    context_spans: int = 5
    context_chars: int = 240
    inter_batch_delay_seconds: float = 1.0
    max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    default_narrator_voice: str = "nova"
    announcer_voice: str = "alloy"
    end_of_chapter_text: str = "End of Chapter"
    alert_cues: dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_ALERT_CUES))
    sound_effects: dict[str, Path] = field(default_factory=dict)
    openai_api_key: str | None = None
    elevenlabs_api_key: str | None = None
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)

    def validate(self) -> None:
        """Validate configuration values before pipeline construction."""

        self._require_non_empty(self.attribution_model, "attribution_model")
        self._require_non_empty(self.tts_model, "tts_model")
        self._require_non_empty(self.neural_model, "neural_model")
        self._require_non_empty(self.default_narrator_voice, "default_narrator_voice")
        self._require_non_empty(self.announcer_voice, "announcer_voice")
        self._require_non_empty(self.end_of_chapter_text, "end_of_chapter_text")
        for field_name in ("batch_size", "context_spans", "context_chars", "max_attempts"):
            value = getattr(self, field_name)
            if field_name == "context_spans" and value == 0:
                continue
            if not isinstance(value, int) or value <= 0:
                raise ValueError(f"`{field_name}` must be a positive integer.")
        if self.inter_batch_delay_seconds < 0 or self.retry_base_delay_seconds < 0:
            raise ValueError("Delay settings must be non-negative numbers.")

    def resolved_provider_runtime(
        self, sources: RuntimeConfigSources | None = None
    ) -> ProviderRuntimeConfig:
        """Resolve provider keys and models with deterministic source precedence.

        Precedence for each key is:
        `cli` > `secure` > `env` > config field value.
        """

        resolved_sources = sources if sources is not None else self.runtime_sources
        resolved = ProviderRuntimeConfig(
            attribution_model=self._resolve_runtime_value(
                "attribution_model",
                "CHAPTERVOICE_ATTRIBUTION_MODEL",
                self.attribution_model,
                resolved_sources,
            )
            or _DEFAULT_ATTRIBUTION_MODEL,
            tts_model=self._resolve_runtime_value(
                "tts_model", "CHAPTERVOICE_TTS_MODEL", self.tts_model, resolved_sources
            )
            or _DEFAULT_TTS_MODEL,
            neural_model=self._resolve_runtime_value(
                "neural_model", "CHAPTERVOICE_NEURAL_MODEL", self.neural_model, resolved_sources
            )
            or _DEFAULT_NEURAL_MODEL,
            openai_api_key=self._resolve_runtime_value(
                "openai_api_key", "OPENAI_API_KEY", self.openai_api_key, resolved_sources
            ),
            elevenlabs_api_key=self._resolve_runtime_value(
                "elevenlabs_api_key",
                "ELEVENLABS_API_KEY",
                self.elevenlabs_api_key,
                resolved_sources,
            ),
        )
        return resolved

    @staticmethod
    def _resolve_runtime_value(
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str | None:
        """Resolve one optional runtime value in precedence order."""

        for mapping, lookup_key in (
            (sources.cli, key),
            (sources.secure, key),
            (sources.env, env_key),
        ):
            if lookup_key in mapping:
                value = normalize_optional_string(mapping.get(lookup_key))
                if value is not None:
                    return value
        return normalize_optional_string(default_value)

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        """Validate that string fields are not empty."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


class ConfigLoader:
    """Factory methods for creating `ChapterVoiceConfig` from external sources."""

    _PATH_KEYS = frozenset({"library_path", "output_dir", "cache_dir", "character_config_path"})
    _STRING_KEYS = frozenset(
        {
            "attribution_model",
            "tts_model",
            "neural_model",
            "default_narrator_voice",
            "announcer_voice",
            "end_of_chapter_text",
            "openai_api_key",
            "elevenlabs_api_key",
        }
    )
    _INT_KEYS = frozenset({"batch_size", "context_chars", "max_attempts"})
    _FLOAT_KEYS = frozenset({"inter_batch_delay_seconds", "retry_base_delay_seconds"})
    _SUPPORTED_YAML_KEYS = (
        _PATH_KEYS
        | _STRING_KEYS
        | _INT_KEYS
        | _FLOAT_KEYS
        | frozenset({"context_spans", "alert_cues", "sound_effects"})
    )
    _ENV_KEYS = {
        "CHAPTERVOICE_LIBRARY_PATH": "library_path",
        "CHAPTERVOICE_OUTPUT_DIR": "output_dir",
        "CHAPTERVOICE_CACHE_DIR": "cache_dir",
        "CHAPTERVOICE_CHARACTER_CONFIG": "character_config_path",
        "CHAPTERVOICE_BATCH_SIZE": "batch_size",
        "CHAPTERVOICE_CONTEXT_CHARS": "context_chars",
        "CHAPTERVOICE_MAX_ATTEMPTS": "max_attempts",
        "CHAPTERVOICE_INTER_BATCH_DELAY_SECONDS": "inter_batch_delay_seconds",
        "CHAPTERVOICE_NARRATOR_VOICE": "default_narrator_voice",
        "CHAPTERVOICE_ANNOUNCER_VOICE": "announcer_voice",
        "CHAPTERVOICE_ALERT_CUES": "alert_cues",
    }
    _RUNTIME_ENV_KEYS = frozenset(
        {
            "CHAPTERVOICE_ATTRIBUTION_MODEL",
            "CHAPTERVOICE_TTS_MODEL",
            "CHAPTERVOICE_NEURAL_MODEL",
            "OPENAI_API_KEY",
            "ELEVENLABS_API_KEY",
        }
    )

    @staticmethod
    def from_yaml(path: Path) -> ChapterVoiceConfig:
        """Create a validated config from a YAML file."""

        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in config file `{path}`: {exc}") from exc
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValueError(f"Config file `{path}` must contain a mapping at top level.")

        unknown = sorted(str(key) for key in payload if key not in ConfigLoader._SUPPORTED_YAML_KEYS)
        if unknown:
            raise ValueError(
                f"Unsupported keys in YAML `{path}`: {', '.join(unknown)}."
            )

        config = ConfigLoader._build_config(payload, base_dir=path.parent)
        config.validate()
        return config

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> ChapterVoiceConfig:
        """Create a validated config from `CHAPTERVOICE_*` environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        payload: dict[str, Any] = {}
        for env_key, field_name in ConfigLoader._ENV_KEYS.items():
            value = normalize_optional_string(env_map.get(env_key))
            if value is not None:
                payload[field_name] = value

        runtime_env = {
            key: value
            for key, value in env_map.items()
            if key in ConfigLoader._RUNTIME_ENV_KEYS
        }
        config = ConfigLoader._build_config(payload, base_dir=None)
        config.runtime_sources = RuntimeConfigSources(env=runtime_env)
        config.validate()
        return config

    @staticmethod
    def _build_config(payload: Mapping[str, Any], *, base_dir: Path | None) -> ChapterVoiceConfig:
        """Convert a raw mapping into a config, parsing each typed field."""

        values: dict[str, Any] = {}
        for key, raw in payload.items():
            if raw is None:
                continue
            if key in ConfigLoader._PATH_KEYS:
                values[key] = ConfigLoader._resolve_path(raw, base_dir)
            elif key in ConfigLoader._STRING_KEYS:
                values[key] = normalize_optional_string(raw)
            elif key in ConfigLoader._INT_KEYS:
                values[key] = parse_positive_int(raw, key)
            elif key in ConfigLoader._FLOAT_KEYS:
                values[key] = parse_non_negative_float(raw, key)
            elif key == "context_spans":
                values[key] = int(parse_non_negative_float(raw, key))
            elif key == "alert_cues":
                values[key] = ConfigLoader._parse_alert_cues(raw)
            elif key == "sound_effects":
                values[key] = ConfigLoader._parse_sound_effects(raw, base_dir)
        return ChapterVoiceConfig(**{key: value for key, value in values.items() if value is not None})

    @staticmethod
    def _resolve_path(raw: object, base_dir: Path | None) -> Path:
        """Resolve a configured path relative to the config file directory."""

        path = Path(str(raw)).expanduser()
        if base_dir is not None and not path.is_absolute():
            return base_dir / path
        return path

    @staticmethod
    def _parse_alert_cues(raw: object) -> dict[str, str]:
        """Parse alert cues from a cue-to-tag mapping or a list of cues."""

        if isinstance(raw, Mapping):
            cues: dict[str, str] = {}
            for cue, tag in raw.items():
                normalized_cue = normalize_optional_string(cue)
                if normalized_cue is None:
                    continue
                cues[normalized_cue] = normalize_optional_string(tag) or sound_tag_for_cue(
                    normalized_cue
                )
            return cues
        return {cue: sound_tag_for_cue(cue) for cue in parse_string_list(raw, "alert_cues")}

    @staticmethod
    def _parse_sound_effects(raw: object, base_dir: Path | None) -> dict[str, Path]:
        """Parse a sound-effect tag to asset path mapping."""

        if not isinstance(raw, Mapping):
            raise ValueError("`sound_effects` must be a mapping of tag to audio file path.")
        effects: dict[str, Path] = {}
        for tag, asset in raw.items():
            normalized_tag = normalize_optional_string(tag)
            normalized_asset = normalize_optional_string(asset)
            if normalized_tag is None or normalized_asset is None:
                raise ValueError("`sound_effects` entries must have a tag and a path.")
            effects[normalized_tag] = ConfigLoader._resolve_path(normalized_asset, base_dir)
        return effects


def load_character_config(path: Path | None) -> CharacterConfig:
    """Load aliases, pronunciations, and special quoted names from YAML or JSON.

    The file holds `characterAliases` (`{name: {aliases: [...], description}}`),
    `pronunciations` (`{word: spoken form}`), and `specialQuotedNames` (list).
    """

    if path is None:
        return CharacterConfig()
    try:
        text = path.read_text(encoding="utf-8")
        payload = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    except OSError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Character config `{path}` could not be read: {exc}",
            hint="Fix `character_config_path` or remove it from the config.",
        ) from exc
    except (ValueError, yaml.YAMLError) as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Character config `{path}` is not valid: {exc}",
            hint="Ensure the file is a JSON or YAML mapping.",
        ) from exc
    if payload is None:
        return CharacterConfig()
    if not isinstance(payload, dict):
        raise PipelineStageError(
            stage="config",
            detail=f"Character config `{path}` must contain a mapping at top level.",
        )

    characters: list[CharacterProfile] = []
    aliases_payload = payload.get("characterAliases") or {}
    if not isinstance(aliases_payload, dict):
        raise PipelineStageError(stage="config", detail="`characterAliases` must be a mapping.")
    for name, entry in aliases_payload.items():
        entry_map = entry if isinstance(entry, dict) else {"aliases": entry}
        characters.append(
            CharacterProfile(
                name=str(name).strip(),
                aliases=parse_string_list(entry_map.get("aliases"), f"{name}.aliases"),
                description=normalize_optional_string(entry_map.get("description")) or "",
            )
        )

    pronunciations_payload = payload.get("pronunciations") or {}
    if not isinstance(pronunciations_payload, dict):
        raise PipelineStageError(stage="config", detail="`pronunciations` must be a mapping.")
    pronunciations = {
        str(word).strip(): str(spoken).strip()
        for word, spoken in pronunciations_payload.items()
        if str(word).strip()
    }

    return CharacterConfig(
        characters=tuple(characters),
        pronunciations=pronunciations,
        special_quoted_names=parse_string_list(
            payload.get("specialQuotedNames"), "specialQuotedNames"
        ),
    )
