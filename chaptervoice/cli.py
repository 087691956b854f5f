"""Command-line interface for Chaptervoice.

Responsibilities:
- Expose user-facing commands for chapter import, attribution, speaker and
  voice management, chapter builds, assembly diagnostics, publishing, and
  deletion.
- Convert global CLI options into `ChapterVoiceConfig` runtime sources.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Annotated

import typer

from .cli_rendering import (
    ProgressPrinter,
    echo_assembly_result,
    echo_chapter_list,
    echo_segment_rows,
    echo_speaker_rows,
    echo_voice_rows,
    exit_with_command_error,
)
from .cli_runtime import prompt_for_api_key, resolve_provider_runtime_sources
from .config import ChapterVoiceConfig, ConfigLoader, RuntimeConfigSources
from .credentials import PROVIDER_ACCOUNTS, create_credential_store
from .errors import PipelineStageError
from .io.library import JsonLibraryStore
from .pipeline import ChapterPipeline
from .telemetry.logger import RunLogger

app = typer.Typer(
    name="chaptervoice",
    no_args_is_help=True,
    help="Chaptervoice CLI.",
)


@dataclass(slots=True)
class CliState:
    """Global options shared by every command of one invocation."""

    config_file: Path | None = None
    openai_api_key: str | None = None
    elevenlabs_api_key: str | None = None
    prompt_api_key: bool = False
    store_api_key: bool = True
    verbose: bool = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to YAML config file."),
    ] = None,
    openai_api_key: Annotated[
        str | None,
        typer.Option(
            "--openai-api-key",
            help="OpenAI API key override. Prefer `--prompt-api-key` to avoid shell history.",
        ),
    ] = None,
    elevenlabs_api_key: Annotated[
        str | None,
        typer.Option("--elevenlabs-api-key", help="ElevenLabs API key override."),
    ] = None,
    prompt_api_key: Annotated[
        bool,
        typer.Option(
            "--prompt-api-key",
            help="Prompt for the OpenAI API key with hidden input (never echoed).",
        ),
    ] = False,
    store_api_key: Annotated[
        bool,
        typer.Option(
            "--store-api-key/--no-store-api-key",
            help="Persist CLI-entered API keys to secure credential storage.",
        ),
    ] = True,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Emit debug-level phase logs."),
    ] = False,
) -> None:
    """Narrate chapters with one voice per character."""

    ctx.obj = CliState(
        config_file=config_file,
        openai_api_key=openai_api_key,
        elevenlabs_api_key=elevenlabs_api_key,
        prompt_api_key=prompt_api_key,
        store_api_key=store_api_key,
        verbose=verbose,
    )


def _state(ctx: typer.Context) -> CliState:
    """Return global options, defaulting when the callback did not run."""

    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _load_yaml_config(config_path: Path | None) -> ChapterVoiceConfig | None:
    """Load a YAML config file when requested and map failures to stage errors."""

    if config_path is None:
        return None

    try:
        return ConfigLoader.from_yaml(config_path)
    except FileNotFoundError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Config file not found: `{config_path}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Invalid config file `{config_path}`: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc
    except OSError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Failed to load config file `{config_path}`: {exc}",
            hint="Verify file permissions.",
        ) from exc


def _resolve_config(state: CliState, *, with_credentials: bool) -> ChapterVoiceConfig:
    """Resolve effective config from YAML or environment plus runtime key sources."""

    config = _load_yaml_config(state.config_file)
    if config is None:
        try:
            config = ConfigLoader.from_env(os.environ)
        except ValueError as exc:
            raise PipelineStageError(
                stage="config",
                detail=f"Invalid `CHAPTERVOICE_*` environment value: {exc}",
                hint="Fix or unset the offending environment variable.",
            ) from exc

    runtime_cli_values: dict[str, str] = {}
    runtime_secure_values: dict[str, str] = {}
    if with_credentials:
        runtime_cli_values, runtime_secure_values = resolve_provider_runtime_sources(
            openai_api_key=state.openai_api_key,
            elevenlabs_api_key=state.elevenlabs_api_key,
            prompt_api_key=state.prompt_api_key,
            store_api_key=state.store_api_key,
            credential_store_factory=create_credential_store,
        )
    config.runtime_sources = RuntimeConfigSources(
        cli=runtime_cli_values,
        secure=runtime_secure_values,
        env=os.environ,
    )
    return config


def _create_pipeline(
    state: CliState,
    command_name: str,
    *,
    with_credentials: bool = True,
) -> tuple[ChapterPipeline, JsonLibraryStore, ProgressPrinter]:
    """Build the pipeline, its library store, and a progress printer for one command."""

    config = _resolve_config(state, with_credentials=with_credentials)
    library = JsonLibraryStore(config.library_path)
    progress = ProgressPrinter(command_name=command_name)
    pipeline = ChapterPipeline.from_config(
        config,
        run_logger=RunLogger(level="DEBUG" if state.verbose else "INFO"),
        stage_progress_callback=progress.on_stage_start,
        library=library,
    )
    return pipeline, library, progress


def _require_openai_key(pipeline: ChapterPipeline) -> None:
    """Fail before attribution when no OpenAI key is configured."""

    if not pipeline.attribution.client.api_key:
        raise PipelineStageError(
            stage="credentials",
            detail="OpenAI API key is missing.",
            hint=(
                "Set `OPENAI_API_KEY`, pass `--openai-api-key`, use `--prompt-api-key`, "
                "or run `chaptervoice credentials --set-api-key`."
            ),
        )


@app.command("import-chapter")
def import_chapter_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
    text_file: Annotated[Path, typer.Argument(help="UTF-8 text file with the chapter body.")],
    title: Annotated[
        str | None,
        typer.Option("--title", help="Chapter title. Defaults to the file stem."),
    ] = None,
) -> None:
    """Import or update a chapter's text."""

    try:
        pipeline, _, _ = _create_pipeline(_state(ctx), "import-chapter", with_credentials=False)
        try:
            text = text_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise PipelineStageError(
                stage="import",
                detail=f"Chapter text file `{text_file}` could not be read: {exc}",
                hint="Provide an existing UTF-8 text file.",
            ) from exc
        chapter = pipeline.import_chapter(chapter_id, title or text_file.stem, text)
    except Exception as exc:
        exit_with_command_error("import-chapter", exc)

    typer.echo(f"Chapter: {chapter.id} ({chapter.title})")
    typer.echo(f"Stage: {chapter.stage}")
    typer.echo(f"Characters: {len(chapter.text)}")


@app.command("identify-speakers")
def identify_speakers_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
) -> None:
    """Segment a chapter and attribute every span to a speaker."""

    try:
        pipeline, library, progress = _create_pipeline(_state(ctx), "identify-speakers")
        _require_openai_key(pipeline)
        segments = pipeline.identify_speakers(chapter_id, progress.on_attribution)
        names = {speaker.id: speaker.name for speaker in library.list_speakers()}
    except Exception as exc:
        exit_with_command_error("identify-speakers", exc)

    typer.echo(f"Segments: {len(segments)}")
    typer.echo(f"Speakers: {', '.join(sorted({names[s.speaker_id] for s in segments}))}")


@app.command("build")
def build_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
) -> None:
    """Synthesize missing segments and assemble the chapter audio file."""

    try:
        pipeline, library, progress = _create_pipeline(_state(ctx), "build")
        if not library.get_segments(chapter_id):
            _require_openai_key(pipeline)
        result = pipeline.process_chapter(
            chapter_id,
            on_progress=progress.on_assembly,
            on_attribution_progress=progress.on_attribution,
        )
    except Exception as exc:
        exit_with_command_error("build", exc)

    echo_assembly_result(result)


@app.command("regenerate-segment")
def regenerate_segment_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
    index: Annotated[int, typer.Argument(help="Segment index.")],
) -> None:
    """Force fresh synthesis of one segment."""

    try:
        pipeline, _, _ = _create_pipeline(_state(ctx), "regenerate-segment")
        path = pipeline.regenerate_segment(chapter_id, index)
    except Exception as exc:
        exit_with_command_error("regenerate-segment", exc)

    typer.echo(f"Segment audio: {path}")
    typer.echo("Chapter audio invalidated; run `chaptervoice build` to reassemble.")


@app.command("rebuild")
def rebuild_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
) -> None:
    """Reassemble chapter audio from cached segment files only."""

    try:
        pipeline, _, progress = _create_pipeline(_state(ctx), "rebuild", with_credentials=False)
        result = pipeline.rebuild_from_cache(chapter_id, on_progress=progress.on_assembly)
    except Exception as exc:
        exit_with_command_error("rebuild", exc)

    echo_assembly_result(result)


@app.command("debug-merge")
def debug_merge_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
    report_path: Annotated[
        Path | None,
        typer.Option("--report", help="Also write the diagnostic report to this file."),
    ] = None,
) -> None:
    """Merge cached files with a per-file diagnostic report."""

    try:
        pipeline, _, _ = _create_pipeline(_state(ctx), "debug-merge", with_credentials=False)
        report = pipeline.debug_merge(chapter_id)
        rendered = report.render()
        if report_path is not None:
            report_path.parent.mkdir(parents=True, exist_ok=True)
            report_path.write_text(rendered + "\n", encoding="utf-8")
    except Exception as exc:
        exit_with_command_error("debug-merge", exc)

    typer.echo(rendered)
    if not report.succeeded:
        raise typer.Exit(code=1)


@app.command("segments")
def segments_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
) -> None:
    """List a chapter's segments with speaker and cache state."""

    try:
        pipeline, library, _ = _create_pipeline(_state(ctx), "segments", with_credentials=False)
        rows = pipeline.segment_cache_report(chapter_id)
        names = {speaker.id: speaker.name for speaker in library.list_speakers()}
    except Exception as exc:
        exit_with_command_error("segments", exc)

    if not rows:
        typer.echo("No segments. Run `chaptervoice identify-speakers` first.")
        return
    echo_segment_rows(rows, names)


@app.command("set-speaker")
def set_speaker_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
    index: Annotated[int, typer.Argument(help="Segment index.")],
    speaker_name: Annotated[str, typer.Argument(help="Speaker name; created when new.")],
) -> None:
    """Reassign one segment to a speaker."""

    try:
        pipeline, library, _ = _create_pipeline(_state(ctx), "set-speaker", with_credentials=False)
        speaker = library.get_or_create_speaker(speaker_name)
        segment = pipeline.update_segment_speaker(chapter_id, index, speaker.id)
    except Exception as exc:
        exit_with_command_error("set-speaker", exc)

    typer.echo(f"Segment {segment.index} -> {speaker.name} (speaker {speaker.id})")


@app.command("speakers")
def speakers_command(
    ctx: typer.Context,
    voices: Annotated[
        bool,
        typer.Option("--voices", help="Also list the voices available for assignment."),
    ] = False,
) -> None:
    """List speakers and their assigned voices."""

    try:
        _, library, _ = _create_pipeline(_state(ctx), "speakers", with_credentials=False)
        speakers = library.list_speakers()
        available_voices = library.list_voices() if voices else []
    except Exception as exc:
        exit_with_command_error("speakers", exc)

    if not speakers:
        typer.echo("No speakers yet.")
    echo_speaker_rows(speakers)
    if voices:
        typer.echo("Voices:")
        echo_voice_rows(available_voices)


@app.command("assign-voice")
def assign_voice_command(
    ctx: typer.Context,
    speaker_id: Annotated[int, typer.Argument(help="Speaker id.")],
    voice_id: Annotated[str, typer.Argument(help="Voice id, or `none` to clear.")],
) -> None:
    """Set or clear a speaker's voice."""

    try:
        pipeline, _, _ = _create_pipeline(_state(ctx), "assign-voice", with_credentials=False)
        resolved_voice_id = None if voice_id.strip().lower() == "none" else voice_id.strip()
        speaker = pipeline.assign_voice(speaker_id, resolved_voice_id)
    except Exception as exc:
        exit_with_command_error("assign-voice", exc)

    typer.echo(f"Speaker {speaker.id} ({speaker.name}) voice: {speaker.voice_id or '(none)'}")


@app.command("merge-speakers")
def merge_speakers_command(
    ctx: typer.Context,
    source_id: Annotated[int, typer.Argument(help="Speaker id to merge away.")],
    target_id: Annotated[int, typer.Argument(help="Speaker id that receives the segments.")],
) -> None:
    """Merge one speaker into another."""

    try:
        pipeline, _, _ = _create_pipeline(_state(ctx), "merge-speakers", with_credentials=False)
        moved = pipeline.merge_speakers(source_id, target_id)
    except Exception as exc:
        exit_with_command_error("merge-speakers", exc)

    typer.echo(f"Moved {moved} segment(s) from speaker {source_id} to speaker {target_id}.")


@app.command("publish")
def publish_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
) -> None:
    """Mark a chapter with assembled audio as published."""

    try:
        pipeline, _, _ = _create_pipeline(_state(ctx), "publish", with_credentials=False)
        chapter = pipeline.mark_published(chapter_id)
    except Exception as exc:
        exit_with_command_error("publish", exc)

    typer.echo(f"Chapter {chapter.id} published.")


@app.command("delete-chapter")
def delete_chapter_command(
    ctx: typer.Context,
    chapter_id: Annotated[str, typer.Argument(help="Chapter identifier.")],
) -> None:
    """Delete a chapter, its segments, and its cached audio."""

    try:
        pipeline, _, _ = _create_pipeline(_state(ctx), "delete-chapter", with_credentials=False)
        pipeline.delete_chapter(chapter_id)
    except Exception as exc:
        exit_with_command_error("delete-chapter", exc)

    typer.echo(f"Chapter {chapter_id} deleted.")


@app.command("chapters")
def chapters_command(ctx: typer.Context) -> None:
    """List library chapters with their lifecycle stage."""

    try:
        _, library, _ = _create_pipeline(_state(ctx), "chapters", with_credentials=False)
        chapters = library.list_chapters()
    except Exception as exc:
        exit_with_command_error("chapters", exc)

    if not chapters:
        typer.echo("No chapters imported.")
        return
    echo_chapter_list(chapters)


@app.command("credentials")
def credentials_command(
    provider: Annotated[
        str,
        typer.Option("--provider", help="Credential provider: `openai` or `elevenlabs`."),
    ] = "openai",
    set_api_key: Annotated[
        bool,
        typer.Option(
            "--set-api-key",
            help="Prompt for API key with hidden input and store it securely.",
        ),
    ] = False,
    clear_api_key: Annotated[
        bool,
        typer.Option(
            "--clear-api-key",
            help="Clear stored API key from secure credential storage.",
        ),
    ] = False,
) -> None:
    """Manage securely stored provider credentials."""

    if set_api_key and clear_api_key:
        exit_with_command_error(
            "credentials",
            PipelineStageError(
                stage="credentials",
                detail="`--set-api-key` and `--clear-api-key` cannot be used together.",
                hint="Run one credentials action per command invocation.",
            ),
        )
    if provider not in PROVIDER_ACCOUNTS:
        exit_with_command_error(
            "credentials",
            PipelineStageError(
                stage="credentials",
                detail=f"Unsupported credential provider `{provider}`.",
                hint=f"Supported providers: {', '.join(sorted(PROVIDER_ACCOUNTS))}.",
            ),
        )

    credential_store = create_credential_store(provider)
    if set_api_key:
        prompted_api_key = prompt_for_api_key(provider)
        if prompted_api_key is None:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail="No API key entered.",
                    hint="Provide a non-empty API key when using `--set-api-key`.",
                ),
            )
        try:
            credential_store.set_api_key(prompted_api_key)
        except (RuntimeError, ValueError) as exc:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail=f"Failed to store API key securely: {exc}",
                    hint="Install and configure a keyring backend and retry.",
                ),
            )
        typer.echo(f"Stored {provider} API key in secure credential storage.")
        return

    if clear_api_key:
        if credential_store.clear_api_key():
            typer.echo(f"Cleared stored {provider} API key.")
        else:
            typer.echo(f"No stored {provider} API key to clear.")
        return

    available = credential_store.is_available()
    stored = credential_store.get_api_key() is not None
    typer.echo(f"Provider: {provider}")
    typer.echo(f"Secure storage available: {'yes' if available else 'no'}")
    typer.echo(f"Stored API key: {'yes' if stored else 'no'}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
