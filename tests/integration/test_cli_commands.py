"""Integration tests for CLI library, build, and credential commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from chaptervoice import cli
from chaptervoice.cli import app
from chaptervoice.llm import http_client
from chaptervoice.pipeline import orchestrator
from tests.fakes import FakeTranscoder

CHAPTER_TEXT = '"Hello," Jake said. He walked away.'


class _FakeResponse:
    """Minimal successful requests response."""

    def __init__(self, content: bytes) -> None:
        """Store the response payload."""

        self.content = content
        self.status_code = 200

    def raise_for_status(self) -> None:
        """Never raise for a successful response."""


class _FakeProviderHTTP:
    """Answer chat and speech endpoints deterministically and record requests."""

    def __init__(self) -> None:
        """Initialize request recording."""

        self.requests: list[tuple[str, dict[str, Any]]] = []

    def post(
        self,
        endpoint: str,
        *,
        headers: dict[str, str],
        json: dict[str, Any],
        timeout: float,
    ) -> _FakeResponse:
        """Return attribution JSON for chat calls and tagged bytes for speech calls."""

        self.requests.append((endpoint, json))
        if endpoint.endswith("/chat/completions"):
            assignments = {
                "assignments": [
                    {"index": 0, "speaker": "Alice", "type": "dialogue"},
                    {"index": 1, "speaker": "narrator", "type": "narration"},
                ]
            }
            body = {"choices": [{"message": {"content": _dumps(assignments)}}]}
            return _FakeResponse(_dumps(body).encode("utf-8"))
        return _FakeResponse(f"<{json['voice']}:{json['input']}>".encode("utf-8"))


def _dumps(payload: object) -> str:
    """Serialize a payload as JSON text."""

    return json.dumps(payload)


def _write_chapter(tmp_path: Path, text: str = CHAPTER_TEXT) -> Path:
    """Write a chapter text file and return its path."""

    path = tmp_path / "arrival.txt"
    path.write_text(text, encoding="utf-8")
    return path


def _import(runner: CliRunner, tmp_path: Path) -> None:
    """Import the default chapter as `ch1`."""

    result = runner.invoke(app, ["import-chapter", "ch1", str(_write_chapter(tmp_path))])
    assert result.exit_code == 0, result.output


def test_import_chapter_and_list_chapters(tmp_path: Path) -> None:
    """Imported chapters should be listed with their stage and title."""

    runner = CliRunner()
    result = runner.invoke(
        app, ["import-chapter", "ch1", str(_write_chapter(tmp_path)), "--title", "Arrival"]
    )

    assert result.exit_code == 0, result.output
    assert "Chapter: ch1 (Arrival)" in result.output
    assert "Stage: scraped" in result.output

    listed = runner.invoke(app, ["chapters"])
    assert listed.exit_code == 0, listed.output
    assert "ch1\tscraped\tArrival" in listed.output


def test_import_chapter_reports_unreadable_file(tmp_path: Path) -> None:
    """A missing text file should fail with the import stage diagnostic."""

    result = CliRunner().invoke(app, ["import-chapter", "ch1", str(tmp_path / "missing.txt")])

    assert result.exit_code == 1
    assert "import-chapter failed at stage `import`" in result.output


def test_empty_library_listings(tmp_path: Path) -> None:
    """Listing commands should explain an empty library and still show voices."""

    runner = CliRunner()

    chapters = runner.invoke(app, ["chapters"])
    speakers = runner.invoke(app, ["speakers", "--voices"])

    assert "No chapters imported." in chapters.output
    assert "No speakers yet." in speakers.output
    assert "Voices:" in speakers.output
    assert "nova\topenai\tpreset\tactive\tNova" in speakers.output


def test_identify_speakers_requires_openai_key(tmp_path: Path) -> None:
    """Attribution should stop with a credentials hint when no key is configured."""

    runner = CliRunner()
    _import(runner, tmp_path)

    result = runner.invoke(app, ["identify-speakers", "ch1"])

    assert result.exit_code == 1
    assert "identify-speakers failed at stage `credentials`" in result.output
    assert "OPENAI_API_KEY" in result.output


def test_publish_before_build_fails(tmp_path: Path) -> None:
    """Publishing a chapter without audio should exit with the publish stage error."""

    runner = CliRunner()
    _import(runner, tmp_path)

    result = runner.invoke(app, ["publish", "ch1"])

    assert result.exit_code == 1
    assert "publish failed at stage `publish`" in result.output


def test_unknown_chapter_fails_in_chapter_stage(tmp_path: Path) -> None:
    """Commands on unknown chapters should name the missing chapter."""

    result = CliRunner().invoke(app, ["segments", "missing"])

    assert result.exit_code == 1
    assert "stage `chapter`" in result.output


def test_build_flow_with_stubbed_providers(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """A full CLI session should attribute, assign voices, build, reuse, and publish."""

    fake_http = _FakeProviderHTTP()
    monkeypatch.setattr(http_client.requests, "post", fake_http.post)
    monkeypatch.setattr(orchestrator, "FFmpegTranscoder", lambda **_: FakeTranscoder())
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    runner = CliRunner()
    _import(runner, tmp_path)

    identified = runner.invoke(app, ["identify-speakers", "ch1"])
    assert identified.exit_code == 0, identified.output
    assert "Segments: 2" in identified.output
    assert "Speakers: Alice, narrator" in identified.output

    blocked = runner.invoke(app, ["build", "ch1"])
    assert blocked.exit_code == 1
    assert "build failed at stage `voices`" in blocked.output
    assert "Alice" in blocked.output

    speakers = runner.invoke(app, ["speakers"])
    alice_id = next(
        line.split("\t")[0] for line in speakers.output.splitlines() if "\tAlice\t" in line
    )
    assigned = runner.invoke(app, ["assign-voice", alice_id, "onyx"])
    assert assigned.exit_code == 0, assigned.output
    assert "voice: onyx" in assigned.output

    built = runner.invoke(app, ["build", "ch1"])
    assert built.exit_code == 0, built.output
    assert (tmp_path / "chapters" / "ch1.mp3").is_file()
    assert "Segments synthesized: 2, reused from cache: 0" in built.output
    speech_inputs = [
        payload["input"]
        for endpoint, payload in fake_http.requests
        if endpoint.endswith("/audio/speech")
    ]
    assert speech_inputs == ['"Hello,"', "Jake said. He walked away.", "End of Chapter"]

    rebuilt = runner.invoke(app, ["build", "ch1"])
    assert rebuilt.exit_code == 0, rebuilt.output
    assert "Existing chapter audio is current; nothing was rebuilt." in rebuilt.output

    segments = runner.invoke(app, ["segments", "ch1"])
    assert segments.output.count("\tcurrent\t") == 2

    published = runner.invoke(app, ["publish", "ch1"])
    assert published.exit_code == 0, published.output
    assert "ch1\tpublished" in runner.invoke(app, ["chapters"]).output


def test_credentials_status_set_and_clear(
    monkeypatch: pytest.MonkeyPatch,
    credential_stores: dict[str, Any],
) -> None:
    """The credentials command should report, store, and clear provider keys."""

    runner = CliRunner()
    monkeypatch.setattr(cli, "prompt_for_api_key", lambda provider: "el-secret")

    status = runner.invoke(app, ["credentials"])
    assert status.exit_code == 0, status.output
    assert "Provider: openai" in status.output
    assert "Stored API key: no" in status.output

    stored = runner.invoke(app, ["credentials", "--provider", "elevenlabs", "--set-api-key"])
    assert stored.exit_code == 0, stored.output
    assert "Stored elevenlabs API key in secure credential storage." in stored.output
    assert credential_stores["elevenlabs"].get_api_key() == "el-secret"
    assert "el-secret" not in stored.output

    cleared = runner.invoke(app, ["credentials", "--provider", "elevenlabs", "--clear-api-key"])
    assert "Cleared stored elevenlabs API key." in cleared.output
    again = runner.invoke(app, ["credentials", "--provider", "elevenlabs", "--clear-api-key"])
    assert "No stored elevenlabs API key to clear." in again.output


def test_credentials_rejects_conflicting_flags_and_unknown_provider() -> None:
    """Conflicting actions and unsupported providers should exit with code 1."""

    runner = CliRunner()

    conflicting = runner.invoke(app, ["credentials", "--set-api-key", "--clear-api-key"])
    unknown = runner.invoke(app, ["credentials", "--provider", "azure"])

    assert conflicting.exit_code == 1
    assert "cannot be used together" in conflicting.output
    assert unknown.exit_code == 1
    assert "Unsupported credential provider `azure`" in unknown.output


def test_cli_api_key_is_stored_when_provided_on_command_line(
    tmp_path: Path,
    credential_stores: dict[str, Any],
) -> None:
    """A key passed with `--openai-api-key` should be persisted by default."""

    runner = CliRunner()
    _import(runner, tmp_path)

    result = runner.invoke(app, ["--openai-api-key", "sk-cli", "segments", "ch1"])
    assert result.exit_code == 0, result.output
    assert credential_stores["openai"].get_api_key() is None

    stored = runner.invoke(
        app,
        ["--openai-api-key", "sk-cli", "regenerate-segment", "ch1", "0"],
    )
    assert "Stored OpenAI API key in secure credential storage." in stored.output
    assert credential_stores["openai"].get_api_key() == "sk-cli"


def test_delete_chapter_command(tmp_path: Path) -> None:
    """Deleting an imported chapter should remove it from the chapter listing."""

    runner = CliRunner()
    _import(runner, tmp_path)

    deleted = runner.invoke(app, ["delete-chapter", "ch1"])
    again = runner.invoke(app, ["delete-chapter", "ch1"])

    assert deleted.exit_code == 0, deleted.output
    assert "Chapter ch1 deleted." in deleted.output
    assert "No chapters imported." in runner.invoke(app, ["chapters"]).output
    assert again.exit_code == 1
    assert "stage `chapter`" in again.output
