"""Tests for the CLI commands using typer.testing."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest
from typer.testing import CliRunner, Result

from promptvault.cli import app
from promptvault.config import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def _offline_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep the CLI on the keyword fallback and the default app URL."""
    for name in ("OPENAI_API_KEY", "APP_URL", "PROMPTVAULT_DB", "DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def db(tmp_path: Path) -> Path:
    path = tmp_path / "test.db"
    assert _invoke("init", db=path).exit_code == 0
    return path


def _invoke(*args: str, db: Path | None = None, input: str | None = None) -> Result:
    """Helper to invoke the CLI with a temp DB."""
    cmd = list(args)
    if db:
        cmd += ["--db", str(db)]
    return runner.invoke(app, cmd, input=input)


def _add(db: Path, content: str, *extra: str) -> int:
    result = _invoke("add", "-c", content, *extra, db=db)
    assert result.exit_code == 0, result.output
    listed = json.loads(_invoke("list", "--json", db=db).output)
    return max(p["id"] for p in listed)


class TestInit:
    def test_init_creates_db(self, tmp_path: Path) -> None:
        result = _invoke("init", db=tmp_path / "test.db")
        assert result.exit_code == 0
        assert "initialized" in result.output.lower()

    def test_init_creates_alembic_version(self, db: Path) -> None:
        conn = sqlite3.connect(str(db))
        tables = [r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")]
        assert "alembic_version" in tables
        assert len(conn.execute("SELECT version_num FROM alembic_version").fetchall()) == 1
        assert conn.execute("SELECT count(*) FROM categories").fetchone()[0] == 7
        conn.close()

    def test_init_idempotent(self, db: Path) -> None:
        assert _invoke("init", db=db).exit_code == 0


class TestVersion:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "pvault" in result.output
        assert "0.1.0" in result.output


class TestAdd:
    def test_add_with_title(self, db: Path) -> None:
        result = _invoke("add", "--title", "Greeter", "-c", "Hello!", "-s", "claude", db=db)
        assert result.exit_code == 0
        assert "Greeter" in result.output
        assert "(v1)" in result.output

    def test_title_defaults_to_first_line(self, db: Path) -> None:
        _add(db, "Summarize this report\nin three bullets")
        (prompt,) = json.loads(_invoke("list", "--json", db=db).output)
        assert prompt["title"] == "Summarize this report"
        assert prompt["source"] == "other"

    def test_add_from_file(self, db: Path, tmp_path: Path) -> None:
        f = tmp_path / "prompt.txt"
        f.write_text("File content here")
        assert _invoke("add", "--file", str(f), db=db).exit_code == 0

    def test_add_from_stdin(self, db: Path) -> None:
        result = _invoke("add", "-c", "-", db=db, input="piped prompt")
        assert result.exit_code == 0
        assert "piped prompt" in result.output

    def test_add_no_content_fails(self, db: Path) -> None:
        assert _invoke("add", "--title", "p", db=db).exit_code == 1

    def test_add_unknown_category_fails(self, db: Path) -> None:
        result = _invoke("add", "-c", "x", "--category", "Poetry", db=db)
        assert result.exit_code == 1
        assert "Unknown category" in result.output

    def test_add_with_metadata(self, db: Path) -> None:
        _add(db, "Debug this", "--category", "coding", "--score", "7", "-t", "Dev", "-t", "dev", "--favorite")
        (prompt,) = json.loads(_invoke("list", "--json", db=db).output)
        assert prompt["category"] == "Coding"
        assert prompt["effectiveness_score"] == 7
        assert prompt["tags"] == ["dev"]
        assert prompt["is_favorite"] is True

    def test_add_with_analysis(self, db: Path) -> None:
        result = _invoke("add", "-c", "Write a marketing email", "-s", "chatgpt", "--analyze", db=db)
        assert result.exit_code == 0
        assert "Basic analysis" in result.output
        (prompt,) = json.loads(_invoke("list", "--json", db=db).output)
        assert prompt["category"] == "Copywriting"
        assert prompt["tags"] == ["chatgpt", "communication", "copywriting", "marketing"]


class TestList:
    def test_list_empty(self, db: Path) -> None:
        result = _invoke("list", db=db)
        assert result.exit_code == 0
        assert "No prompts found" in result.output

    def test_list_table(self, db: Path) -> None:
        _add(db, "hello")
        result = _invoke("list", db=db)
        assert result.exit_code == 0
        assert "hello" in result.output

    def test_list_filters(self, db: Path) -> None:
        _add(db, "alpha text", "-s", "cursor", "-t", "dev")
        _add(db, "beta text", "-s", "gemini", "--favorite")

        def titles(*args: str) -> list[str]:
            return [p["title"] for p in json.loads(_invoke("list", "--json", *args, db=db).output)]

        assert titles("-q", "ALPHA") == ["alpha text"]
        assert titles("-s", "gemini") == ["beta text"]
        assert titles("-t", "dev") == ["alpha text"]
        assert titles("--favorites") == ["beta text"]


class TestVersions:
    def test_edit_content_creates_version(self, db: Path) -> None:
        prompt_id = _add(db, "v1-text")
        result = _invoke("edit", str(prompt_id), "-c", "v2-text", "-n", "second", db=db)
        assert result.exit_code == 0
        assert "v2" in result.output

        versions = json.loads(_invoke("log", str(prompt_id), "--json", db=db).output)
        assert [(v["version"], v["change_notes"]) for v in versions] == [
            (1, "Initial version"),
            (2, "second"),
        ]

    def test_edit_metadata_keeps_version(self, db: Path) -> None:
        prompt_id = _add(db, "text")
        result = _invoke("edit", str(prompt_id), "--title", "Renamed", db=db)
        assert "still v1" in result.output

    def test_edit_nothing(self, db: Path) -> None:
        prompt_id = _add(db, "text")
        assert "Nothing to change" in _invoke("edit", str(prompt_id), db=db).output

    def test_edit_missing_prompt(self, db: Path) -> None:
        result = _invoke("edit", "99", "--title", "x", db=db)
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_show(self, db: Path) -> None:
        prompt_id = _add(db, "v1-text")
        _invoke("edit", str(prompt_id), "-c", "v2-text", db=db)
        assert "v2-text" in _invoke("show", str(prompt_id), db=db).output
        assert "v1-text" in _invoke("show", str(prompt_id), "--version", "1", db=db).output
        data = json.loads(_invoke("show", str(prompt_id), "--json", db=db).output)
        assert (data["version"], data["content"]) == (2, "v2-text")

    def test_show_missing_version(self, db: Path) -> None:
        prompt_id = _add(db, "text")
        assert _invoke("show", str(prompt_id), "-v", "5", db=db).exit_code == 1

    def test_diff(self, db: Path) -> None:
        prompt_id = _add(db, "line1\nline2\n")
        _invoke("edit", str(prompt_id), "-c", "line1\nchanged\n", db=db)
        result = _invoke("diff", str(prompt_id), "1", "2", db=db)
        assert result.exit_code == 0
        assert "-line2" in result.output
        assert "+changed" in result.output

    def test_restore(self, db: Path) -> None:
        prompt_id = _add(db, "original")
        _invoke("edit", str(prompt_id), "-c", "changed", db=db)
        result = _invoke("restore", str(prompt_id), "1", db=db)
        assert result.exit_code == 0
        assert "v3" in result.output
        data = json.loads(_invoke("show", str(prompt_id), "--json", db=db).output)
        assert data["content"] == "original"
        assert data["change_notes"] == "Restored from v1"


class TestUseExportDelete:
    def test_use_prints_and_counts(self, db: Path) -> None:
        prompt_id = _add(db, "reusable")
        result = _invoke("use", str(prompt_id), db=db)
        assert result.output.strip() == "reusable"
        (prompt,) = json.loads(_invoke("list", "--json", db=db).output)
        assert prompt["use_count"] == 1
        assert prompt["current_version"] == 1

    def test_export_stdout(self, db: Path) -> None:
        prompt_id = _add(db, "hello")
        data = json.loads(_invoke("export", str(prompt_id), db=db).output)
        assert data["title"] == "hello"
        assert [v["content"] for v in data["versions"]] == ["hello"]

    def test_export_to_file(self, db: Path, tmp_path: Path) -> None:
        prompt_id = _add(db, "hello")
        out = tmp_path / "out.json"
        assert _invoke("export", str(prompt_id), "--output", str(out), db=db).exit_code == 0
        assert json.loads(out.read_text())["id"] == prompt_id

    def test_delete(self, db: Path) -> None:
        prompt_id = _add(db, "doomed")
        assert _invoke("delete", str(prompt_id), "-y", db=db).exit_code == 0
        assert json.loads(_invoke("list", "--json", db=db).output) == []

    def test_delete_aborted(self, db: Path) -> None:
        prompt_id = _add(db, "kept")
        result = _invoke("delete", str(prompt_id), db=db, input="n\n")
        assert "Aborted" in result.output
        assert len(json.loads(_invoke("list", "--json", db=db).output)) == 1


class TestAnalyzeAndStats:
    def test_analyze(self, db: Path) -> None:
        result = _invoke("analyze", "-c", "Debug this function", "-s", "cursor", "--json", db=db)
        data = json.loads(result.output)
        assert data["ai_powered"] is False
        assert data["tags"] == ["cursor", "coding"]
        assert data["category"] == "Coding"

    def test_analyze_text(self, db: Path) -> None:
        result = _invoke("analyze", "-c", "Explain recursion", db=db)
        assert "Learning" in result.output

    def test_stats(self, db: Path) -> None:
        _add(db, "one", "--favorite")
        _add(db, "two")
        assert json.loads(_invoke("stats", "--json", db=db).output) == {
            "total": 2,
            "favorites": 1,
            "this_week": 2,
        }

    def test_tags_and_categories(self, db: Path) -> None:
        _add(db, "x", "-t", "seo")
        assert json.loads(_invoke("tags", "--json", db=db).output) == [{"name": "seo", "auto": False}]
        names = {c["name"] for c in json.loads(_invoke("categories", "--json", db=db).output)}
        assert "Automation" in names


class TestCollections:
    def test_collection_flow(self, db: Path) -> None:
        assert _invoke("collection", "create", "Launch", "-d", "Go-live prompts", db=db).exit_code == 0
        (collection,) = json.loads(_invoke("collection", "list", "--json", db=db).output)
        _add(db, "in collection", "--collection", str(collection["id"]))

        (collection,) = json.loads(_invoke("collection", "list", "--json", db=db).output)
        assert collection["prompt_count"] == 1

        url = _invoke("collection", "share", str(collection["id"]), db=db).output.strip()
        assert url.startswith("http://localhost:8000/share/")
        again = _invoke("collection", "share", str(collection["id"]), db=db).output.strip()
        assert again == url

        assert _invoke("collection", "unshare", str(collection["id"]), db=db).exit_code == 0
        (collection,) = json.loads(_invoke("collection", "list", "--json", db=db).output)
        assert collection["is_public"] is False

    def test_share_missing_collection(self, db: Path) -> None:
        assert _invoke("collection", "share", "42", db=db).exit_code == 1


class TestAccounts:
    def test_account_tokens(self, db: Path) -> None:
        created = _invoke("account", "create", "dev@example.com", db=db)
        assert created.exit_code == 0
        token = created.output.strip().splitlines()[-1]
        assert _invoke("account", "token", "dev@example.com", db=db).output.strip() == token
        rotated = _invoke("account", "token", "dev@example.com", "--rotate", db=db).output.strip()
        assert rotated and rotated != token

    def test_duplicate_account(self, db: Path) -> None:
        _invoke("account", "create", "dev@example.com", db=db)
        assert _invoke("account", "create", "DEV@example.com", db=db).exit_code == 1

    def test_link_code_and_telegram(self, db: Path) -> None:
        _invoke("account", "create", "dev@example.com", db=db)
        code = _invoke("account", "link-code", "dev@example.com", db=db).output.splitlines()[0]
        assert len(code) == 8
        assert _invoke("account", "link-telegram", "dev@example.com", "123", db=db).exit_code == 0
        _invoke("account", "create", "ops@example.com", db=db)
        assert _invoke("account", "link-telegram", "ops@example.com", "123", db=db).exit_code == 1
