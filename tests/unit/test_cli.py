"""Unit tests for the operator CLI — knowledge_ingest.cli.ingest."""

from __future__ import annotations

import json
import re
from pathlib import Path
from unittest.mock import patch

import pytest

from knowledge_ingest.cli.ingest import _build_chunk_store, _build_embedding_provider, main
from knowledge_ingest.config.settings import Settings
from knowledge_ingest.utils.errors import KnowledgeIngestError
from tests.conftest import HashingEmbeddingProvider

# ======================================================================
# Shared helpers
# ======================================================================


def _settings(**overrides) -> Settings:
    """Build a Settings instance that ignores any local .env file."""
    return Settings(_env_file=None, **overrides)


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


def _ingested_id(output: str) -> str:
    match = re.search(r"Document ID:\s+(\S+)", output)
    assert match, output
    return match.group(1)


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch, handbook_text: str) -> Path:
    """Run the CLI in *tmp_path* against SQLite stores and a hashing embedder."""
    monkeypatch.chdir(tmp_path)
    for var in ("OPENAI_API_KEY", "EMBEDDING_PROVIDER", "APP_ENV", "LOCAL_BLOB_ROOT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "kb.db"))
    monkeypatch.setenv("CHUNK_STORE_BACKEND", "sqlite")
    (tmp_path / "handbook.txt").write_text(handbook_text, encoding="utf-8")

    with (
        patch(
            "knowledge_ingest.cli.ingest._build_embedding_provider",
            return_value=HashingEmbeddingProvider(),
        ),
        patch("knowledge_ingest.utils.logging.configure_logging"),
    ):
        yield tmp_path


# ======================================================================
# Argument handling
# ======================================================================


class TestMain:
    def test_no_command_prints_help(self, capsys) -> None:
        assert _run([]) == 1
        assert "usage:" in capsys.readouterr().out

    def test_invalid_config_exits_1(self, cli_env: Path, capsys) -> None:
        (cli_env / "bad.yaml").write_text("chunking:\n  chunk_size_words: 10\n", encoding="utf-8")

        assert _run(["--config", "bad.yaml", "stats", "--tenant", "acme", "--collection", "c"]) == 1
        assert "Unknown setting" in capsys.readouterr().err

    def test_knowledge_errors_become_exit_1(self, cli_env: Path, capsys) -> None:
        code = _run(
            ["register", "--tenant", "acme", "--collection", "onboarding", "--source", "/u/deck.pptx"]
        )

        assert code == 1
        assert "Unsupported document format" in capsys.readouterr().err


# ======================================================================
# Subcommands
# ======================================================================


class TestIngestAndInspect:
    def test_ingest_then_list_status_query_stats(self, cli_env: Path, capsys) -> None:
        scope = ["--tenant", "acme", "--collection", "onboarding"]

        assert _run(["ingest", *scope, "--file", "handbook.txt"]) == 0
        out = capsys.readouterr().out
        assert "Ingestion complete" in out
        assert "Embedding: hashing-embedding" in out
        document_id = _ingested_id(out)

        assert _run(["list", "--tenant", "acme"]) == 0
        out = capsys.readouterr().out
        assert document_id in out
        assert "ready" in out
        assert "1 document(s)" in out

        assert _run(["status", "--id", document_id]) == 0
        out = capsys.readouterr().out
        assert "Status:      ready" in out
        assert "Filename:    handbook.txt" in out

        query = "Laptops must use full-disk encryption and lock after five minutes."
        assert _run(["query", *scope, "--text", query, "--top-k", "2"]) == 0
        out = capsys.readouterr().out
        assert " 1. [" in out
        assert " 3. [" not in out

        assert _run(["stats", *scope]) == 0
        out = capsys.readouterr().out
        assert "Total documents:  1" in out

    def test_ingest_missing_file(self, cli_env: Path, capsys) -> None:
        code = _run(["ingest", "--tenant", "acme", "--collection", "c", "--file", "nope.txt"])

        assert code == 1
        assert "file not found" in capsys.readouterr().err

    def test_ingest_without_embedder(self, cli_env: Path, capsys) -> None:
        with patch("knowledge_ingest.cli.ingest._build_embedding_provider", return_value=None):
            code = _run(
                ["ingest", "--tenant", "acme", "--collection", "c", "--file", "handbook.txt"]
            )

        assert code == 1
        assert "No embedding provider available" in capsys.readouterr().err

    def test_query_empty_scope(self, cli_env: Path, capsys) -> None:
        code = _run(["query", "--tenant", "acme", "--collection", "c", "--text", "vacation?"])

        assert code == 0
        assert "No matching chunks." in capsys.readouterr().out


class TestRegisterAndBatch:
    def test_register_leaves_document_pending(self, cli_env: Path, capsys) -> None:
        code = _run(
            [
                "register", "--tenant", "acme", "--collection", "onboarding",
                "--source", "https://files.example.com/u/guide.md", "--id", "doc-7",
            ]
        )

        assert code == 0
        assert "Registered doc-7 (md, pending)" in capsys.readouterr().out

        assert _run(["status", "--id", "doc-7"]) == 0
        out = capsys.readouterr().out
        assert "Status:      pending" in out
        assert "Filename:    guide.md" in out

    def test_batch_runs_registered_documents(self, cli_env: Path, capsys) -> None:
        source = str(cli_env / "handbook.txt")
        assert _run(
            [
                "register", "--tenant", "acme", "--collection", "onboarding",
                "--source", source, "--id", "doc-b",
            ]
        ) == 0
        payload = {
            "documentId": "doc-b",
            "sourceLocation": source,
            "format": "txt",
            "tenantId": "acme",
            "collectionId": "onboarding",
        }
        (cli_env / "jobs.jsonl").write_text(json.dumps(payload) + "\n\n", encoding="utf-8")
        capsys.readouterr()

        assert _run(["batch", "--jobs", "jobs.jsonl", "--workers", "1"]) == 0
        out = capsys.readouterr().out
        assert "OK      doc-b" in out
        assert "Batch complete: 1 succeeded, 0 failed" in out

    def test_batch_reports_failed_jobs(self, cli_env: Path, capsys) -> None:
        payload = {
            "documentId": "ghost",
            "sourceLocation": str(cli_env / "handbook.txt"),
            "format": "txt",
            "tenantId": "acme",
            "collectionId": "onboarding",
        }
        (cli_env / "jobs.jsonl").write_text(json.dumps(payload) + "\n", encoding="utf-8")

        assert _run(["batch", "--jobs", "jobs.jsonl"]) == 1
        out = capsys.readouterr().out
        assert "FAILED  ghost" in out
        assert "0 succeeded, 1 failed" in out

    def test_batch_rejects_invalid_payload(self, cli_env: Path, capsys) -> None:
        (cli_env / "jobs.jsonl").write_text('{"documentId": "x"}\n', encoding="utf-8")

        assert _run(["batch", "--jobs", "jobs.jsonl"]) == 1
        assert "jobs.jsonl:1: invalid job payload" in capsys.readouterr().err

    def test_empty_batch(self, cli_env: Path, capsys) -> None:
        (cli_env / "jobs.jsonl").write_text("\n", encoding="utf-8")

        assert _run(["batch", "--jobs", "jobs.jsonl"]) == 0
        assert "No jobs to run." in capsys.readouterr().out


class TestDeleteAndSweep:
    def test_delete_with_confirmation_flag(self, cli_env: Path, capsys) -> None:
        scope = ["--tenant", "acme", "--collection", "onboarding"]
        assert _run(["ingest", *scope, "--file", "handbook.txt"]) == 0
        document_id = _ingested_id(capsys.readouterr().out)

        assert _run(["delete", "--id", document_id, "--yes"]) == 0
        assert f"Deleted {document_id}" in capsys.readouterr().out

        assert _run(["status", "--id", document_id]) == 1
        assert "not found" in capsys.readouterr().err

    def test_delete_aborted_at_prompt(self, cli_env: Path, capsys) -> None:
        assert _run(
            ["register", "--tenant", "acme", "--collection", "c", "--source", "/u/a.txt", "--id", "a"]
        ) == 0
        capsys.readouterr()

        with patch("builtins.input", return_value="n"):
            assert _run(["delete", "--id", "a"]) == 0

        assert "Aborted." in capsys.readouterr().out
        assert _run(["status", "--id", "a"]) == 0

    def test_delete_missing_document(self, cli_env: Path, capsys) -> None:
        assert _run(["delete", "--id", "ghost", "--yes"]) == 1

    def test_sweep_with_nothing_stale(self, cli_env: Path, capsys) -> None:
        assert _run(["sweep", "--release-only"]) == 0
        assert "Released 0 stale document(s)." in capsys.readouterr().out


# ======================================================================
# Provider factories
# ======================================================================


class TestBuildEmbeddingProvider:
    def test_openai_selected_when_key_present(self) -> None:
        provider = _build_embedding_provider(
            _settings(embedding_provider="auto", openai_api_key="sk-test")
        )
        assert provider.get_provider_name().startswith("openai")

    def test_none_when_nothing_available(self) -> None:
        with patch(
            "knowledge_ingest.providers.embedding.nomic_embedding_provider."
            "NomicEmbeddingProvider.is_available",
            return_value=False,
        ):
            assert _build_embedding_provider(_settings(embedding_provider="nomic")) is None

    def test_pinned_provider_skips_others(self) -> None:
        with patch(
            "knowledge_ingest.providers.embedding.nomic_embedding_provider."
            "NomicEmbeddingProvider.is_available",
            return_value=True,
        ):
            provider = _build_embedding_provider(
                _settings(embedding_provider="nomic", openai_api_key="sk-test")
            )
        assert provider.get_provider_name().startswith("nomic")


class TestBuildChunkStore:
    def test_sqlite_backend(self, tmp_path: Path) -> None:
        store = _build_chunk_store(
            _settings(chunk_store_backend="SQLite", database_path=str(tmp_path / "kb.db"))
        )
        assert store.get_provider_name() == "sqlite_chunks"

    def test_unknown_backend(self) -> None:
        with pytest.raises(KnowledgeIngestError, match="Unknown chunk store backend"):
            _build_chunk_store(_settings(chunk_store_backend="pinecone"))
