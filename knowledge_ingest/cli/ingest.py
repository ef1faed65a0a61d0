# =============================================================================
# knowledge_ingest/cli/ingest.py — Knowledge Base Operator CLI
# =============================================================================
#
# Standalone CLI for operating the knowledge base outside of the job queue:
# registering and ingesting documents, running batches of queue payloads,
# querying, inspecting status and reclaiming stuck documents.
#
# Supported subcommands:
#
#   register  — Record a document as pending (no processing)
#   ingest    — Register a local file and run it through the pipeline now
#   batch     — Run a JSONL file of queue payloads through the worker pool
#   query     — Semantic search within one tenant/collection
#   status    — Show one document's record and live chunk count
#   list      — List a tenant's documents
#   delete    — Delete a document and its chunks
#   sweep     — Release stale processing leases and re-run those documents
#   stats     — Chunk and document counts for a tenant/collection
#
# Provider Selection:
#   - Embedding: EMBEDDING_PROVIDER, or with "auto":
#       OpenAI (if OPENAI_API_KEY) -> FastEmbed (if installed) -> Nomic/Ollama
#   - Chunk store: CHUNK_STORE_BACKEND ("sqlite" default, or "chromadb")
#   - Documents: SQLite at DATABASE_PATH
#
# Usage examples:
#   python -m knowledge_ingest.cli ingest --tenant acme --collection onboarding \
#       --file ./handbook.pdf
#   python -m knowledge_ingest.cli query --tenant acme --collection onboarding \
#       --text "How many vacation days do new hires get?"
#   python -m knowledge_ingest.cli batch --jobs ./jobs.jsonl
#   python -m knowledge_ingest.cli sweep
# =============================================================================

"""Operator CLI for the knowledge base.

Usage::

    python -m knowledge_ingest.cli ingest --tenant acme --collection onboarding \\
        --file ./handbook.pdf

    python -m knowledge_ingest.cli query --tenant acme --collection onboarding \\
        --text "What is the notice period?"

    python -m knowledge_ingest.cli stats --tenant acme --collection onboarding
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from knowledge_ingest.config.loader import load_settings
from knowledge_ingest.config.settings import Settings
from knowledge_ingest.utils.errors import KnowledgeIngestError


def _build_embedding_provider(app_settings: Settings):  # noqa: ANN202
    """Select the embedding provider named by ``EMBEDDING_PROVIDER``.

    With ``auto`` the first available provider wins, in order:
    OpenAI (API key set) -> FastEmbed (package installed) -> Nomic/Ollama.
    Every document must be ingested and queried with the same provider, so
    pin one explicitly in production.

    Returns
    -------
    IEmbeddingProvider or None
        The selected provider, or ``None`` if nothing is available.
    """
    choice = app_settings.embedding_provider.strip().lower()

    if choice in ("auto", "openai") and app_settings.openai_api_key:
        from knowledge_ingest.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        provider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    if choice in ("auto", "fastembed"):
        from knowledge_ingest.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        fe_provider = FastEmbedEmbeddingProvider(model_name=app_settings.fastembed_model or None)
        if fe_provider.is_available():
            return fe_provider

    if choice in ("auto", "nomic"):
        from knowledge_ingest.providers.embedding.nomic_embedding_provider import (
            NomicEmbeddingProvider,
        )

        provider = NomicEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    return None


def _build_chunk_store(app_settings: Settings):  # noqa: ANN202
    """Construct the chunk store selected by ``CHUNK_STORE_BACKEND``."""
    backend = app_settings.chunk_store_backend.strip().lower()
    if backend == "chromadb":
        from knowledge_ingest.providers.chunk_store.chromadb_chunk_store import (
            ChromaDBChunkStore,
        )

        return ChromaDBChunkStore(
            persist_directory=app_settings.chromadb_persist_dir,
            collection_name=app_settings.chromadb_collection,
        )
    if backend == "sqlite":
        from knowledge_ingest.providers.chunk_store.sqlite_chunk_store import SQLiteChunkStore

        return SQLiteChunkStore(db_path=app_settings.database_path)

    raise KnowledgeIngestError(
        message=f"Unknown chunk store backend: {app_settings.chunk_store_backend!r}",
        provider_name="cli",
    )


def _build_repository(app_settings: Settings):  # noqa: ANN202
    from knowledge_ingest.providers.document_store.sqlite_document_repository import (
        SQLiteDocumentRepository,
    )

    return SQLiteDocumentRepository(db_path=app_settings.database_path)


def _build_blob_fetcher(app_settings: Settings):  # noqa: ANN202
    """HTTP(S) URLs via httpx, everything else from local disk."""
    from knowledge_ingest.providers.blob import (
        CompositeBlobFetcher,
        HttpBlobFetcher,
        LocalBlobFetcher,
    )

    return CompositeBlobFetcher(
        [
            HttpBlobFetcher(timeout=app_settings.blob_fetch_timeout_seconds),
            LocalBlobFetcher(root=app_settings.local_blob_root or None),
        ]
    )


async def _open_stores(app_settings: Settings):  # noqa: ANN202
    """Build and initialise the document repository and chunk store."""
    repository = _build_repository(app_settings)
    chunk_store = _build_chunk_store(app_settings)
    await repository.initialize()
    await chunk_store.initialize()
    return repository, chunk_store


def _build_pipeline(app_settings: Settings, repository, chunk_store, embedding_provider):  # noqa: ANN001, ANN202
    """Wire the ingestion pipeline from settings and already-open stores."""
    from knowledge_ingest.providers.scanner import PatternContentScanner
    from knowledge_ingest.services.ingestion import IngestionPipeline, TextChunker, TextExtractor

    return IngestionPipeline(
        repository=repository,
        blob_fetcher=_build_blob_fetcher(app_settings),
        scanner=PatternContentScanner(),
        extractor=TextExtractor(),
        chunker=TextChunker(
            min_tokens=app_settings.chunk_min_tokens,
            max_tokens=app_settings.chunk_max_tokens,
            overlap_tokens=app_settings.chunk_overlap_tokens,
        ),
        embedding_provider=embedding_provider,
        chunk_store=chunk_store,
        max_upload_mb=app_settings.max_upload_mb,
    )


_NO_EMBEDDER_MSG = (
    "No embedding provider available.\n"
    "Set one of:\n"
    "  OPENAI_API_KEY  — for OpenAI text-embedding-3-small\n"
    "  pip install knowledge-ingest[local] — for local FastEmbed\n"
    "  OLLAMA_BASE_URL — for Nomic nomic-embed-text (default: http://localhost:11434)\n"
)


def _print_result(result) -> None:  # noqa: ANN001
    print("\nIngestion complete:")
    print(f"  Document ID:    {result.document_id}")
    print(f"  Chunks created: {result.chunks_created}")
    print(f"  Total tokens:   {result.total_tokens}")
    print(f"  Time:           {result.ingestion_time:.2f}s")
    for warning in result.warnings:
        print(f"  Warning:        {warning}")


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_register(args: argparse.Namespace, app_settings: Settings) -> int:
    """Record a document as pending without processing it."""
    from knowledge_ingest.services.knowledge_base import KnowledgeBaseService

    repository, chunk_store = await _open_stores(app_settings)
    service = KnowledgeBaseService(repository=repository, chunk_store=chunk_store)
    document = await service.register_upload(
        tenant_id=args.tenant,
        collection_id=args.collection,
        filename=args.filename or Path(args.source).name,
        source_location=args.source,
        format=args.format,
        document_id=args.id,
    )
    print(f"Registered {document.document_id} ({document.format}, {document.status.value})")
    return 0


async def _handle_ingest(args: argparse.Namespace, app_settings: Settings) -> int:
    """Register a local file and ingest it immediately."""
    from knowledge_ingest.services.knowledge_base import KnowledgeBaseService

    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print(f"Error: {_NO_EMBEDDER_MSG}", file=sys.stderr)
        return 1

    repository, chunk_store = await _open_stores(app_settings)
    pipeline = _build_pipeline(app_settings, repository, chunk_store, embedding_provider)
    service = KnowledgeBaseService(repository=repository, chunk_store=chunk_store)

    print(f"Ingesting: {path.name}")
    print(f"  Embedding: {embedding_provider.get_provider_name()}")
    print(f"  Store:     {chunk_store.get_provider_name()}")

    document = await service.register_upload(
        tenant_id=args.tenant,
        collection_id=args.collection,
        filename=path.name,
        source_location=str(path.resolve()),
        format=args.format,
    )
    result = await pipeline.run(document.to_job())
    _print_result(result)
    return 0


async def _handle_batch(args: argparse.Namespace, app_settings: Settings) -> int:
    """Run queue payloads (one JSON object per line) through the worker pool."""
    from knowledge_ingest.models.document import IngestionJob
    from knowledge_ingest.services.ingestion import IngestionWorkerPool

    jobs: list[IngestionJob] = []
    with open(args.jobs, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                jobs.append(IngestionJob.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as exc:
                print(f"Error: {args.jobs}:{line_no}: invalid job payload: {exc}", file=sys.stderr)
                return 1

    if not jobs:
        print("No jobs to run.")
        return 0

    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print(f"Error: {_NO_EMBEDDER_MSG}", file=sys.stderr)
        return 1

    repository, chunk_store = await _open_stores(app_settings)
    pipeline = _build_pipeline(app_settings, repository, chunk_store, embedding_provider)
    pool = IngestionWorkerPool(pipeline, workers=args.workers or app_settings.ingestion_workers)

    print(f"Running {len(jobs)} job(s) on {pool.workers} worker(s)")
    outcomes = await pool.run_batch(jobs)

    failed = 0
    for job, outcome in zip(jobs, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            failed += 1
            print(f"  FAILED  {job.document_id}: {outcome}")
        else:
            print(f"  OK      {job.document_id}: {outcome.chunks_created} chunks")

    print(f"\nBatch complete: {len(jobs) - failed} succeeded, {failed} failed")
    return 1 if failed else 0


async def _handle_query(args: argparse.Namespace, app_settings: Settings) -> int:
    """Search one tenant/collection and print the best-matching chunks."""
    from knowledge_ingest.services.retrieval import RetrievalService

    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print(f"Error: {_NO_EMBEDDER_MSG}", file=sys.stderr)
        return 1

    chunk_store = _build_chunk_store(app_settings)
    await chunk_store.initialize()
    service = RetrievalService(
        embedding_provider=embedding_provider,
        chunk_store=chunk_store,
        default_top_k=app_settings.retrieval_top_k,
        min_similarity=app_settings.retrieval_min_similarity,
    )
    results = await service.retrieve(
        args.text,
        tenant_id=args.tenant,
        collection_id=args.collection,
        top_k=args.top_k,
    )

    if not results:
        print("No matching chunks.")
        return 0

    for rank, hit in enumerate(results, start=1):
        preview = " ".join(hit.chunk.content.split())[:200]
        print(
            f"{rank:>2}. [{hit.similarity_score:.3f}] "
            f"{hit.chunk.document_id} #{hit.chunk.position}"
        )
        print(f"    {preview}")
    return 0


async def _handle_status(args: argparse.Namespace, app_settings: Settings) -> int:
    from knowledge_ingest.services.knowledge_base import KnowledgeBaseService

    repository, chunk_store = await _open_stores(app_settings)
    service = KnowledgeBaseService(repository=repository, chunk_store=chunk_store)
    document = await service.get_document(args.id)
    if document is None:
        print(f"Document {args.id} not found.", file=sys.stderr)
        return 1

    print(f"Document {document.document_id}")
    print("=" * 40)
    print(f"  Tenant:      {document.tenant_id}")
    print(f"  Collection:  {document.collection_id}")
    print(f"  Filename:    {document.filename}")
    print(f"  Format:      {document.format}")
    print(f"  Status:      {document.status.value}")
    print(f"  Chunks:      {document.chunk_count}")
    if document.error_message:
        print(f"  Error:       {document.error_message}")
    return 0


async def _handle_list(args: argparse.Namespace, app_settings: Settings) -> int:
    from knowledge_ingest.services.knowledge_base import KnowledgeBaseService

    repository, chunk_store = await _open_stores(app_settings)
    service = KnowledgeBaseService(repository=repository, chunk_store=chunk_store)
    documents = await service.list_documents(args.tenant, args.collection)
    if not documents:
        print("No documents.")
        return 0

    for doc in documents:
        print(
            f"  {doc.document_id:<36}  {doc.status.value:<10}  "
            f"{doc.chunk_count:>5}  {doc.collection_id:<20}  {doc.filename}"
        )
    print(f"\n{len(documents)} document(s)")
    return 0


async def _handle_delete(args: argparse.Namespace, app_settings: Settings) -> int:
    """Delete a document and its chunks.  Asks for confirmation unless --yes."""
    from knowledge_ingest.services.knowledge_base import KnowledgeBaseService

    repository, chunk_store = await _open_stores(app_settings)
    service = KnowledgeBaseService(repository=repository, chunk_store=chunk_store)
    document = await service.get_document(args.id)
    if document is None:
        print(f"Document {args.id} not found.", file=sys.stderr)
        return 1

    if not args.yes:
        confirm = input(
            f"  Delete {document.filename} and its {document.chunk_count} chunks? [y/N] "
        ).strip().lower()
        if confirm not in ("y", "yes"):
            print("  Aborted.")
            return 0

    removed = await service.delete_document(args.id)
    print(f"Deleted {args.id} ({removed} chunks).")
    return 0


async def _handle_sweep(args: argparse.Namespace, app_settings: Settings) -> int:
    """Release stale leases; unless --release-only, re-run those documents now."""
    from knowledge_ingest.models.document import IngestionJob
    from knowledge_ingest.services.ingestion import IngestionWorkerPool, StaleDocumentSweeper

    repository, chunk_store = await _open_stores(app_settings)
    jobs: list[IngestionJob] = []
    sweeper = StaleDocumentSweeper(
        repository=repository,
        resubmit=jobs.append,
        timeout_seconds=args.timeout or app_settings.stale_processing_timeout_seconds,
    )
    requeued = await sweeper.sweep_once()
    print(f"Released {len(requeued)} stale document(s).")
    if not jobs or args.release_only:
        return 0

    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None:
        print(f"Error: {_NO_EMBEDDER_MSG}", file=sys.stderr)
        return 1

    pipeline = _build_pipeline(app_settings, repository, chunk_store, embedding_provider)
    pool = IngestionWorkerPool(pipeline, workers=app_settings.ingestion_workers)
    outcomes = await pool.run_batch(jobs)
    failed = sum(1 for o in outcomes if isinstance(o, BaseException))
    print(f"Re-ingested {len(jobs) - failed}, failed {failed}.")
    return 1 if failed else 0


async def _handle_stats(args: argparse.Namespace, app_settings: Settings) -> int:
    """Display chunk and document counts for one scope."""
    chunk_store = _build_chunk_store(app_settings)
    await chunk_store.initialize()
    if not chunk_store.is_available():
        print("Chunk store not available.")
        return 1

    stats = await chunk_store.get_stats(args.tenant, args.collection)

    print("Knowledge Base Statistics")
    print("=" * 40)
    print(f"  Store:            {chunk_store.get_provider_name()}")
    print(f"  Tenant:           {args.tenant}")
    print(f"  Collection:       {args.collection}")
    print(f"  Total documents:  {stats.total_documents}")
    print(f"  Total chunks:     {stats.total_chunks}")
    return 0


_HANDLERS = {
    "register": _handle_register,
    "ingest": _handle_ingest,
    "batch": _handle_batch,
    "query": _handle_query,
    "status": _handle_status,
    "list": _handle_list,
    "delete": _handle_delete,
    "sweep": _handle_sweep,
    "stats": _handle_stats,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _add_scope(parser: argparse.ArgumentParser, collection_required: bool = True) -> None:
    parser.add_argument("--tenant", required=True, help="Tenant id")
    parser.add_argument(
        "--collection", required=collection_required, default=None, help="Collection id"
    )


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge base CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m knowledge_ingest.cli",
        description="Operate the RAG knowledge base: ingest, query and maintain documents.",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="YAML defaults file (default: config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Knowledge base commands")

    # -- register --
    register_parser = subparsers.add_parser("register", help="Record a document as pending")
    _add_scope(register_parser)
    register_parser.add_argument("--source", required=True, help="URL or path of the file")
    register_parser.add_argument("--filename", help="Filename (default: last part of --source)")
    register_parser.add_argument("--format", help="pdf, docx, txt or md (default: extension)")
    register_parser.add_argument("--id", help="Explicit document id")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Register and ingest a local file")
    _add_scope(ingest_parser)
    ingest_parser.add_argument("--file", required=True, help="Path to the document")
    ingest_parser.add_argument("--format", help="pdf, docx, txt or md (default: extension)")

    # -- batch --
    batch_parser = subparsers.add_parser("batch", help="Run a JSONL file of job payloads")
    batch_parser.add_argument("--jobs", required=True, help="Path to the JSONL file")
    batch_parser.add_argument("--workers", type=int, help="Override INGESTION_WORKERS")

    # -- query --
    query_parser = subparsers.add_parser("query", help="Search a tenant/collection")
    _add_scope(query_parser)
    query_parser.add_argument("--text", required=True, help="Query text")
    query_parser.add_argument("--top-k", type=int, dest="top_k", help="Number of results")

    # -- status --
    status_parser = subparsers.add_parser("status", help="Show one document")
    status_parser.add_argument("--id", required=True, help="Document id")

    # -- list --
    list_parser = subparsers.add_parser("list", help="List a tenant's documents")
    _add_scope(list_parser, collection_required=False)

    # -- delete --
    delete_parser = subparsers.add_parser("delete", help="Delete a document and its chunks")
    delete_parser.add_argument("--id", required=True, help="Document id")
    delete_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")

    # -- sweep --
    sweep_parser = subparsers.add_parser("sweep", help="Reclaim documents stuck in processing")
    sweep_parser.add_argument(
        "--timeout", type=float, help="Override STALE_PROCESSING_TIMEOUT_SECONDS"
    )
    sweep_parser.add_argument(
        "--release-only",
        action="store_true",
        dest="release_only",
        help="Only move stale documents back to pending",
    )

    # -- stats --
    stats_parser = subparsers.add_parser("stats", help="Show chunk and document counts")
    _add_scope(stats_parser)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parses the subcommand, resolves settings (YAML defaults under env vars),
    configures logging and dispatches to the handler.  Errors from the
    knowledge base surface as a one-line message and exit status 1.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    from knowledge_ingest.utils.logging import configure_logging

    try:
        app_settings = load_settings(args.config)
    except KnowledgeIngestError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(app_settings.log_level, json_output=app_settings.app_env == "production")

    handler = _HANDLERS[args.command]
    try:
        exit_code = asyncio.run(handler(args, app_settings))
    except KnowledgeIngestError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
