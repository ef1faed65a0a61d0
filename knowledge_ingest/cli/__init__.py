# =============================================================================
# knowledge_ingest/cli/__init__.py — CLI Module Overview
# =============================================================================
#
# Command-line entry points for operators and developers who need to work
# with the knowledge base outside of the job queue:
#
#   INGEST (ingest.py)
#      Register, ingest and batch-process documents; query a tenant's
#      collection; inspect, delete and reclaim stuck documents; show stats.
#
# Architecture Notes:
#   - argparse only; no extra CLI framework.
#   - Provider imports (openai, chromadb, pymupdf, ...) are deferred inside
#     the factory functions so `--help` stays fast.
#   - Each command builds its own dependencies from Settings; the CLI is a
#     one-shot process, not a long-lived server.
# =============================================================================

"""CLI tools for the knowledge base.

- ``python -m knowledge_ingest.cli`` — operator commands (ingest, query,
  status, sweep, ...).
"""
