"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values are resolved in priority order:
#
#   1. Environment variables  (e.g. CHUNK_MAX_TOKENS=800)
#   2. .env file in the working directory
#   3. config/config.yaml     (only when loaded through load_settings())
#   4. The defaults declared on the fields below
#
# Field names map to upper-cased env vars automatically.  Empty strings
# mean "not configured": provider selection in the CLI skips embedding
# backends whose credentials are blank.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """knowledge-ingest settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Chunking ===
    chunk_min_tokens: int = 300
    chunk_max_tokens: int = 600
    chunk_overlap_tokens: int = 60

    # === Retrieval ===
    retrieval_top_k: int = 5
    retrieval_min_similarity: float = 0.0

    # === Workers ===
    ingestion_workers: int = 2
    max_upload_mb: int = 50
    # A document whose lease is older than this is considered abandoned by a
    # crashed worker and is handed back to the queue by the sweeper.
    stale_processing_timeout_seconds: int = 900
    stale_sweep_interval_seconds: int = 60

    # === Storage ===
    database_path: str = "data/knowledge.db"
    chunk_store_backend: str = "sqlite"  # "sqlite" | "chromadb"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "knowledge_chunks"

    # === Embeddings ===
    embedding_provider: str = "auto"  # "auto" | "openai" | "nomic" | "fastembed"
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_embedding_model: str = ""
    ollama_base_url: str = "http://localhost:11434"
    fastembed_model: str = ""

    # === Blob fetch ===
    blob_fetch_timeout_seconds: float = 30.0
    local_blob_root: str = ""  # Confine local paths to this directory when set

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_chunking_bounds(self) -> "Settings":
        """Reject chunking tunables the chunker cannot honour."""
        if self.chunk_min_tokens <= 0:
            raise ValueError("chunk_min_tokens must be positive")
        if self.chunk_max_tokens < self.chunk_min_tokens:
            raise ValueError("chunk_max_tokens must be >= chunk_min_tokens")
        if not 0 <= self.chunk_overlap_tokens < self.chunk_max_tokens:
            raise ValueError("chunk_overlap_tokens must be in [0, chunk_max_tokens)")
        if self.retrieval_top_k < 1:
            raise ValueError("retrieval_top_k must be >= 1")
        if self.ingestion_workers < 1:
            raise ValueError("ingestion_workers must be >= 1")
        return self
