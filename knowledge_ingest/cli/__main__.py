"""Allow ``python -m knowledge_ingest.cli`` execution."""

from knowledge_ingest.cli.ingest import main

main()
