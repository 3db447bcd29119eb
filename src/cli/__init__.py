# =============================================================================
# src/cli/__init__.py - CLI Module Overview
# =============================================================================
#
# Command-line access to the knowledge-base services for operators who work
# outside the HTTP API.  kb.py holds the argparse subcommands; __main__.py
# lets the package run as `python -m src.cli`.
#
# Architecture Notes:
#   - argparse, not Click/Typer, to keep dependencies to the core stack.
#   - Components are built by src.main.build_components so the CLI uses the
#     same embedding model, vector store and catalog file as the server.
# =============================================================================

"""CLI tools for tutor knowledge bases.

- ``python -m src.cli ingest`` - ingest a PDF, DOCX or TXT file
- ``python -m src.cli list`` / ``show`` / ``stats`` - inspect the catalog
- ``python -m src.cli delete`` - delete a knowledge base and its vectors
- ``python -m src.cli retrieve`` - run a retrieval query
"""
