#!/usr/bin/env python
"""Validate setup - check dependencies, configuration and the external services."""
import asyncio
import sys
from pathlib import Path

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_success(msg):
    print(f"{GREEN}✓{RESET} {msg}")


def print_error(msg):
    print(f"{RED}✗{RESET} {msg}")


def print_info(msg):
    print(f"{BLUE}ℹ{RESET} {msg}")


def print_warning(msg):
    print(f"{YELLOW}⚠{RESET} {msg}")


def print_section(title):
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}{title:^60}{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")


async def main():
    print_section("docqa - Setup Validation")

    errors = []
    warnings = []

    # 1. Python version check
    print_section("1. Python Environment")
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print_info(f"Python version: {python_version}")
    if sys.version_info >= (3, 10):
        print_success("Python version >= 3.10")
    else:
        print_error("Python version < 3.10 (required)")
        errors.append("Python version too old")

    # 2. Import core dependencies
    print_section("2. Core Dependencies")

    dependencies = [
        ("httpx", "HTTP client"),
        ("faiss", "FAISS vector search"),
        ("numpy", "Vector math"),
        ("pydantic", "Artifact validation"),
        ("bs4", "HTML parsing"),
        ("structlog", "Structured logging"),
    ]

    for module_name, description in dependencies:
        try:
            __import__(module_name)
            print_success(f"{description:30} ({module_name})")
        except ImportError as e:
            print_error(f"{description:30} ({module_name}) - {e}")
            errors.append(f"Missing: {module_name}")

    if errors:
        return errors, warnings

    # 3. Configuration
    print_section("3. Configuration")

    sys.path.insert(0, str(Path(__file__).parent.parent))
    from docqa import config
    from docqa.connectors.docs_site import DocsSiteConnector
    from docqa.embedding_client import EmbeddingClient
    from docqa.errors import ConnectorError, EmbeddingServiceError
    from docqa.rag.store import IndexStore

    print_success("Config loaded successfully")
    print_info(f"  Embedding model: {config.EMBEDDING_MODEL}")
    print_info(f"  Embedding URL: {config.EMBEDDING_BASE_URL}")
    print_info(f"  Docs site: {config.DOCS_SITE_URL}")
    print_info(f"  Data directory: {config.DATA_DIR}")

    if config.DATA_DIR.exists():
        print_success(f"Data directory exists: {config.DATA_DIR}")
    else:
        print_warning(f"Data directory missing (created on first reindex): {config.DATA_DIR}")
        warnings.append("Data directory missing")

    if config.DRIVE_FOLDER_ID:
        print_success(f"Drive folder configured: {config.DRIVE_FOLDER_ID}")
    else:
        print_error("DRIVE_FOLDER_ID is not set")
        errors.append("Drive folder not configured")

    if not config.DRIVE_ACCESS_TOKEN:
        print_warning("DRIVE_ACCESS_TOKEN is not set; only public files will be readable")
        warnings.append("No Drive access token")

    if not config.EMBEDDING_API_KEY:
        print_warning("EMBEDDING_API_KEY is not set")
        warnings.append("No embedding API key")

    # 4. Index state
    print_section("4. Index")

    store = IndexStore()
    store.load()
    status = store.status()
    if status["is_indexed"]:
        print_success(f"Index loaded: {status['total_fragments']} fragments")
        for source, counts in status["sources"].items():
            print_info(
                f"  {source}: {counts['fragments']} fragments, {counts['embedded']} embedded"
            )
    else:
        print_warning("Index is empty. Run: python scripts/reindex.py")
        warnings.append("Index empty")

    # 5. Embedding service
    print_section("5. Embedding Service")

    try:
        vector = await EmbeddingClient().embed_query("test")
        print_success(f"Embedding API working (dimension: {len(vector)})")
    except EmbeddingServiceError as e:
        print_error(f"Embedding service check failed: {e}")
        errors.append(f"Embedding error: {e}")

    # 6. Documentation site
    print_section("6. Documentation Site")

    try:
        structure = await DocsSiteConnector().get_index_structure()
        print_success(f"Documentation index reachable ({len(structure)} top-level sections)")
    except ConnectorError as e:
        print_error(f"Documentation site check failed: {e}")
        errors.append(f"Docs site error: {e}")

    # 7. Summary
    print_section("Summary")

    if not errors:
        print_success("All checks passed! ✨")
        print_info("  Next step: python scripts/reindex.py")
    else:
        print_error(f"Found {len(errors)} error(s):")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")

    if warnings:
        print_warning(f"\nFound {len(warnings)} warning(s):")
        for i, warning in enumerate(warnings, 1):
            print(f"  {i}. {warning}")

    print()
    return errors, warnings


if __name__ == "__main__":
    errors, warnings = asyncio.run(main())
    sys.exit(1 if errors else 0)
