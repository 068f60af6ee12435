"""Convenience script for running one aggregation locally.

Usage: ``python run_aggregator.py [source_type ...]``
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

# Ensure the src directory is on the Python path so the newsaggregator package can be imported
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from newsaggregator.config import AppConfig, SourceType  # noqa: E402  (import after path setup)
from newsaggregator.errors import AllSourcesFailedError  # noqa: E402
from newsaggregator.services.pipeline import run_pipeline  # noqa: E402


def main() -> None:
    """Load the source configuration and run every enabled source once."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        config = AppConfig.from_file()
    except (FileNotFoundError, ValueError) as exc:
        logging.error("Could not load source configuration: %s", exc)
        sys.exit(1)

    try:
        only = [SourceType(value) for value in sys.argv[1:]] or None
    except ValueError as exc:
        logging.error("%s (choose from: %s)", exc, ", ".join(item.value for item in SourceType))
        sys.exit(2)

    try:
        result = run_pipeline(config, only=only)
    except AllSourcesFailedError as exc:
        logging.error("%s", exc)
        sys.exit(1)

    print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
