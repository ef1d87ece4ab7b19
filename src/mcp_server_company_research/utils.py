"""Utilities for saving research results."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import settings

logger = logging.getLogger(__name__)


def slugify(value: str, max_length: int = 40) -> str:
    """Filesystem-safe name fragment."""
    return re.sub(r"[^\w\-]", "_", value.strip())[:max_length] or "result"


def save_research_result(payload: dict[str, Any], name: str, results_dir: Path | None = None) -> Path:
    """Save a research payload as JSON in the results directory.

    Args:
        payload: Serializable research payload.
        name: Subject or session name used in the filename.
        results_dir: Target directory (defaults to the configured results directory).

    Returns:
        Path to the saved file.
    """
    results_dir = results_dir or settings.get_results_dir()
    results_dir.mkdir(parents=True, exist_ok=True)
    # Microseconds avoid collisions when several results are saved per second.
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")

    base = f"{timestamp}_{slugify(name)}"
    file_path = results_dir / f"{base}.json"
    if file_path.exists():
        for i in range(1, 10_000):
            candidate = results_dir / f"{base}_{i}.json"
            if not candidate.exists():
                file_path = candidate
                break
        else:
            raise RuntimeError("Failed to allocate a unique result filename after 10,000 attempts")

    file_path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    logger.info(f"Saved result to {file_path}")
    return file_path
