"""
Dotenv loading for local runs.

`.env` supplies defaults and `.env.local` overrides them. Nothing is loaded
when ENVIRONMENT is prod (the default), so deployed processes only see the
real environment. Must not import `perp_positions.config.config`.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# (file name, override already-set variables)
DOTENV_FILES = ((".env", False), (".env.local", True))


def is_prod_env() -> bool:
    return (os.getenv("ENVIRONMENT") or "prod").strip().lower() == "prod"


def load_dotenv_files(*, root: Path | None = None) -> list[Path]:
    """Load dotenv files from `root` (default: cwd); returns the files that were read."""
    if is_prod_env():
        return []

    root = root or Path.cwd()
    loaded = []
    for name, override in DOTENV_FILES:
        path = root / name
        if path.exists():
            load_dotenv(dotenv_path=path, override=override)
            loaded.append(path)
    return loaded
