# src/mcp_pkg_docs/config.py
from __future__ import annotations

import os
import pathlib

from pydantic import BaseModel, Field

PKG_DIR = pathlib.Path(__file__).resolve().parent
PROJECT_ROOT = PKG_DIR.parent

_TRUE = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime settings, env-overrideable."""

    cache_dir: pathlib.Path = Field(
        default=PROJECT_ROOT / "docs_raw",
        description="Root of the downloaded documentation tree",
    )
    index_path: pathlib.Path = Field(
        default=PROJECT_ROOT / "data" / "index.sqlite",
        description="SQLite index file",
    )
    latest_includes_prerelease: bool = Field(
        default=True,
        description="Let 'latest' fall back to a pre-release when no stable version exists",
    )
    search_limit: int = Field(default=50, ge=1)
    max_response_bytes: int = Field(default=256 * 1024, ge=1024)
    max_workers: int = Field(default=1, ge=1)

    @classmethod
    def from_env(cls) -> "Settings":
        values: dict = {}
        if v := os.getenv("PKG_DOCS_CACHE_DIR"):
            values["cache_dir"] = pathlib.Path(v).expanduser().resolve()
        if v := os.getenv("PKG_DOCS_INDEX_PATH"):
            values["index_path"] = pathlib.Path(v).expanduser().resolve()
        if v := os.getenv("PKG_DOCS_LATEST_INCLUDES_PRERELEASE"):
            values["latest_includes_prerelease"] = v.strip().lower() in _TRUE
        if v := os.getenv("PKG_DOCS_SEARCH_LIMIT"):
            values["search_limit"] = int(v)
        if v := os.getenv("PKG_DOCS_MAX_RESPONSE_BYTES"):
            values["max_response_bytes"] = int(v)
        if v := os.getenv("PKG_DOCS_MAX_WORKERS"):
            values["max_workers"] = int(v)
        return cls(**values)
