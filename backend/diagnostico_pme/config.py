# backend/diagnostico_pme/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Resolve backend/.env regardless of where uvicorn is launched
DOTENV_PATH = (Path(__file__).resolve().parents[1] / ".env")
load_dotenv(dotenv_path=DOTENV_PATH, override=False)


def _truthy(v: Optional[str]) -> bool:
    return str(v or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str]
    cors_allow_origins: List[str]
    benchmarks_csv: Optional[str]
    debug: bool


def get_settings() -> Settings:
    """Read settings from the environment (call per use so tests can monkeypatch)."""
    origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
    return Settings(
        api_key=os.getenv("API_KEY") or None,
        cors_allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        benchmarks_csv=os.getenv("BENCHMARKS_CSV") or None,
        debug=_truthy(os.getenv("DIAG_DEBUG")),
    )
