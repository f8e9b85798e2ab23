# backend/diagnostico_pme/benchmarks.py
from __future__ import annotations
import math, logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import get_settings
from .diagnostics import round_or_none
from .models import SECTORS

# =============================================================================
# Logging
# =============================================================================
LOG = logging.getLogger("benchmarks")
if not LOG.handlers:
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("[benchmarks] %(levelname)s: %(message)s"))
    LOG.addHandler(h)
LOG.setLevel(logging.DEBUG if get_settings().debug else logging.INFO)

COLUMNS = ["setor", "pais", "tipo", "period", "range_min", "range_max",
           "median", "available", "source"]

NO_DATA_MESSAGE = ("Sem dados curados neste endpoint. Use Web Browsing no GPT "
                   "para buscar pares comparáveis e cite as fontes.")

# Curated ranges go in benchmarks.csv; rows look like
#   varejo,BR,margem_bruta,2019-2024,35,52,43,true,"Associação X (2024): https://..."
_BENCHMARK_FALLBACK = pd.DataFrame(columns=COLUMNS)


def _here() -> Path:
    return Path(__file__).resolve().parent


# =============================================================================
# CSV loading helpers
# =============================================================================
def _read_csv(path: Path) -> Optional[pd.DataFrame]:
    try:
        df = pd.read_csv(path)
        LOG.debug(f"Loaded CSV {path} shape={df.shape} cols={list(df.columns)}")
        return df
    except Exception as e:
        LOG.warning(f"Failed to read CSV {path}: {e}")
        return None


def load_benchmark_table(csv_path: Optional[str] = None) -> pd.DataFrame:
    """Load curated benchmark rows; empty fallback when no usable CSV exists."""
    candidates = [Path(csv_path)] if csv_path else [
        _here() / "benchmarks.csv", Path.cwd() / "benchmarks.csv"]
    for p in candidates:
        if not p.exists():
            continue
        df = _read_csv(p)
        if df is None:
            continue
        df.columns = [str(c).strip() for c in df.columns]
        missing = set(COLUMNS) - set(df.columns)
        if missing:
            LOG.warning(f"{p} missing {missing}; using fallback")
            break
        LOG.info(f"Using benchmark CSV at {p} rows={len(df)}")
        return df[COLUMNS]
    LOG.warning("No usable benchmarks.csv; using empty fallback")
    return _BENCHMARK_FALLBACK.copy()


@lru_cache(maxsize=1)
def get_benchmark_table() -> pd.DataFrame:
    """FastAPI dependency: the process-wide read-only reference table."""
    return load_benchmark_table(get_settings().benchmarks_csv)


# =============================================================================
# Lookup
# =============================================================================
def _finite(series: pd.Series) -> pd.Series:
    s = pd.to_numeric(series, errors="coerce")
    return s[s.map(lambda n: not pd.isna(n) and math.isfinite(n))]


def _is_true(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() == "true"
    return v is True or (not pd.isna(v) and bool(v) and v == 1)


def _text(v: Any) -> str:
    return "" if v is None or (not isinstance(v, str) and pd.isna(v)) else str(v)


def lookup_benchmarks(table: pd.DataFrame, setor: Optional[str] = None,
                      pais: Optional[str] = None,
                      tipo: Optional[str] = None) -> Dict[str, Any]:
    """
    Aggregate the curated ranges for a sector, optionally filtered by
    country and metric type. Never mutates ``table``.
    """
    setor = (setor or "").strip().lower()
    pais = (pais or "").strip().upper()
    tipo = (tipo or "").strip().lower()

    if not setor:
        return {"available": False, "message": "informe ?setor="}
    if setor not in SECTORS:
        return {"available": False, "message": "setor inválido"}

    filters = {"pais": pais or None, "tipo": tipo or None}

    rows = table.loc[table["setor"].map(_text).str.strip().str.lower() == setor]
    if pais:
        rows = rows.loc[rows["pais"].map(_text).str.upper() == pais]
    if tipo:
        rows = rows.loc[rows["tipo"].map(_text).str.lower() == tipo]

    if rows.empty:
        LOG.info(f"No benchmark rows for setor={setor!r} filters={filters}")
        return {
            "available": False,
            "sector": setor,
            "filters": filters,
            "message": NO_DATA_MESSAGE,
        }

    mins = _finite(rows["range_min"])
    maxs = _finite(rows["range_max"])
    meds = _finite(rows["median"])
    periods = [p for p in rows["period"].map(_text) if p]
    sources: List[str] = [s for s in rows["source"].map(_text) if s]

    return {
        "sector": setor,
        "filters": filters,
        "available": any(_is_true(v) for v in rows["available"]),
        "period": ", ".join(periods) or None,
        "range_min": float(mins.min()) if len(mins) else None,
        "range_max": float(maxs.max()) if len(maxs) else None,
        "median": round_or_none(float(meds.mean()), 2) if len(meds) else None,
        "sources": sources,
    }
