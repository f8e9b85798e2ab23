# backend/diagnostico_pme/main.py
from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, List, Optional

import pandas as pd
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import DOTENV_PATH, get_settings
from .benchmarks import get_benchmark_table, lookup_benchmarks
from .diagnostics import compute_diagnostic
from .models import BusinessInput

LOG = logging.getLogger("api")
if not LOG.handlers:
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("[diagnostico-pme] %(levelname)s: %(message)s"))
    LOG.addHandler(h)
LOG.setLevel(logging.INFO)
LOG.info(f"[env] loaded .env from {DOTENV_PATH if DOTENV_PATH.exists() else 'NOT FOUND'}")

# -----------------------------------------------------------------------------
# CORS (adjust via env)
# -----------------------------------------------------------------------------
app = FastAPI(title="Diagnóstico PME")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# -----------------------------------------------------------------------------
# Request helpers
# -----------------------------------------------------------------------------
def require_api_key(req: Request) -> None:
    """401 unless x-api-key matches API_KEY; an unset server secret rejects everything."""
    expected = get_settings().api_key
    key = req.headers.get("x-api-key")
    if not key or not expected or not hmac.compare_digest(key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _json_object(req: Request) -> Dict[str, Any]:
    try:
        body = await req.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return body

# -----------------------------------------------------------------------------
# API endpoints
# -----------------------------------------------------------------------------
@app.get("/")
def health():
    return {"status": "ok"}


@app.get("/api/benchmarks")
def benchmarks(
    setor: Optional[str] = None,
    pais: Optional[str] = None,
    tipo: Optional[str] = None,
    table: pd.DataFrame = Depends(get_benchmark_table),
):
    return lookup_benchmarks(table, setor=setor, pais=pais, tipo=tipo)


@app.post("/api/diagnostico", dependencies=[Depends(require_api_key)])
async def diagnostico(req: Request):
    """
    Financial health diagnostic. Individual bad fields fall back to defaults;
    only an unparseable body is rejected.
    """
    body = await _json_object(req)
    trace: List[dict] = []
    try:
        payload = BusinessInput.model_validate(body)
        result = compute_diagnostic(payload, trace=trace)
    except Exception as e:
        LOG.exception("erro no diagnóstico")
        trace.append({"msg": "erro_interno", "detalhe": str(e)})
        return JSONResponse(status_code=500, content={"error": "internal_error", "logs": trace})

    LOG.info(f"ok setor={result.setor} receita={result.inputs_normalizados.receita_mensal} "
             f"score={result.score}")
    exclude = None if result.logs is not None else {"logs"}
    return result.model_dump(mode="json", exclude=exclude)
