from __future__ import annotations
import math
from enum import Enum
from typing import Any, Optional, List, Union

from pydantic import BaseModel, ConfigDict, field_validator

SECTORS = ("varejo", "servicos", "recorrencia")
DEFAULT_SECTOR = "varejo"
PCT_CEILING = 0.999999


# =============================================================================
# Lenient parsers
# =============================================================================
def to_number(v: Any) -> Optional[float]:
    """Finite float from a number or numeric string; None for anything else."""
    if v is None or isinstance(v, bool):
        return None
    if not isinstance(v, (int, float, str)):
        return None
    try:
        n = float(v.strip() if isinstance(v, str) else v)
    except (ValueError, OverflowError):
        return None
    return n if math.isfinite(n) else None


def to_pct01(v: Any) -> Optional[float]:
    """
    PercentLike parser shared by every percentage field.

    Accepts a fraction (0.3) or a percentage (30, "30%") and returns a
    fraction clamped to [0, 0.999999]. Values in (1, 100] are divided by 100;
    None when the value is absent or not numeric.
    """
    if isinstance(v, str):
        v = v.strip().rstrip("%").strip()
    n = to_number(v)
    if n is None:
        return None
    if 1 < n <= 100:
        n = n / 100
    return min(max(n, 0.0), PCT_CEILING)


def _non_negative(v: Any) -> float:
    return max(0.0, to_number(v) or 0.0)


# =============================================================================
# Request
# =============================================================================
class BusinessInput(BaseModel):
    setor: str = DEFAULT_SECTOR
    receita_mensal: float = 0.0
    custo_direto_pct: Optional[float] = None
    # number (absolute) or percentage-like value; resolved against revenue later
    despesas_fixas: Optional[Union[float, str]] = None
    caixa: float = 0.0
    clientes_ativos: int = 0
    ticket_medio: float = 0.0
    churn_pct: Optional[float] = None
    cac: float = 0.0
    debug: bool = False

    @field_validator("setor", mode="before")
    @classmethod
    def normalize_sector(cls, v: Any) -> str:
        s = str(v if v is not None else "").strip().lower()
        return s if s in SECTORS else DEFAULT_SECTOR

    @field_validator("receita_mensal", "caixa", "ticket_medio", "cac", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> float:
        return _non_negative(v)

    @field_validator("clientes_ativos", mode="before")
    @classmethod
    def coerce_count(cls, v: Any) -> int:
        return int(math.floor(_non_negative(v)))

    @field_validator("custo_direto_pct", "churn_pct", mode="before")
    @classmethod
    def coerce_pct(cls, v: Any) -> Optional[float]:
        return to_pct01(v)

    @field_validator("despesas_fixas", mode="before")
    @classmethod
    def coerce_fixed(cls, v: Any) -> Optional[Union[float, str]]:
        n = to_number(v)
        if n is not None:
            return n
        if isinstance(v, str) and to_pct01(v) is not None:
            return v.strip()
        return None

    @field_validator("debug", mode="before")
    @classmethod
    def coerce_debug(cls, v: Any) -> bool:
        return bool(v)


# =============================================================================
# Response
# =============================================================================
class Semaforo(str, Enum):
    VERDE = "verde"        # on track
    AMARELO = "amarelo"    # watch
    VERMELHO = "vermelho"  # at risk


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class InputsNormalizados(_Frozen):
    receita_mensal: float
    custo_direto_pct: float
    despesas_fixas: float
    caixa: float
    clientes_ativos: Optional[int] = None
    ticket_medio: Optional[float] = None
    churn_pct: Optional[float] = None
    cac: Optional[float] = None


class Semaforos(_Frozen):
    receita: Semaforo
    custos: Semaforo
    caixa: Semaforo
    clientes: Semaforo


class Metricas(_Frozen):
    ponto_equilibrio: Optional[float] = None
    margem_contrib_pct: float
    ebitda: float
    runway_meses: Union[float, str]
    ltv: Optional[float] = None
    ltv_cac: Optional[float] = None
    payback_meses: Optional[float] = None


class Flags(_Frozen):
    caixa_apertado: bool
    margem_baixa: bool
    ltv_cac_fraco: bool
    churn_alto: bool


class RecorrenciaSteps(_Frozen):
    ticket_efetivo: float
    margem_cliente: float
    churn_safe: float


class CalcSteps(_Frozen):
    mc_pct: float
    mc: float
    ebitda: float
    burn: float
    runway: Union[float, str]
    recorrencia: Optional[RecorrenciaSteps] = None


class DiagnosticResult(_Frozen):
    setor: str
    inputs_normalizados: InputsNormalizados
    score: int
    semaforos: Semaforos
    metricas: Metricas
    etapa2_flags: Flags
    acoes_iniciais: List[str]
    calc_steps: CalcSteps
    logs: Optional[List[dict]] = None
