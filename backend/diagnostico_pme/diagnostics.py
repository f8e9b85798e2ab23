# backend/diagnostico_pme/diagnostics.py
from __future__ import annotations
import math, sys, logging
from typing import Any, List, Optional

from .config import get_settings
from .models import (
    BusinessInput, DiagnosticResult, InputsNormalizados, Semaforos, Semaforo,
    Metricas, Flags, CalcSteps, RecorrenciaSteps, to_number, to_pct01,
)

# =============================================================================
# Logging
# =============================================================================
LOG = logging.getLogger("diagnostico")
if not LOG.handlers:
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("[diagnostico] %(levelname)s: %(message)s"))
    LOG.addHandler(h)
LOG.setLevel(logging.DEBUG if get_settings().debug else logging.INFO)


# =============================================================================
# Policy tables
# =============================================================================
DIRECT_COST_DEFAULTS = {"varejo": 0.62, "servicos": 0.30, "recorrencia": 0.22}
FIXED_EXPENSE_DEFAULTS = {"servicos": 0.35}
FIXED_EXPENSE_DEFAULT = 0.30
CHURN_DEFAULT = 0.05
CHURN_FLOOR = 0.0001

RUNWAY_SAFE_MONTHS = 9
RUNWAY_TIGHT_MONTHS = 6
MARGIN_GOOD = 0.45
MARGIN_LOW = 0.35
LTV_CAC_GOOD = 3
LTV_CAC_BAD = 1
CHURN_OK = 0.05
CHURN_HIGH = 0.06

INFINITY_MARK = "∞"

ACTION_TIGHT_CASH = "Negociar prazos/aluguel e avaliar crédito de giro."
ACTION_LOW_MARGIN = "Teste de preço +8% e 3 cotações para insumo-chave."
ACTION_WEAK_UNIT_ECONOMICS = "Onboarding/upsell para elevar LTV e reduzir payback."
ACTION_MAINTAIN = "Mantenha disciplina de CAC e revise preço/mix trimestralmente."


# =============================================================================
# Helper functions
# =============================================================================
def round_half_up(x: float, d: int = 2) -> float:
    """Round half up (ties go toward +inf), so 0.125 -> 0.13 and 2.5 -> 3."""
    f = 10 ** d
    scaled = (x + sys.float_info.epsilon) * f
    if not math.isfinite(scaled):
        return x
    return math.floor(scaled + 0.5) / f


def round_or_none(x: Optional[float], d: int = 2) -> Optional[float]:
    """Rounded value, or None when there is no finite value to report."""
    if x is None or not math.isfinite(x):
        return None
    return round_half_up(x, d)


def _runway_out(runway: float, d: int):
    return INFINITY_MARK if math.isinf(runway) else round_half_up(runway, d)


def cost_light(mc_pct: float) -> Semaforo:
    if mc_pct >= MARGIN_GOOD:
        return Semaforo.VERDE
    if mc_pct >= MARGIN_LOW:
        return Semaforo.AMARELO
    return Semaforo.VERMELHO


def cash_light(runway: float) -> Semaforo:
    if math.isinf(runway) or runway >= RUNWAY_SAFE_MONTHS:
        return Semaforo.VERDE
    if runway >= RUNWAY_TIGHT_MONTHS:
        return Semaforo.AMARELO
    return Semaforo.VERMELHO


def customer_light(setor: str, churn: Optional[float]) -> Semaforo:
    if setor != "recorrencia":
        return Semaforo.AMARELO
    return Semaforo.VERDE if churn <= CHURN_OK else Semaforo.VERMELHO


def _step(trace: Optional[List[dict]], msg: str, **extra: Any) -> None:
    """Record a calculation step on the trace (if any) and the debug log."""
    clean = {k: (INFINITY_MARK if isinstance(v, float) and math.isinf(v)
                 else None if isinstance(v, float) and math.isnan(v) else v)
             for k, v in extra.items()}
    LOG.debug(f"{msg} {clean}" if clean else msg)
    if trace is not None:
        trace.append({"msg": msg, **clean})


def _resolve_fixed_expenses(raw, receita: float, setor: str,
                            trace: Optional[List[dict]]) -> float:
    n = to_number(raw)
    if n is not None and n > 0:
        return n
    pct = to_pct01(raw)
    if pct is not None:
        fixos = receita * pct
    else:
        fixos = receita * FIXED_EXPENSE_DEFAULTS.get(setor, FIXED_EXPENSE_DEFAULT)
    _step(trace, "despesas_fixas_estimadas", fixos=fixos)
    return fixos


# =============================================================================
# Main entry point
# =============================================================================
def compute_diagnostic(payload: BusinessInput,
                       trace: Optional[List[dict]] = None) -> DiagnosticResult:
    """
    Financial health diagnostic for a small business.

    Steps:
    1. Normalize inputs, filling sector defaults for what is missing
    2. Base metrics: contribution margin, EBITDA, breakeven, burn, runway
    3. Unit economics (recurring-revenue sector only): LTV, LTV/CAC, payback
    4. Score, traffic lights, risk flags and recommended actions

    Pure with respect to ``payload``; ``trace`` (when given) collects the
    intermediate steps so callers can return them even on failure.
    """
    if trace is None and payload.debug:
        trace = []
    _step(trace, "payload_recebido")

    # 1) Normalization
    setor = payload.setor
    receita = payload.receita_mensal
    _step(trace, "inputs_basicos_normalizados", setor=setor, receita=receita)

    custo_direto_pct = payload.custo_direto_pct
    if custo_direto_pct is None:
        custo_direto_pct = DIRECT_COST_DEFAULTS[setor]
        _step(trace, "custo_direto_default_setor", custoDiretoPct=custo_direto_pct)

    fixos = _resolve_fixed_expenses(payload.despesas_fixas, receita, setor, trace)

    caixa = payload.caixa
    clientes = payload.clientes_ativos
    ticket_medio = payload.ticket_medio
    cac = payload.cac

    churn = payload.churn_pct if setor == "recorrencia" else None
    if setor == "recorrencia" and churn is None:
        churn = CHURN_DEFAULT
        _step(trace, "churn_default", churn=churn)

    if not ticket_medio and clientes > 0:
        ticket_medio = receita / clientes
        _step(trace, "ticket_estimado_por_receita_clientes", ticketMedio=ticket_medio)

    # 2) Base metrics
    mc_pct = max(0.0, 1 - custo_direto_pct)
    mc = receita * mc_pct
    ebitda = mc - fixos
    breakeven = fixos / mc_pct if mc_pct > 0 else None
    burn = max(0.0, -ebitda)
    runway = caixa / burn if burn > 0 else math.inf
    _step(trace, "calc_base", mc_pct=mc_pct, mc=mc, ebitda=ebitda,
          breakeven=breakeven, burn=burn, runway=runway)

    # 3) Unit economics
    ltv = ltv_cac = payback = None
    recorrencia = None
    if setor == "recorrencia":
        ticket_efetivo = ticket_medio or (receita / clientes if clientes > 0 else 0.0)
        margem_cliente = ticket_efetivo * mc_pct
        churn_safe = max(churn, CHURN_FLOOR)
        ltv = margem_cliente / churn_safe
        ltv_cac = ltv / cac if cac > 0 else None
        payback = cac / margem_cliente if margem_cliente > 0 else None
        _step(trace, "calc_recorrencia", ticketEfetivo=ticket_efetivo,
              margemCliente=margem_cliente, churnSafe=churn_safe,
              ltv=ltv, ltv_cac=ltv_cac, payback=payback)
        recorrencia = RecorrenciaSteps(
            ticket_efetivo=round_half_up(ticket_efetivo, 2),
            margem_cliente=round_half_up(margem_cliente, 2),
            churn_safe=round_half_up(churn_safe, 4),
        )

    # 4) Score, traffic lights, flags, actions
    runway_safe = math.isinf(runway) or runway >= RUNWAY_SAFE_MONTHS

    score = 50
    score += 10 if ebitda >= 0 else -10
    if runway_safe:
        score += 15
    elif runway < RUNWAY_TIGHT_MONTHS:
        score -= 10
    if ltv_cac is not None:
        if ltv_cac >= LTV_CAC_GOOD:
            score += 15
        elif ltv_cac < LTV_CAC_BAD:
            score -= 10
    score = int(max(0, min(100, round_half_up(score, 0))))

    semaforos = Semaforos(
        receita=Semaforo.AMARELO,  # no revenue trend signal yet
        custos=cost_light(mc_pct),
        caixa=cash_light(runway),
        clientes=customer_light(setor, churn),
    )

    flags = Flags(
        caixa_apertado=not math.isinf(runway) and runway < RUNWAY_TIGHT_MONTHS,
        margem_baixa=mc_pct < MARGIN_LOW,
        ltv_cac_fraco=ltv_cac is not None and ltv_cac < LTV_CAC_GOOD,
        churn_alto=setor == "recorrencia" and churn > CHURN_HIGH,
    )

    acoes: List[str] = []
    if flags.caixa_apertado:
        acoes.append(ACTION_TIGHT_CASH)
    if flags.margem_baixa:
        acoes.append(ACTION_LOW_MARGIN)
    if flags.ltv_cac_fraco:
        acoes.append(ACTION_WEAK_UNIT_ECONOMICS)
    if not acoes:
        acoes.append(ACTION_MAINTAIN)

    inputs = InputsNormalizados(
        receita_mensal=receita,
        custo_direto_pct=round_half_up(custo_direto_pct, 4),
        despesas_fixas=round_half_up(fixos, 2),
        caixa=round_half_up(caixa, 2),
        clientes_ativos=clientes or None,
        ticket_medio=round_half_up(ticket_medio, 2) if ticket_medio else None,
        churn_pct=round_half_up(churn, 4) if setor == "recorrencia" else None,
        cac=cac or None,
    )

    metricas = Metricas(
        ponto_equilibrio=round_or_none(breakeven),
        margem_contrib_pct=round_half_up(mc_pct, 4),
        ebitda=round_half_up(ebitda),
        runway_meses=_runway_out(runway, 1),
        ltv=round_or_none(ltv),
        ltv_cac=round_or_none(ltv_cac, 2),
        payback_meses=round_or_none(payback, 1),
    )

    calc_steps = CalcSteps(
        mc_pct=round_half_up(mc_pct, 4),
        mc=round_half_up(mc),
        ebitda=round_half_up(ebitda),
        burn=round_half_up(burn),
        runway=_runway_out(runway, 2),
        recorrencia=recorrencia,
    )

    return DiagnosticResult(
        setor=setor,
        inputs_normalizados=inputs,
        score=score,
        semaforos=semaforos,
        metricas=metricas,
        etapa2_flags=flags,
        acoes_iniciais=acoes,
        calc_steps=calc_steps,
        logs=list(trace) if payload.debug else None,
    )
