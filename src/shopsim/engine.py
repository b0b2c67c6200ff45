from __future__ import annotations

import copy
import random
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, cast

from shopsim.logger import get_logger
from shopsim.models import (
    INSTALLMENT_DEFERRED,
    INSTALLMENT_FINAL_PAID,
    INSTALLMENT_PAID,
    OFFER_DECLINED_DEBT,
    OFFER_DECLINED_FUNDS,
    OFFER_INSTALLMENTS,
    OFFER_NOT_ACCEPTED,
    OFFER_PAID,
    DaySummary,
    Debt,
    Offer,
    OperatorDecision,
    SimulationState,
)

log = get_logger("engine")


class SimulationFinishedError(RuntimeError):
    """Raised when advancing a state that already reached the horizon."""


class InvariantError(RuntimeError):
    """Raised when a transition leaves the state inconsistent."""


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(float(lo), min(float(x), float(hi)))


@dataclass
class EngineConfig:
    # Starting values
    initial_account: float = 10_000.0
    initial_basic_stock: float = 360.0
    initial_shop_stock: float = 80.0
    initial_retail_price: float = 15.0

    # Price bounds
    min_retail_price: float = 10.0
    max_retail_price: float = 50.0

    # Demand: max_demand * (mean_demand_price / price) + U[-demand_noise, demand_noise]
    max_demand: float = 100.0
    mean_demand_price: float = 100.0
    demand_noise: int = 20

    # Fixed daily expenses
    daily_spending: float = 700.0
    rent_rate: float = 200.0
    wages_and_taxes: float = 500.0

    # Wholesale offers
    offer_period_days: int = 10
    offer_volume_base: float = 40.0
    offer_volume_spread: int = 10
    offer_volume_min: float = 30.0
    offer_volume_max: float = 50.0
    offer_price_base: float = 35.0
    offer_price_spread: int = 5
    offer_price_min: float = 30.0
    offer_price_max: float = 40.0

    # Installment plans on offer (number of payments, first one due on acceptance)
    installment_options: Tuple[int, ...] = (3, 6)

    simulation_days: int = 100

    def daily_expense_total(self) -> float:
        return float(self.daily_spending) + float(self.rent_rate) + float(self.wages_and_taxes)

    def clamp_price(self, price: float) -> float:
        return _clamp(price, self.min_retail_price, self.max_retail_price)

    def validate(self) -> None:
        if self.min_retail_price <= 0:
            raise ValueError("min_retail_price must be > 0")
        if self.min_retail_price > self.max_retail_price:
            raise ValueError("min_retail_price must not exceed max_retail_price")
        if self.offer_volume_min > self.offer_volume_max:
            raise ValueError("offer_volume_min must not exceed offer_volume_max")
        if self.offer_price_min > self.offer_price_max:
            raise ValueError("offer_price_min must not exceed offer_price_max")
        if self.offer_volume_min < 0 or self.offer_price_min < 0:
            raise ValueError("offer volume/price bounds must be >= 0")
        if int(self.offer_period_days) <= 0:
            raise ValueError("offer_period_days must be > 0")
        if int(self.simulation_days) <= 0:
            raise ValueError("simulation_days must be > 0")
        if min(self.initial_basic_stock, self.initial_shop_stock) < 0:
            raise ValueError("initial stock must be >= 0")
        if min(int(self.demand_noise), int(self.offer_volume_spread), int(self.offer_price_spread)) < 0:
            raise ValueError("noise spreads must be >= 0")
        for n in self.installment_options:
            if int(n) < 2:
                raise ValueError(f"installment option {n} must be >= 2")


def expected_demand(price: float, cfg: EngineConfig) -> float:
    """Noise-free demand at the given (clamped) price."""

    p = cfg.clamp_price(price)
    return max(0.0, float(cfg.max_demand) * (float(cfg.mean_demand_price) / p))


class BoundedNoise:
    """Uniform integer noise over the closed interval [-spread, spread]."""

    def __init__(self, seed: Optional[int] = None, rng: Optional[random.Random] = None) -> None:
        self.rng = rng if rng is not None else random.Random(seed)

    def draw(self, spread: int) -> int:
        s = int(spread)
        if s <= 0:
            return 0
        return self.rng.randint(-s, s)

    def reseed(self, seed: int) -> None:
        self.rng.seed(seed)

    def getstate(self) -> object:
        return _to_jsonable(self.rng.getstate())

    def setstate(self, st: object) -> None:
        self.rng.setstate(cast(tuple[Any, ...], _to_tuple(st)))


def _to_jsonable(x: object) -> object:
    if isinstance(x, tuple):
        return [_to_jsonable(v) for v in x]
    if isinstance(x, list):
        return [_to_jsonable(v) for v in x]
    if isinstance(x, dict):
        return {str(k): _to_jsonable(v) for k, v in x.items()}
    return x


def _to_tuple(x: object) -> object:
    if isinstance(x, list):
        return tuple(_to_tuple(v) for v in x)
    if isinstance(x, dict):
        return {k: _to_tuple(v) for k, v in x.items()}
    return x


def _stable_u32(s: str) -> int:
    """Return a stable unsigned 32-bit hash for seeding.

    Python's built-in hash() is randomized per process; avoid it for reproducibility.
    """

    return int(zlib.crc32(s.encode("utf-8")) & 0xFFFFFFFF)


OFFER_STREAM = "offer"
DEMAND_STREAM = "demand"


def _noise_from_state(state: SimulationState, stream: str) -> BoundedNoise:
    seed = int(getattr(state, "rng_seed", 20260101) or 20260101)
    noise = BoundedNoise(seed=(seed ^ _stable_u32(stream)) & 0xFFFFFFFF)
    st = (getattr(state, "rng_state", None) or {}).get(stream)
    if st is not None:
        try:
            noise.setstate(st)
        except (TypeError, ValueError):
            log.warning("Stored %s generator state is unusable; reseeding from rng_seed", stream)
    return noise


def _persist_noise_state(state: SimulationState, stream: str, noise: BoundedNoise) -> None:
    rs = dict(state.rng_state or {})
    rs[stream] = noise.getstate()
    state.rng_state = rs


@dataclass
class _DayContext:
    state: SimulationState
    decision: OperatorDecision
    cfg: EngineConfig
    offer_noise: BoundedNoise
    demand_noise: BoundedNoise
    summary: DaySummary
    plan_opened_today: bool = False


def _offer_due(day: int, cfg: EngineConfig) -> bool:
    return (int(day) - 1) % int(cfg.offer_period_days) == 0


def _draw_offer(cfg: EngineConfig, noise: BoundedNoise) -> Offer:
    volume = _clamp(
        float(cfg.offer_volume_base) + noise.draw(cfg.offer_volume_spread),
        cfg.offer_volume_min,
        cfg.offer_volume_max,
    )
    unit_price = _clamp(
        float(cfg.offer_price_base) + noise.draw(cfg.offer_price_spread),
        cfg.offer_price_min,
        cfg.offer_price_max,
    )
    return Offer(volume=volume, unit_price=unit_price)


def upcoming_offer(
    state: SimulationState, cfg: EngineConfig, offer_noise: Optional[BoundedNoise] = None
) -> Offer:
    """The offer the next simulated day will carry, without consuming any randomness."""

    if not _offer_due(state.day + 1, cfg):
        return Offer(volume=state.pending_offer.volume, unit_price=state.pending_offer.unit_price)
    if offer_noise is not None:
        noise = copy.deepcopy(offer_noise)
    else:
        noise = _noise_from_state(state, OFFER_STREAM)
    return _draw_offer(cfg, noise)


def _step_offer_refresh(ctx: _DayContext) -> None:
    state, cfg, sr = ctx.state, ctx.cfg, ctx.summary
    if _offer_due(sr.day, cfg):
        state.pending_offer = _draw_offer(cfg, ctx.offer_noise)
        sr.offer_refreshed = True
    sr.offer = Offer(volume=state.pending_offer.volume, unit_price=state.pending_offer.unit_price)


def _step_apply_decision(ctx: _DayContext) -> None:
    state, cfg, sr, decision = ctx.state, ctx.cfg, ctx.summary, ctx.decision

    state.offer_accepted_this_day = False
    sr.transfer_volume = _clamp(decision.transfer_volume, 0.0, state.basic_store_stock)

    if decision.accept_offer:
        if state.has_debt():
            # One open installment plan at a time.
            sr.offer_outcome = OFFER_DECLINED_DEBT
            log.debug("Day %d: offer declined, installment plan still open", sr.day)
        else:
            total = state.pending_offer.total_cost()
            n = int(decision.installments)
            if n in tuple(int(x) for x in cfg.installment_options) and total > 0:
                installment = total / float(n)
                state.account -= installment
                state.debt = Debt(
                    outstanding_amount=total - installment,
                    installments_remaining=n - 1,
                    installment_amount=installment,
                )
                ctx.plan_opened_today = True
                sr.offer_outcome = OFFER_INSTALLMENTS
                sr.offer_payment = installment
            elif state.account >= total:
                state.account -= total
                sr.offer_outcome = OFFER_PAID
                sr.offer_payment = total
            else:
                sr.offer_outcome = OFFER_DECLINED_FUNDS
                log.debug("Day %d: offer declined, account %.2f < lot cost %.2f", sr.day, state.account, total)
    else:
        sr.offer_outcome = OFFER_NOT_ACCEPTED

    state.offer_accepted_this_day = sr.offer_accepted()
    state.retail_price = cfg.clamp_price(decision.retail_price)
    sr.retail_price = state.retail_price


def _step_transport(ctx: _DayContext) -> None:
    v = ctx.summary.transfer_volume
    ctx.state.basic_store_stock -= v
    ctx.state.shop_store_stock += v


def _step_procurement_receipt(ctx: _DayContext) -> None:
    if ctx.state.offer_accepted_this_day:
        ctx.summary.received_volume = float(ctx.state.pending_offer.volume)
        ctx.state.basic_store_stock += ctx.summary.received_volume


def _step_demand(ctx: _DayContext) -> None:
    base = float(ctx.cfg.max_demand) * (float(ctx.cfg.mean_demand_price) / float(ctx.state.retail_price))
    noise = ctx.demand_noise.draw(ctx.cfg.demand_noise)
    ctx.summary.demand = max(0.0, base + noise)


def _step_sales(ctx: _DayContext) -> None:
    sr = ctx.summary
    sr.sold = min(ctx.state.shop_store_stock, sr.demand)
    ctx.state.shop_store_stock -= sr.sold
    sr.lost = sr.demand - sr.sold


def _step_income(ctx: _DayContext) -> None:
    ctx.summary.income = ctx.summary.sold * ctx.state.retail_price
    ctx.state.account += ctx.summary.income


def _step_fixed_expenses(ctx: _DayContext) -> None:
    ctx.summary.daily_expense_total = ctx.cfg.daily_expense_total()
    ctx.state.account -= ctx.summary.daily_expense_total


def _step_debt_amortization(ctx: _DayContext) -> None:
    state, sr = ctx.state, ctx.summary
    debt = state.debt
    if ctx.plan_opened_today:
        # First installment was taken at acceptance.
        return

    if debt.installments_remaining > 1 and debt.outstanding_amount > 0:
        due = min(debt.installment_amount, debt.outstanding_amount)
        if state.account >= due:
            state.account -= due
            debt.outstanding_amount -= due
            debt.installments_remaining -= 1
            sr.installment_outcome = INSTALLMENT_PAID
            sr.installment_paid = due
            if debt.outstanding_amount <= 0:
                debt.clear()
                sr.installment_outcome = INSTALLMENT_FINAL_PAID
        else:
            sr.installment_outcome = INSTALLMENT_DEFERRED
            log.debug("Day %d: installment %.2f deferred (account %.2f)", sr.day, due, state.account)
    elif debt.installments_remaining == 1 and debt.outstanding_amount > 0:
        due = debt.outstanding_amount
        if state.account >= due:
            state.account -= due
            debt.clear()
            sr.installment_outcome = INSTALLMENT_FINAL_PAID
            sr.installment_paid = due
        else:
            sr.installment_outcome = INSTALLMENT_DEFERRED
            log.debug("Day %d: final payment %.2f deferred (account %.2f)", sr.day, due, state.account)


def _step_solvency_check(ctx: _DayContext) -> None:
    ctx.summary.insolvent = ctx.state.account < 0
    if ctx.summary.insolvent:
        log.info("Day %d: account is negative (%.2f)", ctx.summary.day, ctx.state.account)


# Order is part of the model: e.g. expenses land after the day's income and
# installments after expenses.
DAY_STEPS: Tuple[Tuple[str, Callable[[_DayContext], None]], ...] = (
    ("offer_refresh", _step_offer_refresh),
    ("apply_decision", _step_apply_decision),
    ("transport", _step_transport),
    ("procurement_receipt", _step_procurement_receipt),
    ("demand", _step_demand),
    ("sales", _step_sales),
    ("income", _step_income),
    ("fixed_expenses", _step_fixed_expenses),
    ("debt_amortization", _step_debt_amortization),
    ("solvency_check", _step_solvency_check),
)

DAY_STEP_NAMES: Tuple[str, ...] = tuple(name for name, _ in DAY_STEPS)


def simulate_day(
    state: SimulationState,
    decision: OperatorDecision,
    cfg: EngineConfig,
    offer_noise: Optional[BoundedNoise] = None,
    demand_noise: Optional[BoundedNoise] = None,
) -> DaySummary:
    """Advance `state` by one day in place and return the day's summary.

    Generators not passed explicitly are restored from (and saved back to) the state.
    """

    if state.is_finished(cfg):
        raise SimulationFinishedError(f"simulation already reached day {state.day} of {cfg.simulation_days}")

    own_offer = offer_noise is None
    own_demand = demand_noise is None
    if offer_noise is None:
        offer_noise = _noise_from_state(state, OFFER_STREAM)
    if demand_noise is None:
        demand_noise = _noise_from_state(state, DEMAND_STREAM)

    ctx = _DayContext(
        state=state,
        decision=decision,
        cfg=cfg,
        offer_noise=offer_noise,
        demand_noise=demand_noise,
        summary=DaySummary(day=state.day + 1),
    )
    for _, step in DAY_STEPS:
        step(ctx)

    state.day = ctx.summary.day

    # Persist RNG state so split runs stay reproducible.
    if own_offer:
        _persist_noise_state(state, OFFER_STREAM, offer_noise)
    if own_demand:
        _persist_noise_state(state, DEMAND_STREAM, demand_noise)

    problems = state.invariant_violations(cfg)
    if problems:
        raise InvariantError(f"day {state.day}: " + "; ".join(problems))

    ctx.summary.state = copy.deepcopy(state)
    return ctx.summary


class DayEngine:
    """Stateless day transition bound to a configuration and (optionally) injected generators."""

    def __init__(
        self,
        cfg: Optional[EngineConfig] = None,
        offer_noise: Optional[BoundedNoise] = None,
        demand_noise: Optional[BoundedNoise] = None,
    ) -> None:
        self.cfg = cfg or EngineConfig()
        self.cfg.validate()
        self.offer_noise = offer_noise
        self.demand_noise = demand_noise

    def advance(self, state: SimulationState, decision: Optional[OperatorDecision] = None) -> DaySummary:
        if decision is None:
            decision = OperatorDecision.hold(state)
        return simulate_day(
            state,
            decision,
            self.cfg,
            offer_noise=self.offer_noise,
            demand_noise=self.demand_noise,
        )

    def is_finished(self, state: SimulationState) -> bool:
        return state.is_finished(self.cfg)

    def upcoming_offer(self, state: SimulationState) -> Offer:
        return upcoming_offer(state, self.cfg, offer_noise=self.offer_noise)
