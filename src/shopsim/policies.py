from __future__ import annotations

from typing import Optional

from shopsim.driver import DecisionSource
from shopsim.engine import DayEngine, expected_demand
from shopsim.models import OperatorDecision, SimulationState


class HoldPolicy(DecisionSource):
    """Never moves stock or buys; keeps the current price."""

    def next_decision(self, state: SimulationState) -> OperatorDecision:
        return OperatorDecision.hold(state)


class FixedPolicy(DecisionSource):
    """Repeats the same decision every day."""

    def __init__(self, decision: OperatorDecision) -> None:
        self.decision = decision

    def next_decision(self, state: SimulationState) -> OperatorDecision:
        d = self.decision
        return OperatorDecision(
            transfer_volume=d.transfer_volume,
            accept_offer=d.accept_offer,
            installments=d.installments,
            retail_price=d.retail_price,
        )


class RestockPolicy(DecisionSource):
    """Simple operator heuristic for headless runs.

    Tops the shop up to about one day of expected demand, buys the lot when the
    base warehouse runs low (cash if the account keeps a reserve, otherwise the
    longest installment plan), and holds a fixed price.
    """

    def __init__(
        self,
        engine: DayEngine,
        price: float = 20.0,
        reorder_point: float = 60.0,
        cash_reserve: float = 3000.0,
    ) -> None:
        self.engine = engine
        self.cfg = engine.cfg
        self.price = self.cfg.clamp_price(price)
        self.reorder_point = max(0.0, float(reorder_point))
        self.cash_reserve = max(0.0, float(cash_reserve))

    def next_decision(self, state: SimulationState) -> OperatorDecision:
        target_shop = expected_demand(self.price, self.cfg)
        transfer = max(0.0, min(state.basic_store_stock, target_shop - state.shop_store_stock))

        accept = False
        installments = 1
        if not state.has_debt() and state.basic_store_stock - transfer <= self.reorder_point:
            total = self.engine.upcoming_offer(state).total_cost()
            if total > 0:
                accept = True
                if state.account - total < self.cash_reserve:
                    options = [int(n) for n in self.cfg.installment_options]
                    installments = max(options) if options else 1

        return OperatorDecision(
            transfer_volume=transfer,
            accept_offer=accept,
            installments=installments,
            retail_price=self.price,
        )


POLICY_NAMES = ("hold", "restock")


def make_policy(name: str, engine: DayEngine, price: Optional[float] = None) -> DecisionSource:
    key = str(name or "restock").strip().lower()
    if key == "hold":
        return HoldPolicy()
    if key == "restock":
        return RestockPolicy(engine) if price is None else RestockPolicy(engine, price=price)
    raise ValueError(f"unknown policy: {name}")
