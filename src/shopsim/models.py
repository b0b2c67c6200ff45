from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Optional

if TYPE_CHECKING:
    from shopsim.engine import EngineConfig


# Offer outcomes (DaySummary.offer_outcome)
OFFER_NOT_ACCEPTED = "not_accepted"
OFFER_PAID = "paid"
OFFER_INSTALLMENTS = "installments"
OFFER_DECLINED_FUNDS = "declined_insufficient_funds"
OFFER_DECLINED_DEBT = "declined_debt_open"

# Installment outcomes (DaySummary.installment_outcome)
INSTALLMENT_NONE = "none"
INSTALLMENT_PAID = "installment_paid"
INSTALLMENT_FINAL_PAID = "final_paid"
INSTALLMENT_DEFERRED = "deferred"


@dataclass
class Offer:
    volume: float = 0.0
    unit_price: float = 0.0

    def total_cost(self) -> float:
        return float(self.volume) * float(self.unit_price)


@dataclass
class Debt:
    outstanding_amount: float = 0.0
    installments_remaining: int = 0
    installment_amount: float = 0.0

    def is_open(self) -> bool:
        return self.outstanding_amount > 0 or self.installments_remaining > 0

    def clear(self) -> None:
        self.outstanding_amount = 0.0
        self.installments_remaining = 0
        self.installment_amount = 0.0


@dataclass
class SimulationState:
    day: int = 0
    account: float = 0.0
    basic_store_stock: float = 0.0
    shop_store_stock: float = 0.0
    retail_price: float = 15.0

    pending_offer: Offer = field(default_factory=Offer)
    offer_accepted_this_day: bool = False
    debt: Debt = field(default_factory=Debt)

    # Seed + persisted generator states (stream name -> random.getstate() as JSON-able data)
    rng_seed: int = 20260101
    rng_state: Optional[dict] = None

    def has_debt(self) -> bool:
        return self.debt.is_open()

    def is_finished(self, cfg: EngineConfig) -> bool:
        return self.day >= int(cfg.simulation_days)

    def invariant_violations(self, cfg: Optional[EngineConfig] = None) -> List[str]:
        """Return human-readable descriptions of every violated invariant (empty if valid)."""

        out: List[str] = []
        if self.basic_store_stock < 0:
            out.append(f"basic_store_stock < 0 ({self.basic_store_stock})")
        if self.shop_store_stock < 0:
            out.append(f"shop_store_stock < 0 ({self.shop_store_stock})")
        if self.debt.installments_remaining < 0:
            out.append(f"installments_remaining < 0 ({self.debt.installments_remaining})")
        if self.debt.installments_remaining == 0 and self.debt.outstanding_amount != 0:
            out.append(f"outstanding_amount {self.debt.outstanding_amount} with no installments remaining")
        if self.debt.outstanding_amount < 0:
            out.append(f"outstanding_amount < 0 ({self.debt.outstanding_amount})")
        if cfg is not None:
            if not (cfg.min_retail_price <= self.retail_price <= cfg.max_retail_price):
                out.append(
                    f"retail_price {self.retail_price} outside [{cfg.min_retail_price}, {cfg.max_retail_price}]"
                )
            if self.day > int(cfg.simulation_days):
                out.append(f"day {self.day} beyond horizon {cfg.simulation_days}")
        if self.day < 0:
            out.append(f"day < 0 ({self.day})")
        return out


@dataclass
class OperatorDecision:
    transfer_volume: float = 0.0
    accept_offer: bool = False
    installments: int = 1  # 1 = pay immediately; 3/6 = installment plan
    retail_price: float = 15.0

    @classmethod
    def hold(cls, state: SimulationState) -> "OperatorDecision":
        """No transfer, no purchase, keep the current price."""

        return cls(transfer_volume=0.0, accept_offer=False, installments=1, retail_price=state.retail_price)

    @classmethod
    def from_dict(cls, d: Any, default_price: float = 15.0) -> "OperatorDecision":
        if not isinstance(d, dict):
            d = {}
        try:
            installments = int(d.get("installments", 1) or 1)
        except (TypeError, ValueError):
            installments = 1
        raw_accept = d.get("accept_offer", False)
        if isinstance(raw_accept, str):
            accept = raw_accept.strip().lower() in {"1", "true", "yes", "y"}
        else:
            accept = bool(raw_accept)
        try:
            transfer = float(d.get("transfer_volume", 0.0) or 0.0)
        except (TypeError, ValueError):
            transfer = 0.0
        try:
            price = float(d.get("retail_price", default_price) or default_price)
        except (TypeError, ValueError):
            price = float(default_price)
        return cls(
            transfer_volume=transfer,
            accept_offer=accept,
            installments=installments,
            retail_price=price,
        )


@dataclass
class DaySummary:
    day: int

    offer: Offer = field(default_factory=Offer)
    offer_refreshed: bool = False

    transfer_volume: float = 0.0
    offer_outcome: str = OFFER_NOT_ACCEPTED
    received_volume: float = 0.0
    offer_payment: float = 0.0  # cash paid for the lot today (full price or first installment)

    retail_price: float = 0.0
    demand: float = 0.0
    sold: float = 0.0
    lost: float = 0.0
    income: float = 0.0
    daily_expense_total: float = 0.0

    installment_outcome: str = INSTALLMENT_NONE
    installment_paid: float = 0.0

    insolvent: bool = False

    # Resulting state (copy, safe to keep after further days)
    state: Optional[SimulationState] = None

    def offer_accepted(self) -> bool:
        return self.offer_outcome in (OFFER_PAID, OFFER_INSTALLMENTS)
