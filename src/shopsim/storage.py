from __future__ import annotations

import csv
import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from shopsim.engine import EngineConfig
from shopsim.logger import get_logger
from shopsim.models import DaySummary, Debt, Offer, SimulationState

log = get_logger("storage")

STATE_VERSION = "1.0.0"
DATA_DIR_ENV = "SHOPSIM_DATA_DIR"

LEDGER_COLUMNS = [
    "day",
    "account",
    "basic_store_stock",
    "shop_store_stock",
    "retail_price",
    "offer_volume",
    "offer_unit_price",
    "offer_refreshed",
    "transfer_volume",
    "offer_outcome",
    "received_volume",
    "offer_payment",
    "demand",
    "sold",
    "lost",
    "income",
    "daily_expense_total",
    "installment_outcome",
    "installment_paid",
    "debt_outstanding",
    "installments_remaining",
    "insolvent",
]


def project_root() -> Path:
    # .../src/shopsim/storage.py -> parents[2] == project root
    return Path(__file__).resolve().parents[2]


def data_dir() -> Path:
    override = os.environ.get(DATA_DIR_ENV, "").strip()
    p = Path(override) if override else project_root() / "data"
    p.mkdir(parents=True, exist_ok=True)
    return p


def state_path() -> Path:
    return data_dir() / "state.json"


def ledger_path() -> Path:
    return data_dir() / "ledger.csv"


def snapshots_dir() -> Path:
    p = data_dir() / "snapshots"
    p.mkdir(parents=True, exist_ok=True)
    return p


def snapshot_path(day: int) -> Path:
    return snapshots_dir() / f"state_day_{int(day):06d}.json"


def save_snapshot(state: SimulationState, cfg: EngineConfig) -> None:
    # Snapshot is a full state.json payload so it can be loaded via load_state().
    save_state(state, cfg, path=snapshot_path(state.day))


def truncate_ledger_after_day(target_day: int) -> None:
    """Keep ledger rows with day <= target_day."""

    p = ledger_path()
    if not p.exists():
        return

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = list(reader.fieldnames or LEDGER_COLUMNS)
        rows = list(reader)

    kept = []
    for r in rows:
        try:
            d = int(r.get("day") or 0)
        except ValueError:
            d = 0
        if d <= int(target_day):
            kept.append(r)

    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        w.writerows(kept)


def reset_data_files() -> None:
    """Delete persisted state/ledger/snapshots."""

    targets = [state_path(), ledger_path()]
    targets.extend(snapshots_dir().glob("state_day_*.json"))
    for fp in targets:
        try:
            fp.unlink(missing_ok=True)
        except OSError as e:
            log.warning("Could not delete %s: %s", fp, e)


def save_state(state: SimulationState, cfg: EngineConfig, path: Path | None = None) -> None:
    p = path or state_path()
    payload = {
        "version": STATE_VERSION,
        "config": asdict(cfg),
        "state": asdict(state),
    }
    p.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def _as_dict(x: Any) -> Dict[str, Any]:
    return x if isinstance(x, dict) else {}


def _load_engine_config(d: Any) -> EngineConfig:
    """Build a config from a (possibly partial) dict; unknown keys are ignored."""

    cfg = EngineConfig()
    d = _as_dict(d)

    float_fields = [
        "initial_account",
        "initial_basic_stock",
        "initial_shop_stock",
        "initial_retail_price",
        "min_retail_price",
        "max_retail_price",
        "max_demand",
        "mean_demand_price",
        "daily_spending",
        "rent_rate",
        "wages_and_taxes",
        "offer_volume_base",
        "offer_volume_min",
        "offer_volume_max",
        "offer_price_base",
        "offer_price_min",
        "offer_price_max",
    ]
    int_fields = [
        "demand_noise",
        "offer_period_days",
        "offer_volume_spread",
        "offer_price_spread",
        "simulation_days",
    ]
    for name in float_fields:
        if name in d and d[name] is not None:
            setattr(cfg, name, float(d[name]))
    for name in int_fields:
        if name in d and d[name] is not None:
            setattr(cfg, name, int(d[name]))

    opts = d.get("installment_options")
    if isinstance(opts, (list, tuple)):
        cfg.installment_options = tuple(int(n) for n in opts)

    cfg.validate()
    return cfg


def load_config(path: Path) -> EngineConfig:
    """Read a config JSON file: either a bare config object or a state.json payload."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    payload = _as_dict(payload)
    if "config" in payload:
        return _load_engine_config(payload.get("config"))
    return _load_engine_config(payload)


def _load_simulation_state(d: Any) -> SimulationState:
    d = _as_dict(d)
    offer_d = _as_dict(d.get("pending_offer"))
    debt_d = _as_dict(d.get("debt"))

    state = SimulationState(
        day=max(0, int(d.get("day", 0) or 0)),
        account=float(d.get("account", 0.0) or 0.0),
        basic_store_stock=max(0.0, float(d.get("basic_store_stock", 0.0) or 0.0)),
        shop_store_stock=max(0.0, float(d.get("shop_store_stock", 0.0) or 0.0)),
        retail_price=float(d.get("retail_price", 15.0) or 15.0),
        pending_offer=Offer(
            volume=max(0.0, float(offer_d.get("volume", 0.0) or 0.0)),
            unit_price=max(0.0, float(offer_d.get("unit_price", 0.0) or 0.0)),
        ),
        offer_accepted_this_day=bool(d.get("offer_accepted_this_day", False)),
        debt=Debt(
            outstanding_amount=max(0.0, float(debt_d.get("outstanding_amount", 0.0) or 0.0)),
            installments_remaining=max(0, int(debt_d.get("installments_remaining", 0) or 0)),
            installment_amount=max(0.0, float(debt_d.get("installment_amount", 0.0) or 0.0)),
        ),
        rng_seed=int(d.get("rng_seed", 20260101) or 20260101),
    )
    if state.debt.installments_remaining == 0 or state.debt.outstanding_amount <= 0:
        state.debt.clear()
    rs = d.get("rng_state")
    state.rng_state = rs if isinstance(rs, dict) else None
    return state


def load_state(path: Path | None = None) -> Tuple[SimulationState, EngineConfig]:
    p = path or state_path()
    payload = _as_dict(json.loads(p.read_text(encoding="utf-8")))
    cfg = _load_engine_config(payload.get("config"))
    state = _load_simulation_state(payload.get("state"))
    state.retail_price = cfg.clamp_price(state.retail_price)
    return state, cfg


def summary_to_row(sr: DaySummary) -> Dict[str, Any]:
    st = sr.state or SimulationState()
    return {
        "day": sr.day,
        "account": st.account,
        "basic_store_stock": st.basic_store_stock,
        "shop_store_stock": st.shop_store_stock,
        "retail_price": sr.retail_price,
        "offer_volume": sr.offer.volume,
        "offer_unit_price": sr.offer.unit_price,
        "offer_refreshed": sr.offer_refreshed,
        "transfer_volume": sr.transfer_volume,
        "offer_outcome": sr.offer_outcome,
        "received_volume": sr.received_volume,
        "offer_payment": sr.offer_payment,
        "demand": sr.demand,
        "sold": sr.sold,
        "lost": sr.lost,
        "income": sr.income,
        "daily_expense_total": sr.daily_expense_total,
        "installment_outcome": sr.installment_outcome,
        "installment_paid": sr.installment_paid,
        "debt_outstanding": st.debt.outstanding_amount,
        "installments_remaining": st.debt.installments_remaining,
        "insolvent": sr.insolvent,
    }


def append_ledger_csv(summary: DaySummary, path: Optional[Path] = None) -> None:
    p = path or ledger_path()

    write_header = (not p.exists()) or (p.stat().st_size <= 0)
    with p.open("a", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=LEDGER_COLUMNS)
        if write_header:
            w.writeheader()
        w.writerow(summary_to_row(summary))


def read_ledger_rows(path: Optional[Path] = None) -> list[dict]:
    p = path or ledger_path()
    if not p.exists():
        return []
    with p.open("r", encoding="utf-8", newline="") as f:
        return list(csv.DictReader(f))
