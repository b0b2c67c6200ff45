from __future__ import annotations

import threading
from dataclasses import asdict
from typing import Optional

from fastapi import Body, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from shopsim.driver import run_simulation
from shopsim.engine import DayEngine, EngineConfig, SimulationFinishedError
from shopsim.logger import get_logger
from shopsim.models import DaySummary, OperatorDecision, SimulationState
from shopsim.policies import POLICY_NAMES, make_policy
from shopsim.presets import default_config, new_state
from shopsim.storage import (
    append_ledger_csv,
    data_dir,
    ledger_path,
    load_state,
    read_ledger_rows,
    reset_data_files,
    save_snapshot,
    save_state,
    snapshot_path,
    state_path,
    truncate_ledger_after_day,
)

log = get_logger("webapp")

_lock = threading.Lock()


def _ensure_state(seed: Optional[int] = None) -> tuple[SimulationState, EngineConfig]:
    p = state_path()
    if p.exists():
        try:
            return load_state(p)
        except (OSError, TypeError, ValueError) as e:
            # Corrupted state file fallback: rebuild seed state.
            log.warning("Discarding unreadable %s: %s", p, e)
            p.unlink(missing_ok=True)
    cfg = default_config()
    s = new_state(cfg, seed=seed)
    save_state(s, cfg)
    save_snapshot(s, cfg)
    return s, cfg


def _state_to_dto(state: SimulationState, cfg: EngineConfig, recent_days: int = 10) -> dict:
    engine = DayEngine(cfg)
    rows = read_ledger_rows()
    return {
        "day": state.day,
        "horizon": cfg.simulation_days,
        "finished": engine.is_finished(state),
        "account": state.account,
        "insolvent": state.account < 0,
        "basic_store_stock": state.basic_store_stock,
        "shop_store_stock": state.shop_store_stock,
        "retail_price": state.retail_price,
        "pending_offer": asdict(state.pending_offer),
        "upcoming_offer": None if engine.is_finished(state) else asdict(engine.upcoming_offer(state)),
        "debt": asdict(state.debt),
        "rng_seed": state.rng_seed,
        "config": asdict(cfg),
        "recent": rows[-max(0, int(recent_days)):] if recent_days else [],
    }


def _summary_to_dto(sr: DaySummary) -> dict:
    d = asdict(sr)
    if d.get("state"):
        d["state"].pop("rng_state", None)
    return d


def _bad_request(msg: str) -> dict:
    return {"error": msg, "code": "bad_request"}


def _days_from(payload: dict) -> int:
    days = int(payload.get("days", 1) or 1)
    return max(1, min(3650, days))


def _finished_error(state: SimulationState, cfg: EngineConfig) -> dict:
    return {
        "error": f"simulation finished at day {state.day} of {cfg.simulation_days}",
        "code": "simulation_finished",
    }


def create_app() -> FastAPI:
    app = FastAPI(title="Shop Simulator API")

    # Allow Vite dev server or other local frontends.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Ensure data dir exists
    data_dir()

    def _record_day(summary: DaySummary, cfg: EngineConfig) -> None:
        append_ledger_csv(summary)
        if summary.state is not None:
            save_snapshot(summary.state, cfg)

    @app.get("/")
    def root():
        return {
            "name": "shopsim",
            "api": "/api/state",
            "downloads": ["/download/state", "/download/ledger"],
            "policies": list(POLICY_NAMES),
        }

    @app.get("/api/state")
    def api_state():
        with _lock:
            state, cfg = _ensure_state()
            dto = _state_to_dto(state, cfg)
        return dto

    @app.post("/api/advance")
    def api_advance(payload: dict = Body(default={})):  # {transfer_volume, accept_offer, installments, retail_price}
        with _lock:
            state, cfg = _ensure_state()
            engine = DayEngine(cfg)
            if engine.is_finished(state):
                return _finished_error(state, cfg)
            if state.day + 1 >= int(cfg.simulation_days):
                # No decision is taken on the horizon day.
                decision = OperatorDecision.hold(state)
            else:
                decision = OperatorDecision.from_dict(payload, default_price=state.retail_price)
            try:
                summary = engine.advance(state, decision)
            except SimulationFinishedError:
                return _finished_error(state, cfg)
            _record_day(summary, cfg)
            save_state(state, cfg)
            return {"summary": _summary_to_dto(summary), "state": _state_to_dto(state, cfg)}

    @app.post("/api/simulate")
    def api_simulate(payload: dict = Body(default={})):  # {days:int, policy:str, price:float}
        try:
            days = _days_from(payload)
            price = float(payload["price"]) if payload.get("price") is not None else None
        except (TypeError, ValueError):
            return _bad_request("days must be an integer and price a number")
        policy = str(payload.get("policy", "restock") or "restock")
        with _lock:
            state, cfg = _ensure_state()
            engine = DayEngine(cfg)
            if engine.is_finished(state):
                return _finished_error(state, cfg)
            try:
                source = make_policy(policy, engine, price=price)
            except ValueError as e:
                return {"error": str(e), "code": "unknown_policy"}
            summaries = run_simulation(
                state,
                engine,
                source,
                on_day=lambda sr: _record_day(sr, cfg),
                max_days=days,
            )
            save_state(state, cfg)
            return {
                "simulated_days": len(summaries),
                "summaries": [_summary_to_dto(sr) for sr in summaries],
                "state": _state_to_dto(state, cfg),
            }

    @app.post("/api/rollback")
    def api_rollback(payload: dict = Body(default={})):  # {days:int}
        try:
            days = _days_from(payload)
        except (TypeError, ValueError):
            return _bad_request("days must be an integer")
        with _lock:
            state, _ = _ensure_state()
            target_day = max(0, int(state.day) - int(days))
            sp = snapshot_path(target_day)
            if not sp.exists():
                return {"error": f"no snapshot for day {target_day}", "code": "no_snapshot"}

            state2, cfg2 = load_state(sp)
            save_state(state2, cfg2)
            # Truncate ledger to match target day (keep day <= target_day)
            truncate_ledger_after_day(target_day)
            dto = _state_to_dto(state2, cfg2)
        return dto

    @app.post("/api/reset")
    def api_reset(payload: dict = Body(default={})):  # {seed:int}
        try:
            seed = int(payload["seed"]) if payload.get("seed") is not None else None
        except (TypeError, ValueError):
            return _bad_request("seed must be an integer")
        with _lock:
            reset_data_files()
            state, cfg = _ensure_state(seed=seed)
            dto = _state_to_dto(state, cfg)
        return dto

    @app.get("/download/state")
    def download_state():
        p = state_path()
        if not p.exists():
            with _lock:
                _ensure_state()
        return FileResponse(str(p), filename="state.json")

    @app.get("/download/ledger")
    def download_ledger():
        p = ledger_path()
        if not p.exists():
            return {"error": "ledger is empty (simulate first)", "code": "no_ledger"}
        return FileResponse(str(p), filename="ledger.csv")

    return app


app = create_app()
