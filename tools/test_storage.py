from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

import shopsim.storage as storage
from shopsim.engine import DayEngine, EngineConfig
from shopsim.models import Debt, OperatorDecision
from shopsim.presets import new_state


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


class _TempDataDir:
    """Point SHOPSIM_DATA_DIR at a throwaway directory for the duration of a test."""

    def __enter__(self) -> Path:
        self._td = tempfile.TemporaryDirectory()
        self._prev = os.environ.get(storage.DATA_DIR_ENV)
        os.environ[storage.DATA_DIR_ENV] = self._td.name
        return Path(self._td.name)

    def __exit__(self, *exc) -> None:
        if self._prev is None:
            os.environ.pop(storage.DATA_DIR_ENV, None)
        else:
            os.environ[storage.DATA_DIR_ENV] = self._prev
        self._td.cleanup()


def _decision(i: int) -> OperatorDecision:
    return OperatorDecision(transfer_volume=40, accept_offer=i % 5 == 0, installments=6, retail_price=18 + i % 5)


def test_data_dir_override() -> None:
    with _TempDataDir() as d:
        _assert(storage.data_dir() == d, "data dir follows SHOPSIM_DATA_DIR")
        _assert(storage.state_path().parent == d, "state.json under data dir")
        _assert(storage.snapshot_path(7).name == "state_day_000007.json", "snapshot naming")


def test_state_round_trip_keeps_run_reproducible() -> None:
    cfg = EngineConfig(simulation_days=30)

    # Straight run
    straight = new_state(cfg, seed=555)
    eng = DayEngine(cfg)
    for i in range(12):
        eng.advance(straight, _decision(i))

    # Split run: 6 days, save, load, 6 more
    split = new_state(cfg, seed=555)
    for i in range(6):
        eng.advance(split, _decision(i))
    with _TempDataDir():
        storage.save_state(split, cfg)
        loaded, cfg2 = storage.load_state()
    _assert(cfg2 == cfg, "config survives the round trip")
    _assert(loaded.day == 6 and loaded.debt == split.debt, "state fields restored")
    eng2 = DayEngine(cfg2)
    for i in range(6, 12):
        eng2.advance(loaded, _decision(i))

    _assert(loaded.account == straight.account, f"accounts differ: {loaded.account} vs {straight.account}")
    _assert(loaded.pending_offer == straight.pending_offer, "offers differ after split run")
    _assert(loaded.shop_store_stock == straight.shop_store_stock, "stock differs after split run")


def test_load_state_is_defensive() -> None:
    with _TempDataDir():
        p = storage.state_path()
        p.write_text(
            json.dumps(
                {
                    "version": "0.0.1",
                    "config": {"simulation_days": 40, "unknown_key": 1},
                    "state": {
                        "day": 3,
                        "account": 123.5,
                        "basic_store_stock": -4,
                        "retail_price": 500,
                        "debt": {"outstanding_amount": 99.0, "installments_remaining": 0},
                        "rng_state": "garbage",
                    },
                }
            ),
            encoding="utf-8",
        )
        state, cfg = storage.load_state(p)
    _assert(cfg.simulation_days == 40 and cfg.max_retail_price == 50.0, "partial config merged with defaults")
    _assert(state.day == 3 and state.account == 123.5, "plain fields loaded")
    _assert(state.basic_store_stock == 0.0, "negative stock clamped on load")
    _assert(state.retail_price == 50.0, "price clamped on load")
    _assert(state.debt == Debt(), "inconsistent debt cleared on load")
    _assert(state.rng_state is None, "invalid rng state dropped")
    _assert(state.invariant_violations(cfg) == [], "loaded state is valid")


def test_load_config_accepts_bare_and_wrapped_files() -> None:
    with tempfile.TemporaryDirectory() as td:
        bare = Path(td) / "cfg.json"
        bare.write_text(json.dumps({"max_demand": 80, "installment_options": [2, 4]}), encoding="utf-8")
        cfg = storage.load_config(bare)
        _assert(cfg.max_demand == 80.0 and cfg.installment_options == (2, 4), "bare config read")

        wrapped = Path(td) / "state.json"
        wrapped.write_text(json.dumps({"config": {"rent_rate": 0}}), encoding="utf-8")
        _assert(storage.load_config(wrapped).rent_rate == 0.0, "config read from state payload")

        bad = Path(td) / "bad.json"
        bad.write_text(json.dumps({"min_retail_price": 0}), encoding="utf-8")
        try:
            storage.load_config(bad)
        except ValueError:
            pass
        else:
            raise AssertionError("expected ValueError for invalid config")


def test_ledger_snapshots_and_truncation() -> None:
    cfg = EngineConfig(simulation_days=10)
    eng = DayEngine(cfg)
    state = new_state(cfg, seed=8)
    with _TempDataDir():
        storage.save_snapshot(state, cfg)
        for i in range(5):
            sr = eng.advance(state, _decision(i))
            storage.append_ledger_csv(sr)
            storage.save_snapshot(state, cfg)

        rows = storage.read_ledger_rows()
        _assert([int(r["day"]) for r in rows] == [1, 2, 3, 4, 5], "one ledger row per day")
        _assert(list(rows[0].keys()) == storage.LEDGER_COLUMNS, "ledger header")
        _assert(rows[0]["offer_refreshed"] == "True", "day 1 refreshes the offer")

        snap, _ = storage.load_state(storage.snapshot_path(3))
        _assert(snap.day == 3, "snapshot holds the state after day 3")

        storage.truncate_ledger_after_day(3)
        _assert([int(r["day"]) for r in storage.read_ledger_rows()] == [1, 2, 3], "rows after day 3 dropped")

        storage.save_state(state, cfg)
        storage.reset_data_files()
        _assert(not storage.state_path().exists(), "state removed")
        _assert(not storage.ledger_path().exists(), "ledger removed")
        _assert(not list(storage.snapshots_dir().glob("state_day_*.json")), "snapshots removed")


def main() -> None:
    tests = [
        test_data_dir_override,
        test_state_round_trip_keeps_run_reproducible,
        test_load_state_is_defensive,
        test_load_config_accepts_bare_and_wrapped_files,
        test_ledger_snapshots_and_truncation,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
