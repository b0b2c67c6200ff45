from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from shopsim.driver import DecisionSource, run_simulation
from shopsim.engine import DayEngine, EngineConfig
from shopsim.logger import get_logger, parse_level, setup_logger
from shopsim.models import DaySummary, OperatorDecision, SimulationState
from shopsim.policies import POLICY_NAMES, make_policy
from shopsim.presets import default_config, new_state
from shopsim.reporting import ConsoleObserver, format_money
from shopsim.storage import (
    append_ledger_csv,
    load_config,
    load_state,
    reset_data_files,
    save_snapshot,
    save_state,
    state_path,
)

log = get_logger("cli")


def _input_int(prompt: str, default: Optional[int] = None) -> Optional[int]:
    s = input(prompt).strip()
    if not s:
        return default
    try:
        return int(s)
    except ValueError:
        print("输入无效：请输入整数。")
        return None


def _input_float(prompt: str, default: Optional[float] = None) -> Optional[float]:
    s = input(prompt).strip()
    if not s:
        return default
    try:
        return float(s)
    except ValueError:
        print("输入无效：请输入数字。")
        return None


def _ask_float(prompt: str, default: float) -> float:
    while True:
        v = _input_float(prompt, default)
        if v is not None:
            return v


def _ask_int(prompt: str, default: int) -> int:
    while True:
        v = _input_int(prompt, default)
        if v is not None:
            return v


class ConsoleDecisionSource(DecisionSource):
    """Collects the day's decision from stdin. Values are clamped by the engine."""

    def __init__(self, engine: DayEngine) -> None:
        self.engine = engine

    def next_decision(self, state: SimulationState) -> OperatorDecision:
        cfg = self.engine.cfg
        print(f"\n第 {state.day + 1} 天决策：")
        print("----------------------------------------")

        transfer = _ask_float(f"从基地仓调拨到门店的数量（0=不调拨，现有 {state.basic_store_stock:.0f}）: ", 0.0)

        offer = self.engine.upcoming_offer(state)
        accept = False
        installments = 1
        if state.has_debt():
            print("尚有分期未结清，暂不能购入新批发货。")
        elif offer.volume > 0:
            accept = _ask_int(f"是否购入批发货 {offer.volume:.0f} 件，总价 {format_money(offer.total_cost())}？(1=是, 0=否): ", 0) == 1
            if accept:
                options = "/".join(str(n) for n in cfg.installment_options)
                installments = _ask_int(f"付款方式（1=全款，{options}=分期期数）: ", 1)

        price = _ask_float(
            f"设置售价（{cfg.min_retail_price:g}-{cfg.max_retail_price:g}，当前 {state.retail_price:g}）: ",
            state.retail_price,
        )
        return OperatorDecision(
            transfer_volume=transfer,
            accept_offer=accept,
            installments=installments,
            retail_price=price,
        )


def _autosave(state: SimulationState, cfg: EngineConfig) -> None:
    try:
        save_state(state, cfg)
    except OSError as e:
        log.warning("Saving state failed: %s", e)
        print(f"保存失败：{e}")


def _persist_day(cfg: EngineConfig):
    def _hook(summary: DaySummary) -> None:
        if summary.state is None:
            return
        try:
            append_ledger_csv(summary)
            save_snapshot(summary.state, cfg)
        except OSError as e:
            log.warning("Writing ledger/snapshot for day %d failed: %s", summary.day, e)
        _autosave(summary.state, cfg)

    return _hook


def _autoload_or_new(cfg: EngineConfig, seed: Optional[int], resume: bool) -> tuple[SimulationState, EngineConfig]:
    p = state_path()
    if resume and p.exists():
        try:
            return load_state(p)
        except (OSError, TypeError, ValueError) as e:
            log.warning("Reading %s failed: %s", p, e)
            print(f"读取存档失败：{e}。将创建新档。")
    return new_state(cfg, seed=seed), cfg


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="shopsim", description="商店经营模拟（分期付款批发货）")
    ap.add_argument("--days", type=int, default=None, help="simulation horizon in days (default from config)")
    ap.add_argument("--seed", type=int, default=None, help="random seed for a reproducible run")
    ap.add_argument("--config", type=Path, default=None, help="JSON file with config overrides")
    ap.add_argument("--auto", choices=POLICY_NAMES, default=None, help="run headless with a built-in policy")
    ap.add_argument("--price", type=float, default=None, help="retail price used by --auto restock")
    ap.add_argument("--resume", action="store_true", help="continue from data/state.json")
    ap.add_argument("--no-save", action="store_true", help="do not write state/ledger files")
    ap.add_argument("--quiet", action="store_true", help="only print the final report")
    ap.add_argument("--log-level", default="WARNING")
    ap.add_argument("--log-file", action="store_true", help="also write logs/simulation_*.log")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger(level=parse_level(args.log_level), log_to_file=bool(args.log_file))

    try:
        cfg = load_config(args.config) if args.config else default_config()
        if args.days is not None:
            cfg.simulation_days = max(1, int(args.days))
            cfg.validate()
    except (OSError, ValueError) as e:
        print(f"配置无效：{e}")
        return 2

    state, loaded_cfg = _autoload_or_new(cfg, args.seed, bool(args.resume))
    if loaded_cfg is not cfg:
        # Resumed run: the saved config wins, only the horizon may be changed.
        if args.config:
            print("继续存档时不能使用 --config（配置已随存档保存）。")
            return 2
        if args.days is not None:
            days = max(1, int(args.days))
            if days < state.day:
                print(f"--days {days} 早于存档当前的第 {state.day} 天。")
                return 2
            loaded_cfg.simulation_days = days
        cfg = loaded_cfg
    engine = DayEngine(cfg)

    if engine.is_finished(state):
        print(f"存档已到第 {state.day} 天，模拟已结束。")
        return 0

    save = not args.no_save
    if save and not (args.resume and state.day > 0):
        reset_data_files()
        _autosave(state, cfg)
        save_snapshot(state, cfg)

    print("=======================================")
    print("   商店经营模拟（批发货分期付款）")
    print("=======================================")
    print(f"随机种子: {state.rng_seed}")

    source = make_policy(args.auto, engine, price=args.price) if args.auto else ConsoleDecisionSource(engine)
    observer = ConsoleObserver(engine, quiet=bool(args.quiet))

    try:
        run_simulation(state, engine, source, observer, on_day=_persist_day(cfg) if save else None)
    except (EOFError, KeyboardInterrupt):
        print(f"\n已在第 {state.day} 天中止。")
        if save:
            _autosave(state, cfg)
            print("进度已保存，可用 --resume 继续。")
        return 0
    return 0
