from __future__ import annotations

from typing import Callable, List, Optional

from shopsim.engine import DayEngine
from shopsim.models import DaySummary, OperatorDecision, SimulationState


class DecisionSource:
    """Supplies the operator's decision for the coming day."""

    def next_decision(self, state: SimulationState) -> OperatorDecision:
        raise NotImplementedError


class Observer:
    """Reporting sink; every hook is optional."""

    def on_day_start(self, state: SimulationState) -> None:
        pass

    def on_day_end(self, summary: DaySummary) -> None:
        pass

    def on_finish(self, state: SimulationState) -> None:
        pass


def run_simulation(
    state: SimulationState,
    engine: DayEngine,
    source: DecisionSource,
    observer: Optional[Observer] = None,
    on_day: Optional[Callable[[DaySummary], None]] = None,
    max_days: Optional[int] = None,
) -> List[DaySummary]:
    """Run days until the horizon (or `max_days` more days) and return their summaries.

    No decision is collected for the horizon day; the current price is held and
    nothing is moved or bought.
    """

    obs = observer or Observer()
    horizon = int(engine.cfg.simulation_days)
    summaries: List[DaySummary] = []

    while not engine.is_finished(state):
        if max_days is not None and len(summaries) >= max_days:
            break
        obs.on_day_start(state)
        if state.day + 1 < horizon:
            decision = source.next_decision(state)
        else:
            decision = OperatorDecision.hold(state)
        summary = engine.advance(state, decision)
        summaries.append(summary)
        obs.on_day_end(summary)
        if on_day is not None:
            on_day(summary)

    if engine.is_finished(state):
        obs.on_finish(state)
    return summaries
