from __future__ import annotations

import random
from typing import Optional

from shopsim.engine import EngineConfig
from shopsim.models import SimulationState

DEFAULT_SEED = 20260101


def default_config(**overrides) -> EngineConfig:
    """Return the stock shop configuration, optionally with some fields replaced.

    This is shared by CLI and WebUI.
    """

    cfg = EngineConfig(**overrides)
    cfg.validate()
    return cfg


def new_state(cfg: EngineConfig, seed: Optional[int] = None) -> SimulationState:
    """Fresh day-0 state built from the configured starting values.

    `seed=None` draws a random seed (recorded on the state so the run can be replayed).
    """

    if seed is None:
        seed = random.SystemRandom().randrange(1, 2**31)
    return SimulationState(
        day=0,
        account=float(cfg.initial_account),
        basic_store_stock=float(cfg.initial_basic_stock),
        shop_store_stock=float(cfg.initial_shop_stock),
        retail_price=cfg.clamp_price(cfg.initial_retail_price),
        rng_seed=int(seed),
        rng_state=None,
    )
