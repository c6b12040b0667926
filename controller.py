"""
Headless driver coupling the physics model to the statistics aggregator.

A frame advances the model by ``time_step * speed`` years and feeds the
result to the aggregator.  Scheduling frames on a wall clock, and
drawing anything, is left to the caller.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np

from aggregator import StatisticsAggregator
from config import AggregatorConfig, InvalidConfiguration, ModelConfig, load_run_config
from simulation import PhysicsModel, ShockState

logger = logging.getLogger(__name__)

# Unified speed range for the frame multiplier.
SPEED_MIN = 0.1
SPEED_MAX = 10.0


class SupernovaRun:
    """Own one model and one aggregator and step them together."""

    def __init__(
        self,
        model_config: Optional[ModelConfig] = None,
        statistics_config: Optional[AggregatorConfig] = None,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
        speed: float = 1.0,
    ):
        self.model = PhysicsModel(model_config, rng=rng, seed=seed)
        self.aggregator = StatisticsAggregator(statistics_config)
        self.time_step: float = self.model.config.time_step
        self._speed: float = 1.0
        self.set_speed(speed)
        self.aggregator.ingest(self.model.particles(), self.model.state())

    @classmethod
    def from_config_file(
        cls, path: Union[str, Path, None] = None, seed: Optional[int] = None
    ) -> 'SupernovaRun':
        """Build a run from ``config.json`` (see :func:`config.load_run_config`)."""
        cfg = load_run_config(path)
        return cls(cfg.model, cfg.statistics, seed=seed)

    # -------------------------------------------------------------------------
    def set_speed(self, speed: float) -> None:
        """Set the frame multiplier, clamped to ``[SPEED_MIN, SPEED_MAX]``."""
        try:
            speed = float(speed)
        except (TypeError, ValueError) as exc:
            raise InvalidConfiguration(f"speed must be a number, got {speed!r}") from exc
        if not speed > 0.0:
            raise InvalidConfiguration(f"speed must be > 0, got {speed!r}")
        self._speed = min(max(speed, SPEED_MIN), SPEED_MAX)

    def get_speed(self) -> float:
        return self._speed

    @property
    def frame_dt(self) -> float:
        """Years advanced by one frame."""
        return self.time_step * self._speed

    # -------------------------------------------------------------------------
    def advance(self) -> ShockState:
        """Run one frame: step the model, then rebuild the statistics."""
        state = self.model.step(self.frame_dt)
        self.aggregator.ingest(self.model.particles(), state)
        return state

    def run(self, frames: int) -> ShockState:
        """Advance ``frames`` times and return the final state."""
        state = self.model.state()
        for _ in range(int(frames)):
            state = self.advance()
        logger.info("ran %d frames, t=%.1f yr, R=%.3f pc", frames, state.time, state.radius)
        return state

    def reset(self) -> None:
        """Start over from ``time = 0`` with the same configuration."""
        self.model.reset()
        self.aggregator.clear()
        self.aggregator.ingest(self.model.particles(), self.model.state())
        logger.info("run reset")
