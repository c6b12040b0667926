"""
Summary statistics of the tracer ensemble.

The aggregator turns one particle snapshot plus the matching shock state
into a radial histogram, an azimuthal histogram and a bounded time
series of macroscopic quantities.  Histograms are rebuilt from scratch
on every call to :meth:`StatisticsAggregator.ingest`; only the time
series carries state between calls.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Optional, Sequence, Tuple, Union

import numpy as np
from numpy import ndarray

from config import AggregatorConfig, InvalidConfiguration
from simulation import Particle, ShockState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RadialBin:
    """One shell of the radial distribution.

    ``density`` divides the summed mass by the area of the 2D annulus
    ``pi ((i+1)^2 - i^2) w^2`` rather than a spherical shell volume.
    """

    index: int
    radius: float
    count: int
    mass: float
    density: float


@dataclass(frozen=True)
class AngularBin:
    """One azimuthal sector; ``angle`` is the sector centre in [0, 2 pi)."""

    index: int
    angle: float
    count: int


@dataclass(frozen=True)
class TimeSeriesSample:
    time: float
    radius: float
    velocity: float
    temperature: float
    particle_count: int


def _columns(particles) -> Tuple[ndarray, ndarray]:
    """Return positions (3, N) and masses (N,) from a view or a list of records."""
    if hasattr(particles, 'r') and hasattr(particles, 'm'):
        return np.asarray(particles.r, dtype=float), np.asarray(particles.m, dtype=float)
    records: Sequence[Particle] = list(particles)
    r = np.array([[p.x for p in records], [p.y for p in records], [p.z for p in records]], dtype=float)
    m = np.array([p.mass for p in records], dtype=float)
    return r.reshape(3, len(records)), m


def radial_histogram(r: ndarray, m: ndarray, shock_radius: float, bins: int) -> Tuple[ndarray, ndarray, ndarray, float]:
    """Bin particles by 3D radius out to the shock.

    Returns
    -------
    counts, mass, density: ndarray
        Per-bin particle count, summed mass and annulus-normalised density.
    bin_width: float
        Width of every bin (pc).  When it is zero all particles land in
        the first bin and every density is zero.
    """
    radius = np.sqrt(r[0] ** 2 + r[1] ** 2 + r[2] ** 2)
    bin_width = shock_radius / bins
    if bin_width > 0.0:
        idx = np.clip(np.floor(radius / bin_width), 0, bins - 1).astype(int)
    else:
        idx = np.zeros(radius.shape[0], dtype=int)
    counts = np.bincount(idx, minlength=bins)
    mass = np.bincount(idx, weights=m, minlength=bins)

    density = np.zeros(bins, dtype=float)
    if bin_width > 0.0:
        i = np.arange(bins, dtype=float)
        area = math.pi * ((i + 1.0) ** 2 - i ** 2) * bin_width ** 2
        density = mass / area
    return counts, mass, density, bin_width


def angular_histogram(r: ndarray, bins: int) -> ndarray:
    """Count particles in equal azimuthal sectors of ``atan2(y, x) + pi``."""
    angle = np.arctan2(r[1], r[0]) + math.pi
    idx = np.floor(angle / (2.0 * math.pi) * bins).astype(int)
    # atan2 returns +pi exactly on the negative x axis
    idx = np.clip(idx, 0, bins - 1)
    return np.bincount(idx, minlength=bins)


class StatisticsAggregator:
    """Radial/angular distributions and a FIFO history of the shock state."""

    def __init__(self, config: Optional[AggregatorConfig] = None):
        if config is None:
            config = AggregatorConfig()
        if not isinstance(config, AggregatorConfig):
            raise InvalidConfiguration(f"expected AggregatorConfig, got {type(config).__name__}")
        self._config: AggregatorConfig = config.validate()
        self._radial_bins: int = config.radial_bins
        self._angular_bins: int = config.angular_bins
        self._time_series: Deque[TimeSeriesSample] = deque(maxlen=config.max_history)
        self.clear()

    @property
    def config(self) -> AggregatorConfig:
        return self._config

    @property
    def max_history(self) -> int:
        return self._config.max_history

    def clear(self) -> None:
        """Drop the histograms, the history and the last particle snapshot."""
        self._particles = None
        self._radial_counts: ndarray = np.zeros(self._radial_bins, dtype=int)
        self._radial_mass: ndarray = np.zeros(self._radial_bins, dtype=float)
        self._radial_density: ndarray = np.zeros(self._radial_bins, dtype=float)
        self._bin_width: float = 0.0
        self._angular_counts: ndarray = np.zeros(self._angular_bins, dtype=int)
        self._time_series.clear()

    # -------------------------------------------------------------------------
    def ingest(self, particles, state: ShockState) -> None:
        """Recompute every output from one particle snapshot and its shock state.

        ``particles`` is a :class:`simulation.ParticleView` or any sequence
        of :class:`simulation.Particle` records; it must belong to
        ``state``.  The pair is not cross-checked.
        """
        r, m = _columns(particles)
        # Views are live; keep a detached copy so later steps do not leak in.
        self._particles = particles.snapshot() if hasattr(particles, 'snapshot') else list(particles)

        (self._radial_counts, self._radial_mass,
         self._radial_density, self._bin_width) = radial_histogram(r, m, state.radius, self._radial_bins)
        self._angular_counts = angular_histogram(r, self._angular_bins)

        self._time_series.append(
            TimeSeriesSample(
                time=float(state.time),
                radius=float(state.radius),
                velocity=float(state.velocity),
                temperature=float(state.temperature),
                particle_count=int(m.shape[0]),
            )
        )

    # -------------------------------------------------------------------------
    def particles(self):
        """Return a detached copy of the particles passed to the last :meth:`ingest`."""
        return self._particles

    def radial_counts(self) -> ndarray:
        return self._radial_counts.copy()

    def angular_counts(self) -> ndarray:
        return self._angular_counts.copy()

    def radial_distribution(self) -> list[RadialBin]:
        w = self._bin_width
        return [
            RadialBin(
                index=i,
                radius=(i + 0.5) * w,
                count=int(self._radial_counts[i]),
                mass=float(self._radial_mass[i]),
                density=float(self._radial_density[i]),
            )
            for i in range(self._radial_bins)
        ]

    def angular_distribution(self) -> list[AngularBin]:
        sector = 2.0 * math.pi / self._angular_bins
        return [
            AngularBin(index=i, angle=(i + 0.5) * sector, count=int(self._angular_counts[i]))
            for i in range(self._angular_bins)
        ]

    def time_series(self) -> list[TimeSeriesSample]:
        """Return retained samples, oldest first."""
        return list(self._time_series)

    # -------------------------------------------------------------------------
    def write_time_series_csv(self, path: Union[str, Path]) -> Path:
        """Write the retained time series to ``path`` as CSV, replacing the file."""
        file_path = Path(path).expanduser()
        if file_path.parent and not file_path.parent.exists():
            file_path.parent.mkdir(parents=True, exist_ok=True)
        with file_path.open('w', encoding='utf-8') as fh:
            fh.write('time,radius,velocity,temperature,particle_count\n')
            for s in self._time_series:
                fh.write(
                    f"{s.time:.9g},{s.radius:.9g},{s.velocity:.9g},{s.temperature:.9g},{s.particle_count}\n"
                )
        logger.info("wrote %d time series samples to %s", len(self._time_series), file_path)
        return file_path
