"""
Configuration records for the supernova remnant simulation.

Parameters are grouped into small dataclasses that are validated
eagerly: a bad explosion energy or a malformed species entry raises
:class:`InvalidConfiguration` before any particle is allocated.  Values
may be supplied directly or read from a ``config.json`` file, either as
a ``supernova`` section or as a top-level object.

Defaults
--------
================  =========================================
Field             Default
================  =========================================
energy            1e51 erg
density           1e-24 g/cm^3
particle_budget   2000
time_step         100 yr per frame
elements          Fe / Si / O / C (see ``DEFAULT_ELEMENTS``)
radial_bins       50
angular_bins      36
max_history       100
================  =========================================
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_ENERGY: float = 1e51
DEFAULT_DENSITY: float = 1e-24
DEFAULT_PARTICLE_BUDGET: int = 2000
# Years advanced per frame by the headless controller.
DEFAULT_TIME_STEP: float = 100.0

DEFAULT_RADIAL_BINS: int = 50
DEFAULT_ANGULAR_BINS: int = 36
DEFAULT_MAX_HISTORY: int = 100

CONFIG_FILENAME = 'config.json'
CONFIG_SECTION = 'supernova'


class InvalidConfiguration(ValueError):
    """Raised when simulation parameters cannot describe a valid run."""


@dataclass(frozen=True)
class ElementSpecies:
    """Parameter bundle for a single ejecta element.

    Attributes
    ----------
    name: str
        Element label, also stored on every particle of the species.
    A: int
        Atomic mass number.
    mass_frac: float
        Fraction of the ensemble attributed to this element, in (0, 1].
    D0: float
        Base diffusion scale (cm^2/s) before the ``1/sqrt(A)`` scaling.
    color: str
        Display tag for rendering layers; not used by the physics.
    """

    name: str
    A: int
    mass_frac: float
    D0: float
    color: str = '#cccccc'

    @property
    def diffusion_coeff(self) -> float:
        return self.D0 / math.sqrt(self.A)


DEFAULT_ELEMENTS: tuple[ElementSpecies, ...] = (
    ElementSpecies(name='Fe', A=56, mass_frac=0.15, D0=1e18, color='#e74c3c'),
    ElementSpecies(name='Si', A=28, mass_frac=0.25, D0=2e18, color='#f39c12'),
    ElementSpecies(name='O', A=16, mass_frac=0.35, D0=3e18, color='#3498db'),
    ElementSpecies(name='C', A=12, mass_frac=0.25, D0=4e18, color='#2ecc71'),
)


@dataclass(frozen=True)
class ModelConfig:
    """Explosion parameters and the species making up the ensemble."""

    energy: float = DEFAULT_ENERGY
    density: float = DEFAULT_DENSITY
    elements: tuple[ElementSpecies, ...] = DEFAULT_ELEMENTS
    particle_budget: int = DEFAULT_PARTICLE_BUDGET
    time_step: float = DEFAULT_TIME_STEP

    def validate(self) -> 'ModelConfig':
        """Check every field, raising :class:`InvalidConfiguration` on failure."""
        if not _is_positive(self.energy):
            raise InvalidConfiguration(f"energy must be > 0, got {self.energy!r}")
        if not _is_positive(self.density):
            raise InvalidConfiguration(f"density must be > 0, got {self.density!r}")
        if isinstance(self.particle_budget, bool) or not isinstance(self.particle_budget, int) \
                or self.particle_budget <= 0:
            raise InvalidConfiguration(
                f"particle_budget must be a positive integer, got {self.particle_budget!r}"
            )
        if not _is_positive(self.time_step):
            raise InvalidConfiguration(f"time_step must be > 0, got {self.time_step!r}")
        if not self.elements:
            raise InvalidConfiguration("at least one element species is required")

        seen: set[str] = set()
        for elem in self.elements:
            _validate_species(elem)
            if elem.name in seen:
                raise InvalidConfiguration(f"duplicate element species {elem.name!r}")
            seen.add(elem.name)

        total = sum(elem.mass_frac for elem in self.elements)
        if not math.isclose(total, 1.0, rel_tol=0.0, abs_tol=1e-9):
            # Proportions are used as given; only the inconsistency is reported.
            logger.warning("element mass fractions sum to %.6g, not 1.0", total)
        return self


@dataclass(frozen=True)
class AggregatorConfig:
    """Binning and history sizes for :class:`aggregator.StatisticsAggregator`."""

    radial_bins: int = DEFAULT_RADIAL_BINS
    angular_bins: int = DEFAULT_ANGULAR_BINS
    max_history: int = DEFAULT_MAX_HISTORY

    def validate(self) -> 'AggregatorConfig':
        for name in ('radial_bins', 'angular_bins', 'max_history'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidConfiguration(f"{name} must be a positive integer, got {value!r}")
        return self


@dataclass(frozen=True)
class RunConfig:
    """Everything needed to build a headless run."""

    model: ModelConfig = field(default_factory=ModelConfig)
    statistics: AggregatorConfig = field(default_factory=AggregatorConfig)


def _is_positive(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def _validate_species(elem: ElementSpecies) -> None:
    if not isinstance(elem, ElementSpecies):
        raise InvalidConfiguration(f"expected ElementSpecies, got {type(elem).__name__}")
    if not elem.name:
        raise InvalidConfiguration("element species must have a name")
    if isinstance(elem.A, bool) or not isinstance(elem.A, int) or elem.A <= 0:
        raise InvalidConfiguration(f"{elem.name}: A must be a positive integer, got {elem.A!r}")
    if not _is_positive(elem.mass_frac) or elem.mass_frac > 1.0:
        raise InvalidConfiguration(
            f"{elem.name}: massFrac must lie in (0, 1], got {elem.mass_frac!r}"
        )
    if not _is_positive(elem.D0):
        raise InvalidConfiguration(f"{elem.name}: D0 must be > 0, got {elem.D0!r}")


################################################################################
# Parsing helpers
################################################################################

def parse_element(entry: dict) -> ElementSpecies:
    """Convert one JSON-like species mapping into an :class:`ElementSpecies`.

    ``massFrac`` and ``mass_frac`` are both accepted.
    """
    if not isinstance(entry, dict):
        raise InvalidConfiguration(f"element entry must be a mapping, got {type(entry).__name__}")
    try:
        name = str(entry['name'])
        A = entry['A']
        mass_frac = entry['massFrac'] if 'massFrac' in entry else entry['mass_frac']
        D0 = entry['D0']
    except KeyError as exc:
        raise InvalidConfiguration(f"element entry is missing field {exc.args[0]!r}") from exc
    if isinstance(A, float) and A.is_integer():
        A = int(A)
    return ElementSpecies(
        name=name,
        A=A,
        mass_frac=mass_frac,
        D0=D0,
        color=str(entry.get('color', '#cccccc') or '#cccccc'),
    )


def parse_model_config(raw: Optional[dict]) -> ModelConfig:
    """Build a validated :class:`ModelConfig`, filling missing fields with defaults."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidConfiguration(f"model configuration must be a mapping, got {type(raw).__name__}")
    defaults = ModelConfig()
    elements_raw = raw.get('elements')
    if elements_raw is None:
        elements = defaults.elements
    elif isinstance(elements_raw, (list, tuple)):
        elements = tuple(parse_element(entry) for entry in elements_raw)
    else:
        raise InvalidConfiguration("elements must be a list of species mappings")
    return ModelConfig(
        energy=raw.get('energy', defaults.energy),
        density=raw.get('density', defaults.density),
        elements=elements,
        particle_budget=raw.get('particle_budget', defaults.particle_budget),
        time_step=raw.get('time_step', defaults.time_step),
    ).validate()


def parse_aggregator_config(raw: Optional[dict]) -> AggregatorConfig:
    """Build a validated :class:`AggregatorConfig` from a ``statistics`` section."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidConfiguration("statistics section must be a mapping")
    defaults = AggregatorConfig()
    return AggregatorConfig(
        radial_bins=raw.get('radial_bins', defaults.radial_bins),
        angular_bins=raw.get('angular_bins', defaults.angular_bins),
        max_history=raw.get('max_history', defaults.max_history),
    ).validate()


def parse_run_config(raw: Optional[dict]) -> RunConfig:
    """Parse a whole config document; a ``supernova`` section takes precedence."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidConfiguration("configuration document must be a JSON object")
    section = raw.get(CONFIG_SECTION, raw)
    if not isinstance(section, dict):
        raise InvalidConfiguration(f"{CONFIG_SECTION!r} section must be a JSON object")
    return RunConfig(
        model=parse_model_config(section),
        statistics=parse_aggregator_config(section.get('statistics')),
    )


################################################################################
# File loading
################################################################################

def find_config_file(path: Union[str, Path, None] = None) -> Optional[Path]:
    """Locate a config file.

    An explicit ``path`` must exist.  Otherwise ``config.json`` is looked
    up in the current working directory; the module itself ships none.
    """
    if path is not None:
        cfg_path = Path(path).expanduser()
        if not cfg_path.exists():
            raise InvalidConfiguration(f"config file not found: {cfg_path}")
        return cfg_path

    candidate = Path.cwd() / CONFIG_FILENAME
    return candidate if candidate.exists() else None


def load_run_config(path: Union[str, Path, None] = None) -> RunConfig:
    """Read and validate a run configuration.

    Returns the defaults when no file is given and none is found.
    """
    cfg_path = find_config_file(path)
    if cfg_path is None:
        logger.debug("no %s found, using defaults", CONFIG_FILENAME)
        return RunConfig()
    try:
        with cfg_path.open('r', encoding='utf-8') as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise InvalidConfiguration(f"{cfg_path}: malformed JSON ({exc})") from exc
    logger.info("loaded configuration from %s", cfg_path)
    return parse_run_config(data)
