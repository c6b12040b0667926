"""
Sedov-Taylor blast wave evolving an ensemble of ejecta tracer particles.

This module defines a PhysicsModel class that follows many tracer
particles inside a supernova remnant.  The macroscopic shock (radius,
velocity, post-shock temperature) is given by the closed-form
Sedov-Taylor scaling laws for a point explosion in a uniform medium.
Each particle carries a self-similar radial coordinate ``xi`` (its
radius as a fraction of the shock radius) plus two angles, and is
advanced by an advective term taken from an approximate self-similar
velocity profile and a stochastic diffusion kick.

Particle data are stored in contiguous numpy arrays indexed by the
particle id.  Consumers receive a :class:`ParticleView` whose arrays
are write-protected; the values still change in place on the next
step, so callers that need to keep a snapshot must copy it.

All random draws go through one ``numpy.random.Generator`` passed to
the constructor (or created from ``seed``), so runs are reproducible.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Sequence, Union

import numpy as np
from numpy import ndarray

from config import ElementSpecies, InvalidConfiguration, ModelConfig

logger = logging.getLogger(__name__)

################################################################################
# Physical constants (cgs)
################################################################################

# Seconds per year.
YEAR_S: float = 3.156e7
# Centimetres per parsec.
PARSEC_CM: float = 3.086e18
# Atomic mass unit in grams.
AMU_G: float = 1.66e-24
# Boltzmann constant (erg/K).
K_BOLTZ: float = 1.38e-16
# Mean molecular weight of the shocked gas.
MU: float = 0.6
# Sedov constant for an adiabatic index of 5/3.
SEDOV_BETA: float = 1.15
# Adiabatic index and the corresponding maximum compression ratio.
GAMMA: float = 5.0 / 3.0
ALPHA: float = (GAMMA + 1.0) / (GAMMA - 1.0)

# Breakpoint of the piecewise velocity profile.  Beyond it the profile
# falls off linearly to zero at the shock front.
PROFILE_BREAK: float = 0.8
# Width of the initial, centrally concentrated progenitor core in xi.
CORE_SIGMA: float = 0.1
CORE_SCALE: float = 0.1
# Half-width of the uniform angular jitter applied every step (rad).
ANGULAR_JITTER: float = 0.075

FloatOrArray = Union[float, ndarray]

################################################################################
# Scaling laws and self-similar profiles
################################################################################


def shock_radius(energy: float, density: float, time_years: float) -> float:
    """Return the Sedov-Taylor shock radius in parsecs.

    ``R = beta (E / rho)^(1/5) t^(2/5)``.  Zero for ``time_years <= 0``.
    """
    t_sec = time_years * YEAR_S
    if t_sec <= 0.0:
        return 0.0
    radius_cm = SEDOV_BETA * math.pow(energy / density, 0.2) * math.pow(t_sec, 0.4)
    return radius_cm / PARSEC_CM


def shock_velocity(energy: float, density: float, time_years: float) -> float:
    """Return the shock velocity ``dR/dt = 0.4 R / t`` in km/s (zero at t = 0)."""
    t_sec = time_years * YEAR_S
    if t_sec <= 0.0:
        return 0.0
    radius_cm = shock_radius(energy, density, time_years) * PARSEC_CM
    return 0.4 * radius_cm / t_sec / 1e5


def shock_temperature(energy: float, density: float, time_years: float) -> float:
    """Return the post-shock temperature ``(3/16) mu v^2 / k_B`` in kelvin."""
    v_shock = shock_velocity(energy, density, time_years) * 1e5
    return (3.0 / 16.0) * MU * v_shock ** 2 / K_BOLTZ


def velocity_profile(xi: FloatOrArray) -> FloatOrArray:
    """Normalised radial velocity as a function of ``xi``.

    A piecewise approximation to the Sedov velocity profile: a quadratic
    interior for ``xi < 0.8`` and a linear falloff up to the front.
    """
    xi_arr = np.asarray(xi, dtype=float)
    inner = 1.0 - 1.2 * xi_arr + 0.8 * xi_arr * xi_arr
    outer = 0.5 * (1.0 - xi_arr) / (1.0 - PROFILE_BREAK)
    out = np.where(xi_arr < PROFILE_BREAK, inner, outer)
    return float(out) if out.ndim == 0 else out


def density_profile(xi: FloatOrArray) -> FloatOrArray:
    """Normalised density ``(1 - xi)^(1/(gamma-1)) / (1 - xi/alpha)``."""
    xi_arr = np.asarray(xi, dtype=float)
    out = np.power(1.0 - xi_arr, 1.0 / (GAMMA - 1.0)) * np.power(1.0 - xi_arr / ALPHA, -1.0)
    return float(out) if out.ndim == 0 else out


def reflect_polar_angle(phi: FloatOrArray) -> FloatOrArray:
    """Fold a jittered polar angle back into ``[0, pi]``.

    First-order reflection: ``-phi`` below zero, ``2 pi - phi`` above pi.
    """
    phi_arr = np.asarray(phi, dtype=float)
    out = np.where(phi_arr < 0.0, -phi_arr, phi_arr)
    out = np.where(out > math.pi, 2.0 * math.pi - out, out)
    return float(out) if out.ndim == 0 else out


################################################################################
# Records handed to consumers
################################################################################


@dataclass(frozen=True)
class ShockState:
    """Macroscopic state of the blast wave at one instant.

    Attributes
    ----------
    time: float
        Time since the explosion (yr).
    radius: float
        Shock radius (pc).
    velocity: float
        Shock velocity (km/s).
    temperature: float
        Post-shock temperature (K).
    """

    time: float
    radius: float
    velocity: float
    temperature: float


@dataclass(frozen=True)
class Particle:
    """Snapshot of one tracer particle."""

    id: int
    element: str
    mass: float
    A: int
    diffusion_coeff: float
    xi: float
    theta: float
    phi: float
    x: float
    y: float
    z: float
    vx: float
    vy: float
    vz: float
    temperature: float
    density: float


def _read_only(arr: ndarray) -> ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view


class ParticleView(Sequence[Particle]):
    """Read-only view over the particle arena of a :class:`PhysicsModel`.

    Column properties return write-protected numpy arrays indexed by
    particle id.  Indexing or iterating yields :class:`Particle`
    records.  A view from :meth:`PhysicsModel.particles` is live: the
    model updates every column in place, so both the view and arrays
    taken from it show the latest step.  :meth:`PhysicsModel.reset`
    allocates a new arena; views taken before it keep the old ensemble.
    Use :meth:`snapshot` to detach a view from later steps.
    """

    _COLUMNS = (
        'ids', 'element_index', 'm', 'A', 'diffusion_coeff', 'xi', 'theta', 'phi',
        'r', 'v', 'temperature', 'density',
    )

    def __init__(self, columns: Dict[str, ndarray], elements: tuple[ElementSpecies, ...]) -> None:
        self._cols = columns
        self._elements = elements

    def __len__(self) -> int:
        return int(self._cols['ids'].shape[0])

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self._record(i) for i in range(*index.indices(len(self)))]
        count = len(self)
        if index < 0:
            index += count
        if not 0 <= index < count:
            raise IndexError("particle index out of range")
        return self._record(index)

    def __iter__(self) -> Iterator[Particle]:
        for i in range(len(self)):
            yield self._record(i)

    def _record(self, i: int) -> Particle:
        c = self._cols
        return Particle(
            id=int(c['ids'][i]),
            element=self._elements[int(c['element_index'][i])].name,
            mass=float(c['m'][i]),
            A=int(c['A'][i]),
            diffusion_coeff=float(c['diffusion_coeff'][i]),
            xi=float(c['xi'][i]),
            theta=float(c['theta'][i]),
            phi=float(c['phi'][i]),
            x=float(c['r'][0, i]),
            y=float(c['r'][1, i]),
            z=float(c['r'][2, i]),
            vx=float(c['v'][0, i]),
            vy=float(c['v'][1, i]),
            vz=float(c['v'][2, i]),
            temperature=float(c['temperature'][i]),
            density=float(c['density'][i]),
        )

    # -------------------------------------------------------------------------
    @property
    def ids(self) -> ndarray:
        return _read_only(self._cols['ids'])

    @property
    def element_index(self) -> ndarray:
        """Index into :attr:`elements` for every particle."""
        return _read_only(self._cols['element_index'])

    @property
    def elements(self) -> tuple[ElementSpecies, ...]:
        return self._elements

    @property
    def xi(self) -> ndarray:
        return _read_only(self._cols['xi'])

    @property
    def theta(self) -> ndarray:
        return _read_only(self._cols['theta'])

    @property
    def phi(self) -> ndarray:
        return _read_only(self._cols['phi'])

    @property
    def r(self) -> ndarray:
        """Cartesian positions (pc), shape (3, N)."""
        return _read_only(self._cols['r'])

    @property
    def v(self) -> ndarray:
        """Velocity vectors (cm/s), shape (3, N)."""
        return _read_only(self._cols['v'])

    @property
    def m(self) -> ndarray:
        """Particle masses (g)."""
        return _read_only(self._cols['m'])

    @property
    def A(self) -> ndarray:
        return _read_only(self._cols['A'])

    @property
    def diffusion_coeff(self) -> ndarray:
        return _read_only(self._cols['diffusion_coeff'])

    @property
    def temperature(self) -> ndarray:
        return _read_only(self._cols['temperature'])

    @property
    def density(self) -> ndarray:
        return _read_only(self._cols['density'])

    def snapshot(self) -> 'ParticleView':
        """Return a view over copies of every column, unaffected by later steps."""
        return ParticleView({name: arr.copy() for name, arr in self._cols.items()}, self._elements)

    def copy(self) -> list[Particle]:
        """Return detached records of every particle."""
        return list(self)


################################################################################
# PhysicsModel class
################################################################################

class PhysicsModel:
    """Evolve tracer particles inside a Sedov-Taylor blast wave.

    The shock quantities are pure functions of the explosion energy,
    the ambient density and the elapsed time.  Particles are created
    once, split across the configured element species, and updated in
    place on every call to :meth:`step`.
    """

    def __init__(
        self,
        config: Optional[ModelConfig] = None,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
    ):
        """Create a model with the given parameters.

        Parameters
        ----------
        config: ModelConfig, optional
            Explosion energy, ambient density, element species and
            particle budget.  Defaults are used when omitted.
        rng: numpy.random.Generator, optional
            Source of every random draw made by the model.
        seed: int, optional
            Used to create the generator when ``rng`` is not given.

        Raises
        ------
        InvalidConfiguration
            If the configuration is invalid.  No particles are created.
        """
        self._config: ModelConfig = self._checked(config)
        self._rng: np.random.Generator = rng if rng is not None else np.random.default_rng(seed)
        self._populate()

    @staticmethod
    def _checked(config: Optional[ModelConfig]) -> ModelConfig:
        if config is None:
            config = ModelConfig()
        if not isinstance(config, ModelConfig):
            raise InvalidConfiguration(f"expected ModelConfig, got {type(config).__name__}")
        return config.validate()

    # -------------------------------------------------------------------------
    def _populate(self) -> None:
        """Create the particle ensemble and zero the clock."""
        cfg = self._config
        self._time: float = 0.0
        self._energy: float = float(cfg.energy)
        self._ambient_density: float = float(cfg.density)
        self._elements: tuple[ElementSpecies, ...] = tuple(cfg.elements)

        # Species sizes are floored; the remainder of the budget is dropped.
        counts = [int(math.floor(cfg.particle_budget * e.mass_frac)) for e in self._elements]
        n = int(sum(counts))
        rng = self._rng

        element_index = np.empty(n, dtype=int)
        A = np.empty(n, dtype=int)
        diffusion = np.empty(n, dtype=float)
        xi = np.empty(n, dtype=float)
        theta = np.empty(n, dtype=float)
        phi = np.empty(n, dtype=float)
        mass = np.empty(n, dtype=float)

        start = 0
        for idx, (elem, count) in enumerate(zip(self._elements, counts)):
            sl = slice(start, start + count)
            element_index[sl] = idx
            A[sl] = elem.A
            diffusion[sl] = elem.diffusion_coeff
            # Centrally concentrated progenitor core
            xi[sl] = np.abs(rng.normal(loc=0.0, scale=CORE_SIGMA, size=count)) * CORE_SCALE
            # Uniform direction on the sphere
            u = rng.uniform(-1.0, 1.0, size=count)
            phi[sl] = np.arccos(u)
            theta[sl] = rng.uniform(0.0, 2.0 * math.pi, size=count)
            mass[sl] = elem.A * AMU_G * rng.uniform(0.5, 1.5, size=count)
            start += count

        self._n_particles: int = n
        self._ids: ndarray = np.arange(n, dtype=int)
        self._element_index: ndarray = element_index
        self._A: ndarray = A
        self._diffusion: ndarray = diffusion
        self._xi: ndarray = np.clip(xi, 0.0, 1.0)
        self._theta: ndarray = theta
        self._phi: ndarray = phi
        self._m: ndarray = mass

        # Derived fields are filled by the first step.
        self._r: ndarray = np.zeros((3, n), dtype=float)
        self._v: ndarray = np.zeros((3, n), dtype=float)
        self._temperature: ndarray = np.zeros(n, dtype=float)
        self._density: ndarray = np.zeros(n, dtype=float)

        logger.info(
            "initialised %d particles across %d species (E=%.3g erg, rho=%.3g g/cm^3)",
            n, len(self._elements), self._energy, self._ambient_density,
        )

    def reset(self, config: Optional[ModelConfig] = None) -> None:
        """Rebuild the ensemble at ``time = 0``.

        A new configuration replaces the current one; it is validated
        before anything is discarded.  The random generator carries on
        from its current state.
        """
        if config is not None:
            self._config = self._checked(config)
        self._populate()

    # -------------------------------------------------------------------------
    # Read-only properties
    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def elements(self) -> tuple[ElementSpecies, ...]:
        return self._elements

    @property
    def energy(self) -> float:
        return self._energy

    @property
    def density(self) -> float:
        """Ambient density (g/cm^3)."""
        return self._ambient_density

    @property
    def time(self) -> float:
        return self._time

    @property
    def particle_count(self) -> int:
        return self._n_particles

    def get_elapsed_time(self) -> float:
        """Return the simulated time since the explosion (yr)."""
        return self._time

    def get_particle_count(self) -> int:
        """Return the number of tracer particles."""
        return int(self._n_particles)

    def species_counts(self) -> Dict[str, int]:
        """Return the number of particles of every element species."""
        counts = np.bincount(self._element_index, minlength=len(self._elements))
        return {elem.name: int(c) for elem, c in zip(self._elements, counts)}

    # -------------------------------------------------------------------------
    # Macroscopic shock
    def shock_radius(self) -> float:
        """Shock radius (pc) at the current time."""
        return shock_radius(self._energy, self._ambient_density, self._time)

    def shock_velocity(self) -> float:
        """Shock velocity (km/s) at the current time."""
        return shock_velocity(self._energy, self._ambient_density, self._time)

    def shock_temperature(self) -> float:
        """Post-shock temperature (K) at the current time."""
        return shock_temperature(self._energy, self._ambient_density, self._time)

    def state(self) -> ShockState:
        """Return a fresh snapshot of the macroscopic state."""
        return ShockState(
            time=self._time,
            radius=self.shock_radius(),
            velocity=self.shock_velocity(),
            temperature=self.shock_temperature(),
        )

    def particles(self) -> ParticleView:
        """Return a live, read-only view of the particle ensemble."""
        return ParticleView(
            {
                'ids': self._ids,
                'element_index': self._element_index,
                'm': self._m,
                'A': self._A,
                'diffusion_coeff': self._diffusion,
                'xi': self._xi,
                'theta': self._theta,
                'phi': self._phi,
                'r': self._r,
                'v': self._v,
                'temperature': self._temperature,
                'density': self._density,
            },
            self._elements,
        )

    # -------------------------------------------------------------------------
    def step(self, dt: float) -> ShockState:
        """Advance the system by ``dt`` years.

        ``dt`` is not validated: zero or negative values are a caller
        error.  They give physically meaningless results, but the
        coordinates stay finite and inside their bounds.  Every particle
        array is updated in place.

        Returns
        -------
        ShockState
            The state at the end of the step.
        """
        self._time += dt
        R_shock_pc = self.shock_radius()
        R_shock_cm = R_shock_pc * PARSEC_CM
        v_shock_cmps = self.shock_velocity() * 1e5
        T_shock = self.shock_temperature()

        n = self._n_particles
        rng = self._rng
        dt_sec = dt * YEAR_S

        # Advection with the self-similar flow
        v_radial = v_shock_cmps * velocity_profile(self._xi)

        # Random walk: isotropic direction, projected onto the radial axis
        diffusion_dist = np.sqrt(np.maximum(0.0, 2.0 * self._diffusion * dt_sec))
        u = rng.uniform(-1.0, 1.0, size=n)
        diff_phi = np.arccos(u)
        rng.uniform(0.0, 2.0 * math.pi, size=n)  # azimuth of the kick, unused by the projection
        radial_step = v_radial * dt_sec + diffusion_dist * np.cos(diff_phi)

        if R_shock_cm > 0.0:
            np.clip(self._xi + radial_step / R_shock_cm, 0.0, 1.0, out=self._xi)

        # Small angular jitter breaks exact isotropy of the shell
        self._theta += rng.uniform(-ANGULAR_JITTER, ANGULAR_JITTER, size=n)
        self._phi += rng.uniform(-ANGULAR_JITTER, ANGULAR_JITTER, size=n)
        self._phi[:] = reflect_polar_angle(self._phi)

        self._update_derived(R_shock_pc, v_radial, T_shock)

        logger.debug("t=%.1f yr R=%.4g pc v=%.4g km/s", self._time, R_shock_pc, v_shock_cmps / 1e5)
        return self.state()

    def _update_derived(self, R_shock_pc: float, v_radial: ndarray, T_shock: float) -> None:
        """Recompute Cartesian, kinematic and thermal fields from (xi, theta, phi)."""
        r_pc = self._xi * R_shock_pc
        sin_phi = np.sin(self._phi)
        cos_phi = np.cos(self._phi)
        cos_theta = np.cos(self._theta)
        sin_theta = np.sin(self._theta)
        direction = np.vstack((sin_phi * cos_theta, sin_phi * sin_theta, cos_phi))

        np.multiply(r_pc, direction, out=self._r)
        # Only the advective speed is recorded; diffusion does not enter v.
        np.multiply(v_radial, direction, out=self._v)
        self._temperature[:] = T_shock * np.sqrt(1.0 - self._xi)
        self._density[:] = self._ambient_density * density_profile(self._xi)

    # -------------------------------------------------------------------------
    def __iter__(self) -> 'PhysicsModel':
        return self

    def __next__(self) -> ShockState:
        """Advance by the configured default time step and return the state."""
        return self.step(self._config.time_step)
