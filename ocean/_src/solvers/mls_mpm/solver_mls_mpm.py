import warnings
from dataclasses import dataclass

import numpy as np
import warp as wp

from ..dam_break import dam_break_lattice
from ..solver import FluidSolver
from .mls_kernels import clear_grid_kernel, copy_position_kernel, g2p_kernel, p2g_1_kernel, p2g_2_kernel, update_grid_kernel
from .mls_types import FIXED_POINT_MULTIPLIER, MLSMPMParameters, allocate_grid, allocate_particles

__all__ = ["MLSMPMOptions", "SolverMLSMPM"]

# particles are clamped to [1, real - 2] on every axis
MIN_REAL_BOX_SIZE = 4.0


@dataclass
class MLSMPMOptions:
    """MLS-MPM fluid solver options. Lengths are in grid cells."""

    stiffness: float = 3.0
    """Equation-of-state stiffness, ``p = max(0, stiffness * (density - rest_density))``."""
    rest_density: float = 4.0
    """Target grid density."""
    dynamic_viscosity: float = 0.1
    """Viscous stress coefficient applied to ``C + C^T``."""
    dt: float = 0.2
    """Substep length."""
    num_substeps: int = 2
    """Substeps per call to ``compute``."""
    gravity: tuple = (0.0, -0.3, 0.0)
    """Gravity acceleration."""
    particle_mass: float = 1.0
    """Mass of every particle."""
    wall_stiffness: float = 0.3
    """Strength of the velocity push applied near the box walls."""
    fixed_point_multiplier: float = FIXED_POINT_MULTIPLIER
    """Scale of the integer grid accumulators."""

    # lattice
    lattice_spacing: float = 0.65
    """Dam-break lattice spacing."""
    jitter: float = 0.01
    """Dam-break jitter amplitude."""
    seed: int = 0
    """Seed of the jitter generator."""

    # capacity
    max_particles: int = 200000
    """Particle buffer capacity."""
    max_grid_size: tuple = (64, 64, 64)
    """Largest grid the solver allocates for, in nodes per axis."""

    verbose: bool = False
    """Print a summary on every reset."""


class SolverMLSMPM(FluidSolver):
    """MLS-MPM fluid with fixed-point atomic particle-to-grid transfers.

    The simulation box spans ``[0, box_size)`` in grid units with one node per unit
    cell. Each substep runs::

        clear grid -> P2G (mass, momentum) -> P2G (stress) -> update grid -> G2P -> copy position

    Args:
        options: Solver options.
        device: Warp device.
        posvel: Optional ``(max_particles, 2)`` vec3 output buffer shared with a renderer.
    """

    Options = MLSMPMOptions

    def __init__(self, options: MLSMPMOptions = None, device=None, posvel: wp.array = None):
        self.options = options if options is not None else MLSMPMOptions()
        self.device = wp.get_device(device)
        opts = self.options

        self.max_particles = int(opts.max_particles)
        self.max_grid_count = int(np.prod(opts.max_grid_size))
        self.particles = allocate_particles(self.max_particles, self.device)
        self.grid = allocate_grid(self.max_grid_count, self.device)

        if posvel is None:
            posvel = wp.zeros((self.max_particles, 2), dtype=wp.vec3, device=self.device)
        elif posvel.shape[0] < self.max_particles:
            raise ValueError(f"posvel holds {posvel.shape[0]} rows, need {self.max_particles}")
        self.posvel = posvel

        self.params = MLSMPMParameters()
        self.params.grid_dim = wp.vec3i(0, 0, 0)
        self.params.init_box_size = wp.vec3(0.0)
        self.params.real_box_size = wp.vec3(0.0)
        self.params.dt = float(opts.dt)
        self.params.particle_mass = float(opts.particle_mass)
        self.params.stiffness = float(opts.stiffness)
        self.params.rest_density = float(opts.rest_density)
        self.params.dynamic_viscosity = float(opts.dynamic_viscosity)
        self.params.gravity = wp.vec3(*[float(g) for g in opts.gravity])
        self.params.wall_stiffness = float(opts.wall_stiffness)
        self.params.fixed_point_multiplier = float(opts.fixed_point_multiplier)

        self.num_particles = 0
        self.grid_count = 0

    @property
    def init_box_size(self) -> np.ndarray:
        b = self.params.init_box_size
        return np.array([b[0], b[1], b[2]])

    @property
    def real_box_size(self) -> np.ndarray:
        b = self.params.real_box_size
        return np.array([b[0], b[1], b[2]])

    def reset(self, num_particles: int, box_size) -> bool:
        """Fill a corner of the box ``[0, box_size)`` with a dam-break lattice.

        Returns ``False`` and keeps the current state when the particle count or
        the grid needed for ``box_size`` exceeds the preallocated capacity.
        """
        opts = self.options
        num_particles = int(num_particles)
        box = np.asarray(box_size, dtype=np.float64)

        if num_particles <= 0 or num_particles > self.max_particles:
            warnings.warn(
                f"MLS-MPM reset rejected: {num_particles} particles, capacity is {self.max_particles}", stacklevel=2
            )
            return False
        if np.any(box <= 0.0):
            warnings.warn(f"MLS-MPM reset rejected: box size must be positive, got {tuple(box)}", stacklevel=2)
            return False

        dims = [int(np.ceil(b)) for b in box]
        grid_count = dims[0] * dims[1] * dims[2]
        if grid_count > self.max_grid_count:
            warnings.warn(
                f"MLS-MPM reset rejected: box {tuple(box)} needs {grid_count} grid nodes, "
                f"capacity is {self.max_grid_count}",
                stacklevel=2,
            )
            return False

        lo = np.array([3.0, 3.0, 3.0])
        hi = np.array([box[0] - 4.0, box[1] - 4.0, box[2] / 2.0])
        positions = dam_break_lattice(lo, hi, opts.lattice_spacing, num_particles, jitter=opts.jitter, seed=opts.seed)
        if len(positions) == 0:
            warnings.warn(
                f"MLS-MPM reset rejected: box {tuple(box)} is too small for the dam break", stacklevel=2
            )
            return False
        if len(positions) < num_particles:
            warnings.warn(
                f"MLS-MPM dam break holds {len(positions)} of {num_particles} requested particles", stacklevel=2
            )

        count = len(positions)
        wp.copy(self.particles.position, wp.array(positions, dtype=wp.vec3, device=self.device), count=count)
        self.particles.velocity.zero_()
        self.particles.C.zero_()

        self.num_particles = count
        self.grid_count = grid_count
        self.params.grid_dim = wp.vec3i(dims[0], dims[1], dims[2])
        self.params.init_box_size = wp.vec3(float(box[0]), float(box[1]), float(box[2]))
        self.params.real_box_size = wp.vec3(float(box[0]), float(box[1]), float(box[2]))

        if opts.verbose:
            print(f"MLS-MPM reset: {count} particles, box {tuple(box)}, grid {tuple(dims)} ({grid_count} nodes)")
        return True

    def change_box_size(self, real_box_size):
        """Move the walls to ``real_box_size`` without touching particle data.

        The walls cannot move past the box the solver was reset with, nor closer
        than ``MIN_REAL_BOX_SIZE`` to the origin.
        """
        if self.num_particles == 0:
            warnings.warn("MLS-MPM change_box_size ignored: solver has not been reset", stacklevel=2)
            return
        requested = np.asarray(real_box_size, dtype=np.float64)
        real = np.clip(requested, MIN_REAL_BOX_SIZE, self.init_box_size)
        if np.any(real != requested):
            warnings.warn(f"MLS-MPM box size {tuple(requested)} clamped to {tuple(real)}", stacklevel=2)
        self.params.real_box_size = wp.vec3(float(real[0]), float(real[1]), float(real[2]))

    def compute(self, stream: wp.Stream = None):
        if self.num_particles == 0:
            return
        if stream is not None:
            with wp.ScopedStream(stream):
                self._compute()
        else:
            self._compute()

    def _compute(self):
        for _ in range(int(self.options.num_substeps)):
            self.substep()

    def substep(self):
        self._clear_grid()
        self._p2g_1()
        self._p2g_2()
        self._update_grid()
        self._g2p()
        self._copy_position()

    def _clear_grid(self):
        wp.launch(clear_grid_kernel, dim=self.grid_count, inputs=[self.grid], device=self.device)

    def _p2g_1(self):
        wp.launch(
            p2g_1_kernel, dim=self.num_particles, inputs=[self.particles, self.grid, self.params], device=self.device
        )

    def _p2g_2(self):
        wp.launch(
            p2g_2_kernel, dim=self.num_particles, inputs=[self.particles, self.grid, self.params], device=self.device
        )

    def _update_grid(self):
        wp.launch(update_grid_kernel, dim=self.grid_count, inputs=[self.grid, self.params], device=self.device)

    def _g2p(self):
        wp.launch(
            g2p_kernel, dim=self.num_particles, inputs=[self.particles, self.grid, self.params], device=self.device
        )

    def _copy_position(self):
        wp.launch(
            copy_position_kernel,
            dim=self.num_particles,
            inputs=[self.particles, self.params, self.posvel],
            device=self.device,
        )
