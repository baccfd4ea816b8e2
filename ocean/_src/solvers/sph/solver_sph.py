import warnings
from dataclasses import dataclass

import numpy as np
import warp as wp

from ..dam_break import dam_break_lattice
from ..solver import FluidSolver
from .sph_kernels import compute_density_kernel, compute_force_kernel, copy_position_kernel, integrate_kernel
from .sph_types import SPHParameters, allocate_particles
from .spatial_grid import SpatialGrid, grid_count_of, make_environment

__all__ = ["SPHOptions", "SolverSPH"]


@dataclass
class SPHOptions:
    """Grid-accelerated SPH solver options."""

    kernel_radius: float = 0.07
    """Smoothing length ``h``; also the grid cell size."""
    mass: float = 1.0
    """Mass of every particle."""
    stiffness: float = 20.0
    """Pressure stiffness, ``p = stiffness * (density - rest_density)``."""
    near_stiffness: float = 1.0
    """Near-pressure stiffness, ``p_near = near_stiffness * near_density``."""
    rest_density: float = 15000.0
    """Target density."""
    viscosity: float = 100.0
    """Viscosity coefficient."""
    dt: float = 0.006
    """Substep length."""
    num_substeps: int = 2
    """Substeps per call to ``compute``."""
    gravity: tuple = (0.0, -9.8, 0.0)
    """Gravity acceleration."""
    restitution: float = 0.5
    """Fraction of the normal velocity kept when a particle is reflected by a wall."""

    # lattice
    lattice_spacing_ratio: float = 0.5
    """Dam-break lattice spacing as a fraction of the kernel radius."""
    jitter_ratio: float = 0.001
    """Dam-break jitter amplitude as a fraction of the kernel radius."""
    seed: int = 0
    """Seed of the jitter generator."""

    # capacity
    max_particles: int = 200000
    """Particle buffer capacity."""
    max_grid_count: int = 1 << 21
    """Cell counter capacity."""
    scan_workgroup_size: tuple = (16, 16)
    """Workgroup shape of the prefix sum."""

    verbose: bool = False
    """Print a summary on every reset."""


class SolverSPH(FluidSolver):
    """Weakly compressible SPH with double-density relaxation on a counting-sorted grid.

    Each substep runs::

        clear -> build -> scan -> reorder -> density -> reorder -> force -> integrate

    The second reorder re-scatters the particles into the same sorted slots so the
    force pass sees the densities computed in this substep. ``compute`` finishes
    with a copy of positions and velocities into ``posvel``.

    Args:
        options: Solver options.
        device: Warp device.
        posvel: Optional ``(max_particles, 2)`` vec3 output buffer shared with a renderer.
    """

    Options = SPHOptions

    def __init__(self, options: SPHOptions = None, device=None, posvel: wp.array = None):
        self.options = options if options is not None else SPHOptions()
        self.device = wp.get_device(device)
        opts = self.options

        self.max_particles = int(opts.max_particles)
        self.particles = allocate_particles(self.max_particles, self.device)
        self.sorted_particles = allocate_particles(self.max_particles, self.device)
        self.grid = SpatialGrid(
            self.max_particles, opts.max_grid_count, scan_workgroup_size=opts.scan_workgroup_size, device=self.device
        )

        if posvel is None:
            posvel = wp.zeros((self.max_particles, 2), dtype=wp.vec3, device=self.device)
        elif posvel.shape[0] < self.max_particles:
            raise ValueError(f"posvel holds {posvel.shape[0]} rows, need {self.max_particles}")
        self.posvel = posvel

        self.params = self._make_params()
        self.env = None
        self.num_particles = 0

    def _make_params(self) -> SPHParameters:
        opts = self.options
        h = float(opts.kernel_radius)
        params = SPHParameters()
        params.mass = float(opts.mass)
        params.kernel_radius = h
        params.kernel_radius_pow2 = h**2
        params.kernel_radius_pow6 = h**6
        params.kernel_radius_pow9 = h**9
        params.dt = float(opts.dt)
        params.stiffness = float(opts.stiffness)
        params.near_stiffness = float(opts.near_stiffness)
        params.rest_density = float(opts.rest_density)
        params.viscosity = float(opts.viscosity)
        params.gravity = wp.vec3(*[float(g) for g in opts.gravity])
        params.restitution = float(opts.restitution)
        params.real_half_extents = wp.vec3(0.0)
        return params

    def reset(self, num_particles: int, box_size) -> bool:
        """Fill the lower half of the box ``[-box_size, box_size]`` with a dam-break lattice.

        ``box_size`` holds the half extents. Returns ``False`` and keeps the current
        state when the particle count or the implied grid exceeds the preallocated capacity.
        """
        opts = self.options
        num_particles = int(num_particles)
        half = np.asarray(box_size, dtype=np.float64)

        if num_particles <= 0 or num_particles > self.max_particles:
            warnings.warn(
                f"SPH reset rejected: {num_particles} particles, capacity is {self.max_particles}", stacklevel=2
            )
            return False
        if np.any(half <= 0.0):
            warnings.warn(
                f"SPH reset rejected: box half extents must be positive, got {tuple(half)}", stacklevel=2
            )
            return False

        env = make_environment(half, opts.kernel_radius)
        grid_count = grid_count_of(env)
        if grid_count > self.grid.max_grid_count:
            warnings.warn(
                f"SPH reset rejected: box {tuple(half)} needs {grid_count} cells, "
                f"capacity is {self.grid.max_grid_count}",
                stacklevel=2,
            )
            return False

        spacing = opts.lattice_spacing_ratio * opts.kernel_radius
        lo = -0.95 * half
        hi = np.array([0.95 * half[0], 0.95 * half[1], 0.0])
        positions = dam_break_lattice(
            lo, hi, spacing, num_particles, jitter=opts.jitter_ratio * opts.kernel_radius, seed=opts.seed
        )
        if len(positions) == 0:
            warnings.warn(
                f"SPH reset rejected: box {tuple(half)} is too small for spacing {spacing}", stacklevel=2
            )
            return False
        if len(positions) < num_particles:
            warnings.warn(
                f"SPH dam break holds {len(positions)} of {num_particles} requested particles", stacklevel=2
            )
        num_particles = len(positions)

        self.grid.set_environment(env)
        self.env = env

        count = num_particles
        zeros3 = np.zeros((count, 3), dtype=np.float32)
        zeros1 = np.zeros(count, dtype=np.float32)
        wp.copy(self.particles.position, wp.array(positions, dtype=wp.vec3, device=self.device), count=count)
        wp.copy(self.particles.velocity, wp.array(zeros3, dtype=wp.vec3, device=self.device), count=count)
        wp.copy(self.particles.force, wp.array(zeros3, dtype=wp.vec3, device=self.device), count=count)
        wp.copy(self.particles.density, wp.array(zeros1, dtype=float, device=self.device), count=count)
        wp.copy(self.particles.near_density, wp.array(zeros1, dtype=float, device=self.device), count=count)

        self.num_particles = count
        self.params.real_half_extents = wp.vec3(float(half[0]), float(half[1]), float(half[2]))

        if opts.verbose:
            print(
                f"SPH reset: {count} particles, box half extents {tuple(half)}, "
                f"grid {tuple(env.grid_dim)} ({grid_count} cells)"
            )
        return True

    def change_box_size(self, real_box_size):
        """Move the integration walls to ``real_box_size`` half extents.

        The walls cannot move past the box the grid was built for.
        """
        if self.env is None:
            warnings.warn("SPH change_box_size ignored: solver has not been reset", stacklevel=2)
            return
        requested = np.asarray(real_box_size, dtype=np.float64)
        limit = np.array([self.env.half_extents[0], self.env.half_extents[1], self.env.half_extents[2]])
        real = np.clip(requested, 0.0, limit)
        if np.any(real != requested):
            warnings.warn(f"SPH box size {tuple(requested)} clamped to {tuple(real)}", stacklevel=2)
        self.params.real_half_extents = wp.vec3(float(real[0]), float(real[1]), float(real[2]))

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
        self.copy_position()

    def substep(self):
        n = self.num_particles
        self.grid.update(self.particles, self.sorted_particles, n)
        self._density()
        self.grid.reorder(self.particles, self.sorted_particles, n)
        self._force()
        self._integrate()

    def _density(self):
        wp.launch(
            compute_density_kernel,
            dim=self.num_particles,
            inputs=[self.particles, self.sorted_particles, self.grid.cell_offsets, self.env, self.params],
            device=self.device,
        )

    def _force(self):
        wp.launch(
            compute_force_kernel,
            dim=self.num_particles,
            inputs=[
                self.particles,
                self.sorted_particles,
                self.grid.cell_offsets,
                self.grid.sorted_index,
                self.env,
                self.params,
            ],
            device=self.device,
        )

    def _integrate(self):
        wp.launch(integrate_kernel, dim=self.num_particles, inputs=[self.particles, self.params], device=self.device)

    def copy_position(self):
        wp.launch(
            copy_position_kernel,
            dim=self.num_particles,
            inputs=[self.particles, self.posvel],
            device=self.device,
        )
