"""Uniform spatial grid built by counting sort.

Each substep the grid is rebuilt from scratch:

1) ``clear``   zero ``grid_count + 1`` cell counters (the extra slot is a sentinel
               so that ``offsets[c + 1]`` is valid for the last cell)
2) ``build``   bin every particle and take its rank within the cell from the
               pre-increment value of an atomic add
3) ``scan``    exclusive prefix sum of the counters -> per-cell start offsets
4) ``reorder`` scatter particles to ``offsets[cell] + rank``

After ``scan`` the particles of cell ``c`` occupy ``[offsets[c], offsets[c + 1])``
of the sorted array and ``offsets[grid_count]`` equals the particle count.
"""

import math

import warp as wp

from ...utils.prefix_sum import PrefixSum
from .sph_kernels import grid_build_kernel, grid_clear_kernel, reorder_kernel
from .sph_types import SPHEnvironment, SPHParticleData

__all__ = ["SpatialGrid", "make_environment"]


def make_environment(half_extents, cell_size: float, padding_cells: int = 2) -> SPHEnvironment:
    """Environment uniform for a box ``[-half, half]`` padded by ``padding_cells`` on every side."""
    env = SPHEnvironment()
    env.cell_size = float(cell_size)
    env.offset = float(padding_cells) * float(cell_size)
    env.half_extents = wp.vec3(float(half_extents[0]), float(half_extents[1]), float(half_extents[2]))
    dims = [int(math.ceil((2.0 * float(h) + 2.0 * env.offset) / env.cell_size)) for h in half_extents]
    env.grid_dim = wp.vec3i(dims[0], dims[1], dims[2])
    return env


def grid_count_of(env: SPHEnvironment) -> int:
    return int(env.grid_dim[0]) * int(env.grid_dim[1]) * int(env.grid_dim[2])


class SpatialGrid:
    """Cell-sorted particle index with buffers preallocated for ``max_grid_count`` cells.

    Args:
        max_particles: Capacity of the per-particle index arrays.
        max_grid_count: Largest number of cells any environment may use.
        scan_workgroup_size: Workgroup shape used by the prefix sum.
        device: Warp device.
    """

    def __init__(self, max_particles: int, max_grid_count: int, scan_workgroup_size=(16, 16), device=None):
        self.device = wp.get_device(device)
        self.max_particles = int(max_particles)
        self.max_grid_count = int(max_grid_count)
        self.scan_workgroup_size = scan_workgroup_size

        self.cell_counts = wp.zeros(self.max_grid_count + 1, dtype=wp.int32, device=self.device)
        """Per-cell counters, replaced in place by start offsets after ``scan``."""
        self.cell_index = wp.zeros(self.max_particles, dtype=wp.int32, device=self.device)
        self.cell_rank = wp.zeros(self.max_particles, dtype=wp.int32, device=self.device)
        self.sorted_index = wp.zeros(self.max_particles, dtype=wp.int32, device=self.device)
        """Destination of each particle in the sorted array."""

        self.env = None
        self.grid_count = 0
        self.prefix_sum = None

    @property
    def cell_offsets(self) -> wp.array:
        return self.cell_counts

    def set_environment(self, env: SPHEnvironment):
        grid_count = grid_count_of(env)
        if grid_count > self.max_grid_count:
            raise ValueError(f"grid of {grid_count} cells exceeds capacity {self.max_grid_count}")

        self.env = env
        self.grid_count = grid_count
        if self.prefix_sum is None:
            self.prefix_sum = PrefixSum(
                self.cell_counts, grid_count + 1, workgroup_size=self.scan_workgroup_size, device=self.device
            )
        else:
            self.prefix_sum.reset(self.cell_counts, grid_count + 1, workgroup_size=self.scan_workgroup_size)

    def clear(self):
        wp.launch(grid_clear_kernel, dim=self.grid_count + 1, inputs=[self.cell_counts], device=self.device)

    def build(self, particles: SPHParticleData, num_particles: int):
        wp.launch(
            grid_build_kernel,
            dim=num_particles,
            inputs=[particles, self.env, self.cell_counts, self.cell_index, self.cell_rank],
            device=self.device,
        )

    def scan(self):
        self.prefix_sum.dispatch()

    def reorder(self, src: SPHParticleData, dst: SPHParticleData, num_particles: int):
        wp.launch(
            reorder_kernel,
            dim=num_particles,
            inputs=[src, dst, self.cell_counts, self.cell_index, self.cell_rank, self.sorted_index],
            device=self.device,
        )

    def update(self, src: SPHParticleData, dst: SPHParticleData, num_particles: int):
        """Rebuild the grid from ``src`` and write the cell-sorted copy into ``dst``."""
        self.clear()
        self.build(src, num_particles)
        self.scan()
        self.reorder(src, dst, num_particles)
