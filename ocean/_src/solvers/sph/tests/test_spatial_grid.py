import numpy as np
import pytest
import warp as wp

from ocean._src.solvers.sph.spatial_grid import SpatialGrid, grid_count_of, make_environment
from ocean._src.solvers.sph.sph_types import allocate_particles

wp.init()
DEVICE = "cpu"


def make_particles(positions, capacity=None):
    capacity = capacity or len(positions)
    particles = allocate_particles(capacity, DEVICE)
    src = wp.array(np.asarray(positions, dtype=np.float32), dtype=wp.vec3, device=DEVICE)
    wp.copy(particles.position, src, count=len(positions))
    return particles


def host_cell_ids(positions, env):
    # same float32 arithmetic as the kernel
    half = np.array([env.half_extents[0], env.half_extents[1], env.half_extents[2]], dtype=np.float32)
    dims = np.array([env.grid_dim[0], env.grid_dim[1], env.grid_dim[2]])
    inv_cell_size = np.float32(1.0) / np.float32(env.cell_size)
    coords = np.floor((positions.astype(np.float32) + half + np.float32(env.offset)) * inv_cell_size).astype(np.int64)
    coords = np.clip(coords, 0, dims - 1)
    return coords[:, 0] * dims[1] * dims[2] + coords[:, 1] * dims[2] + coords[:, 2]


@pytest.fixture
def scattered():
    rng = np.random.default_rng(7)
    positions = rng.uniform(-0.5, 0.5, size=(3000, 3)).astype(np.float32)
    env = make_environment((0.5, 0.5, 0.5), 0.1)
    grid = SpatialGrid(len(positions), 4096, device=DEVICE)
    grid.set_environment(env)
    return positions, env, grid


def test_environment_pads_the_box():
    env = make_environment((0.5, 1.0, 0.25), 0.05, padding_cells=2)

    assert env.offset == pytest.approx(0.1)
    dims = [env.grid_dim[0], env.grid_dim[1], env.grid_dim[2]]
    for d, h in zip(dims, (0.5, 1.0, 0.25)):
        assert d * 0.05 >= 2.0 * h + 0.2 - 1.0e-6
    assert grid_count_of(env) == dims[0] * dims[1] * dims[2]


def test_offsets_partition_particles(scattered):
    positions, env, grid = scattered
    n = len(positions)
    src = make_particles(positions)
    dst = allocate_particles(n, DEVICE)

    grid.update(src, dst, n)

    offsets = grid.cell_offsets.numpy()[: grid.grid_count + 1]
    assert offsets[0] == 0
    assert offsets[-1] == n
    assert np.all(np.diff(offsets) >= 0)

    cells = host_cell_ids(positions, env)
    counts = np.bincount(cells, minlength=grid.grid_count)
    np.testing.assert_array_equal(np.diff(offsets), counts)


def test_reorder_is_a_permutation(scattered):
    positions, env, grid = scattered
    n = len(positions)
    src = make_particles(positions)
    dst = allocate_particles(n, DEVICE)

    grid.update(src, dst, n)

    sorted_index = grid.sorted_index.numpy()[:n]
    assert sorted(sorted_index.tolist()) == list(range(n))

    sorted_positions = dst.position.numpy()[:n]
    np.testing.assert_array_equal(sorted_positions[sorted_index], positions)

    # every slot of a cell's range holds a particle from that cell
    offsets = grid.cell_offsets.numpy()
    cells = host_cell_ids(positions, env)
    slot_cell = np.empty(n, dtype=np.int64)
    slot_cell[sorted_index] = cells
    for c in np.unique(cells):
        assert np.all(slot_cell[offsets[c] : offsets[c + 1]] == c)


def test_cpu_sort_is_stable(scattered):
    positions, env, grid = scattered
    n = len(positions)
    src = make_particles(positions)
    dst = allocate_particles(n, DEVICE)

    grid.update(src, dst, n)

    # the CPU backend runs threads in order, so ranks follow the particle index
    cells = host_cell_ids(positions, env)
    expected = np.argsort(cells, kind="stable")
    sorted_index = grid.sorted_index.numpy()[:n]
    np.testing.assert_array_equal(sorted_index[expected], np.arange(n))


def test_rebuild_clears_previous_counts(scattered):
    positions, env, grid = scattered
    n = len(positions)
    src = make_particles(positions)
    dst = allocate_particles(n, DEVICE)

    grid.update(src, dst, n)
    grid.update(src, dst, n)

    assert grid.cell_offsets.numpy()[grid.grid_count] == n


def test_out_of_box_particles_land_in_border_cells():
    env = make_environment((0.5, 0.5, 0.5), 0.1)
    grid = SpatialGrid(4, 4096, device=DEVICE)
    grid.set_environment(env)
    positions = np.array([[-9.0, 0.0, 0.0], [9.0, 9.0, 9.0], [0.0, -9.0, 0.0], [0.0, 0.0, 0.0]], dtype=np.float32)
    src = make_particles(positions)
    dst = allocate_particles(4, DEVICE)

    grid.update(src, dst, 4)

    assert grid.cell_offsets.numpy()[grid.grid_count] == 4
    cells = grid.cell_index.numpy()
    assert cells.min() >= 0
    assert cells.max() == grid.grid_count - 1


def test_environment_over_capacity_raises():
    grid = SpatialGrid(16, 100, device=DEVICE)
    with pytest.raises(ValueError):
        grid.set_environment(make_environment((1.0, 1.0, 1.0), 0.1))
