import numpy as np
import pytest
import warp as wp

from ocean._src.utils.dispatch import find_optimal_dispatch_size, workgroup_count_for
from ocean._src.utils.prefix_sum import PrefixSum

wp.init()
DEVICE = "cpu"


def exclusive_scan(values):
    values = np.asarray(values, dtype=np.int64)
    out = np.zeros_like(values)
    if values.size > 1:
        out[1:] = np.cumsum(values[:-1])
    return out


def run_scan(values, **kwargs):
    data = wp.array(np.asarray(values, dtype=np.int32), dtype=wp.int32, device=DEVICE)
    scan = PrefixSum(data, len(values), device=DEVICE, **kwargs)
    scan.dispatch()
    return data.numpy(), scan


@pytest.mark.parametrize("count", [1, 2, 7, 511, 512, 513, 1024, 5000])
@pytest.mark.parametrize("avoid_bank_conflicts", [False, True])
def test_exclusive_scan_matches_reference(count, avoid_bank_conflicts):
    rng = np.random.default_rng(count)
    values = rng.integers(0, 16, size=count)

    result, scan = run_scan(values, avoid_bank_conflicts=avoid_bank_conflicts)

    np.testing.assert_array_equal(result, exclusive_scan(values))
    assert scan.total() == int(values.sum())


def test_multi_level_recursion():
    # 8 items per workgroup -> 3000 / 8 / 8 / 8 needs four levels
    rng = np.random.default_rng(3)
    values = rng.integers(0, 100, size=3000)

    result, scan = run_scan(values, workgroup_size=(2, 2))

    assert len(scan.levels) == 4
    assert scan.levels[-1].workgroup_count == 1
    np.testing.assert_array_equal(result, exclusive_scan(values))
    assert scan.total() == int(values.sum())


def test_two_dimensional_dispatch():
    rng = np.random.default_rng(11)
    values = rng.integers(0, 50, size=8 * 17 + 3)

    result, scan = run_scan(values, workgroup_size=(4, 1), max_workgroups_per_dimension=5)

    assert scan.levels[0].workgroup_count == 18
    assert scan.levels[0].dispatch_size == (4, 5)
    np.testing.assert_array_equal(result, exclusive_scan(values))


def test_padding_beyond_count_is_untouched():
    values = np.arange(1, 11, dtype=np.int32)
    buffer = np.full(16, -7, dtype=np.int32)
    buffer[:10] = values
    data = wp.array(buffer, dtype=wp.int32, device=DEVICE)

    PrefixSum(data, 10, workgroup_size=(2, 2), device=DEVICE).dispatch()
    out = data.numpy()

    np.testing.assert_array_equal(out[:10], exclusive_scan(values))
    np.testing.assert_array_equal(out[10:], np.full(6, -7))


def test_reset_rebinds_count():
    data = wp.array(np.ones(600, dtype=np.int32), dtype=wp.int32, device=DEVICE)
    scan = PrefixSum(data, 600, device=DEVICE)
    assert len(scan.levels) == 2

    scan.reset(data, 100)
    assert len(scan.levels) == 1
    scan.dispatch()

    out = data.numpy()
    np.testing.assert_array_equal(out[:100], np.arange(100))
    np.testing.assert_array_equal(out[100:], np.ones(500))


def test_invalid_arguments():
    data = wp.zeros(8, dtype=wp.int32, device=DEVICE)
    with pytest.raises(ValueError):
        PrefixSum(data, 0, device=DEVICE)
    with pytest.raises(ValueError):
        PrefixSum(data, 9, device=DEVICE)
    with pytest.raises(ValueError):
        PrefixSum(data, 8, workgroup_size=(3, 1), device=DEVICE)


def test_dispatch_size_factoring():
    assert find_optimal_dispatch_size(10, 65535) == (10, 1)
    assert find_optimal_dispatch_size(65535, 65535) == (65535, 1)

    x, y = find_optimal_dispatch_size(100000, 65535)
    assert (x, y) == (316, 317)
    assert x * y >= 100000

    with pytest.raises(ValueError):
        find_optimal_dispatch_size(1000, 10)
    assert workgroup_count_for(513, 512) == 2
