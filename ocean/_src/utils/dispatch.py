import math

__all__ = ["MAX_WORKGROUPS_PER_DIMENSION", "find_optimal_dispatch_size", "workgroup_count_for"]

MAX_WORKGROUPS_PER_DIMENSION = 65535
"""Largest number of workgroups a single dispatch dimension may hold."""


def workgroup_count_for(count: int, items_per_workgroup: int) -> int:
    """Number of workgroups needed to cover ``count`` items."""
    return (int(count) + items_per_workgroup - 1) // items_per_workgroup


def find_optimal_dispatch_size(workgroup_count: int, max_per_dimension: int = MAX_WORKGROUPS_PER_DIMENSION):
    """Pick an ``(x, y)`` workgroup grid for ``workgroup_count`` workgroups.

    A 1-D dispatch ``(n, 1)`` is used whenever it fits. Otherwise the count is
    folded into a near-square grid ``(floor(sqrt(n)), ceil(n / x))``; the last
    row may hold a few unused workgroups, which the kernels skip.
    """
    workgroup_count = int(workgroup_count)
    if workgroup_count <= 0:
        raise ValueError(f"workgroup_count must be positive, got {workgroup_count}")
    if max_per_dimension <= 0:
        raise ValueError(f"max_per_dimension must be positive, got {max_per_dimension}")

    if workgroup_count <= max_per_dimension:
        return workgroup_count, 1

    x = int(math.floor(math.sqrt(workgroup_count)))
    y = int(math.ceil(workgroup_count / x))
    if x > max_per_dimension or y > max_per_dimension:
        raise ValueError(
            f"{workgroup_count} workgroups cannot be dispatched with at most {max_per_dimension} per dimension"
        )
    return x, y
