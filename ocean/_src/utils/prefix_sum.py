"""Work-efficient (Blelloch) exclusive prefix sum over ``int32`` buffers.

The scan is organised the way a compute-shader implementation is: each
workgroup of ``wx * wy`` threads scans ``2 * wx * wy`` elements in its own
scratch slice (up-sweep, clear, down-sweep), stores its total in a block-sum
array, and, when more than one workgroup was needed, the block sums are scanned
by recursively applying the same primitive and added back to every block.
"""

from dataclasses import dataclass

import warp as wp

from .dispatch import MAX_WORKGROUPS_PER_DIMENSION, find_optimal_dispatch_size, workgroup_count_for
from .prefix_sum_kernels import (
    add_block_sums_kernel,
    scan_down_sweep_kernel,
    scan_load_kernel,
    scan_save_block_sum_kernel,
    scan_store_kernel,
    scan_up_sweep_kernel,
)

__all__ = ["PrefixSum", "ScanLevel"]


@dataclass
class ScanLevel:
    """One recursion level of the scan: a buffer, its block sums and its dispatch geometry."""

    items: wp.array
    """Buffer scanned in place at this level."""
    count: int
    """Number of logical elements in ``items``."""
    block_sums: wp.array
    """Per-workgroup totals, scanned by the next level when there is more than one."""
    scratch: wp.array
    """Per-workgroup scratch memory (``2 * items_per_workgroup`` per workgroup)."""
    workgroup_count: int
    dispatch_size: tuple


class PrefixSum:
    """Recursive exclusive scan bound to one ``int32`` buffer.

    Args:
        data: Buffer replaced in place by its exclusive prefix sum.
        count: Number of leading elements of ``data`` to scan.
        workgroup_size: ``(x, y)`` threads per workgroup; ``x * y`` must be a power of two.
        avoid_bank_conflicts: Pad scratch addresses so that threads of a warp hit distinct banks.
            Results are identical to the naive addressing.
        max_workgroups_per_dimension: Dispatch limit; larger workgroup counts are folded into 2-D.
        device: Warp device, defaults to the device of ``data``.
    """

    def __init__(
        self,
        data: wp.array,
        count: int,
        workgroup_size=(16, 16),
        avoid_bank_conflicts: bool = False,
        max_workgroups_per_dimension: int = MAX_WORKGROUPS_PER_DIMENSION,
        device=None,
    ):
        self.device = device if device is not None else data.device
        self.max_workgroups_per_dimension = int(max_workgroups_per_dimension)
        self.levels = []
        self.reset(data, count, workgroup_size, avoid_bank_conflicts)

    def reset(self, data: wp.array, count: int, workgroup_size=(16, 16), avoid_bank_conflicts: bool = False):
        """Rebuild the pass list for a new buffer or element count."""
        count = int(count)
        if count < 1:
            raise ValueError(f"count must be at least 1, got {count}")
        if count > data.shape[0]:
            raise ValueError(f"count {count} exceeds buffer length {data.shape[0]}")
        if data.dtype != wp.int32:
            raise ValueError(f"prefix sum expects an int32 buffer, got {data.dtype}")

        threads = int(workgroup_size[0]) * int(workgroup_size[1])
        if threads <= 0 or (threads & (threads - 1)) != 0:
            raise ValueError(f"threads per workgroup must be a power of two, got {workgroup_size}")

        self.workgroup_size = (int(workgroup_size[0]), int(workgroup_size[1]))
        self.threads_per_workgroup = threads
        self.items_per_workgroup = 2 * threads
        self.avoid_bank_conflicts = bool(avoid_bank_conflicts)

        self.levels = []
        self._create_levels(data, count)

    def _create_levels(self, data: wp.array, count: int):
        workgroup_count = workgroup_count_for(count, self.items_per_workgroup)
        dispatch_size = find_optimal_dispatch_size(workgroup_count, self.max_workgroups_per_dimension)

        level = ScanLevel(
            items=data,
            count=count,
            block_sums=wp.zeros(workgroup_count, dtype=wp.int32, device=self.device),
            scratch=wp.zeros(workgroup_count * 2 * self.items_per_workgroup, dtype=wp.int32, device=self.device),
            workgroup_count=workgroup_count,
            dispatch_size=dispatch_size,
        )
        self.levels.append(level)

        if workgroup_count > 1:
            self._create_levels(level.block_sums, workgroup_count)

    def dispatch(self):
        """Scan the bound buffer in place."""
        self._dispatch_level(0)

    def total(self) -> int:
        """Sum of all scanned inputs, read from the top level's single block sum."""
        return int(self.levels[-1].block_sums.numpy()[0])

    def _dispatch_level(self, index: int):
        level = self.levels[index]
        self._scan_blocks(level)

        if level.workgroup_count > 1:
            self._dispatch_level(index + 1)
            wp.launch(
                add_block_sums_kernel,
                dim=self._launch_dim(level),
                inputs=[
                    level.items,
                    level.block_sums,
                    level.count,
                    level.workgroup_count,
                    level.dispatch_size[0],
                    self.threads_per_workgroup,
                ],
                device=self.device,
            )

    def _launch_dim(self, level: ScanLevel):
        dispatch_x, dispatch_y = level.dispatch_size
        return (dispatch_y, dispatch_x, self.threads_per_workgroup)

    def _scan_blocks(self, level: ScanLevel):
        dim = self._launch_dim(level)
        dispatch_x = level.dispatch_size[0]
        threads = self.threads_per_workgroup
        items_per_workgroup = self.items_per_workgroup
        avoid = int(self.avoid_bank_conflicts)

        wp.launch(
            scan_load_kernel,
            dim=dim,
            inputs=[level.items, level.scratch, level.count, level.workgroup_count, dispatch_x, threads, avoid],
            device=self.device,
        )

        # up-sweep (reduce)
        offset = 1
        depth = items_per_workgroup >> 1
        while depth > 0:
            wp.launch(
                scan_up_sweep_kernel,
                dim=dim,
                inputs=[level.scratch, level.workgroup_count, dispatch_x, threads, depth, offset, avoid],
                device=self.device,
            )
            offset *= 2
            depth >>= 1

        wp.launch(
            scan_save_block_sum_kernel,
            dim=dim,
            inputs=[level.scratch, level.block_sums, level.workgroup_count, dispatch_x, threads, avoid],
            device=self.device,
        )

        # down-sweep
        depth = 1
        while depth < items_per_workgroup:
            offset >>= 1
            wp.launch(
                scan_down_sweep_kernel,
                dim=dim,
                inputs=[level.scratch, level.workgroup_count, dispatch_x, threads, depth, offset, avoid],
                device=self.device,
            )
            depth *= 2

        wp.launch(
            scan_store_kernel,
            dim=dim,
            inputs=[level.items, level.scratch, level.count, level.workgroup_count, dispatch_x, threads, avoid],
            device=self.device,
        )

