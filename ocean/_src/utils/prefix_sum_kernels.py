import warp as wp

# Every kernel in this module is launched over (dispatch_y, dispatch_x, threads_per_workgroup)
# threads. Workgroup ``wid`` owns a scratch slice of 2 * items_per_workgroup elements starting at
# wid * 4 * threads_per_workgroup; consecutive launches on that slice stand in for workgroup barriers.

LOG_NUM_BANKS = wp.constant(5)
"""log2 of the number of shared-memory banks used for conflict-free padding"""


@wp.func
def scratch_index(index: int, avoid_bank_conflicts: int):
    if avoid_bank_conflicts != 0:
        return index + (index >> LOG_NUM_BANKS)
    return index


@wp.func
def flat_workgroup_id(wg_y: int, wg_x: int, dispatch_x: int):
    return wg_x + wg_y * dispatch_x


@wp.kernel
def scan_load_kernel(
    items: wp.array(dtype=wp.int32),
    scratch: wp.array(dtype=wp.int32),
    element_count: int,
    workgroup_count: int,
    dispatch_x: int,
    threads_per_workgroup: int,
    avoid_bank_conflicts: int,
):
    wg_y, wg_x, tid = wp.tid()
    wid = flat_workgroup_id(wg_y, wg_x, dispatch_x)
    if wid >= workgroup_count:
        return

    items_per_workgroup = 2 * threads_per_workgroup
    base = wid * 2 * items_per_workgroup

    # element pair owned by this thread
    ai = 2 * tid
    bi = 2 * tid + 1
    if avoid_bank_conflicts != 0:
        ai = tid
        bi = tid + threads_per_workgroup

    g_ai = wid * items_per_workgroup + ai
    g_bi = wid * items_per_workgroup + bi

    value_a = wp.int32(0)
    value_b = wp.int32(0)
    if g_ai < element_count:
        value_a = items[g_ai]
    if g_bi < element_count:
        value_b = items[g_bi]

    scratch[base + scratch_index(ai, avoid_bank_conflicts)] = value_a
    scratch[base + scratch_index(bi, avoid_bank_conflicts)] = value_b


@wp.kernel
def scan_up_sweep_kernel(
    scratch: wp.array(dtype=wp.int32),
    workgroup_count: int,
    dispatch_x: int,
    threads_per_workgroup: int,
    depth: int,
    offset: int,
    avoid_bank_conflicts: int,
):
    wg_y, wg_x, tid = wp.tid()
    wid = flat_workgroup_id(wg_y, wg_x, dispatch_x)
    if wid >= workgroup_count or tid >= depth:
        return

    base = wid * 4 * threads_per_workgroup
    ai = base + scratch_index(offset * (2 * tid + 1) - 1, avoid_bank_conflicts)
    bi = base + scratch_index(offset * (2 * tid + 2) - 1, avoid_bank_conflicts)
    scratch[bi] = scratch[bi] + scratch[ai]


@wp.kernel
def scan_save_block_sum_kernel(
    scratch: wp.array(dtype=wp.int32),
    block_sums: wp.array(dtype=wp.int32),
    workgroup_count: int,
    dispatch_x: int,
    threads_per_workgroup: int,
    avoid_bank_conflicts: int,
):
    wg_y, wg_x, tid = wp.tid()
    wid = flat_workgroup_id(wg_y, wg_x, dispatch_x)
    if wid >= workgroup_count or tid != 0:
        return

    last = wid * 4 * threads_per_workgroup + scratch_index(2 * threads_per_workgroup - 1, avoid_bank_conflicts)
    block_sums[wid] = scratch[last]
    scratch[last] = wp.int32(0)


@wp.kernel
def scan_down_sweep_kernel(
    scratch: wp.array(dtype=wp.int32),
    workgroup_count: int,
    dispatch_x: int,
    threads_per_workgroup: int,
    depth: int,
    offset: int,
    avoid_bank_conflicts: int,
):
    wg_y, wg_x, tid = wp.tid()
    wid = flat_workgroup_id(wg_y, wg_x, dispatch_x)
    if wid >= workgroup_count or tid >= depth:
        return

    base = wid * 4 * threads_per_workgroup
    ai = base + scratch_index(offset * (2 * tid + 1) - 1, avoid_bank_conflicts)
    bi = base + scratch_index(offset * (2 * tid + 2) - 1, avoid_bank_conflicts)

    t = scratch[ai]
    scratch[ai] = scratch[bi]
    scratch[bi] = scratch[bi] + t


@wp.kernel
def scan_store_kernel(
    items: wp.array(dtype=wp.int32),
    scratch: wp.array(dtype=wp.int32),
    element_count: int,
    workgroup_count: int,
    dispatch_x: int,
    threads_per_workgroup: int,
    avoid_bank_conflicts: int,
):
    wg_y, wg_x, tid = wp.tid()
    wid = flat_workgroup_id(wg_y, wg_x, dispatch_x)
    if wid >= workgroup_count:
        return

    items_per_workgroup = 2 * threads_per_workgroup
    base = wid * 2 * items_per_workgroup

    ai = 2 * tid
    bi = 2 * tid + 1
    if avoid_bank_conflicts != 0:
        ai = tid
        bi = tid + threads_per_workgroup

    g_ai = wid * items_per_workgroup + ai
    g_bi = wid * items_per_workgroup + bi

    # padding elements are never written back
    if g_ai < element_count:
        items[g_ai] = scratch[base + scratch_index(ai, avoid_bank_conflicts)]
    if g_bi < element_count:
        items[g_bi] = scratch[base + scratch_index(bi, avoid_bank_conflicts)]


@wp.kernel
def add_block_sums_kernel(
    items: wp.array(dtype=wp.int32),
    block_sums: wp.array(dtype=wp.int32),
    element_count: int,
    workgroup_count: int,
    dispatch_x: int,
    threads_per_workgroup: int,
):
    wg_y, wg_x, tid = wp.tid()
    wid = flat_workgroup_id(wg_y, wg_x, dispatch_x)
    if wid >= workgroup_count:
        return

    elm = (wid * threads_per_workgroup + tid) * 2
    if elm >= element_count:
        return

    block_sum = block_sums[wid]
    items[elm] = items[elm] + block_sum

    if elm + 1 >= element_count:
        return
    items[elm + 1] = items[elm + 1] + block_sum
