import warp as wp

from .mls_types import MLSMPMGridData, MLSMPMParameters, MLSMPMParticleData


@wp.func
def encode_fixed_point(x: float, multiplier: float):
    return wp.int32(x * multiplier)


@wp.func
def decode_fixed_point(n: wp.int32, multiplier: float):
    return float(n) / multiplier


@wp.func
def quadratic_weights(fx: wp.vec3):
    # row a holds the three B-spline weights along axis a
    return wp.mat33(
        0.5 * (1.5 - fx[0]) * (1.5 - fx[0]), 0.75 - (fx[0] - 1.0) * (fx[0] - 1.0), 0.5 * (fx[0] - 0.5) * (fx[0] - 0.5),
        0.5 * (1.5 - fx[1]) * (1.5 - fx[1]), 0.75 - (fx[1] - 1.0) * (fx[1] - 1.0), 0.5 * (fx[1] - 0.5) * (fx[1] - 0.5),
        0.5 * (1.5 - fx[2]) * (1.5 - fx[2]), 0.75 - (fx[2] - 1.0) * (fx[2] - 1.0), 0.5 * (fx[2] - 0.5) * (fx[2] - 0.5),
    )  # fmt: skip


@wp.func
def base_node(pos: wp.vec3):
    return wp.vec3i(
        int(wp.floor(pos[0] - 0.5)),
        int(wp.floor(pos[1] - 0.5)),
        int(wp.floor(pos[2] - 0.5)),
    )


@wp.func
def node_in_grid(ix: int, iy: int, iz: int, grid_dim: wp.vec3i):
    return ix >= 0 and ix < grid_dim[0] and iy >= 0 and iy < grid_dim[1] and iz >= 0 and iz < grid_dim[2]


@wp.func
def node_index(ix: int, iy: int, iz: int, grid_dim: wp.vec3i):
    return ix * grid_dim[1] * grid_dim[2] + iy * grid_dim[2] + iz


@wp.kernel
def clear_grid_kernel(grid: MLSMPMGridData):
    idx = wp.tid()
    grid.vx[idx] = wp.int32(0)
    grid.vy[idx] = wp.int32(0)
    grid.vz[idx] = wp.int32(0)
    grid.mass[idx] = wp.int32(0)


@wp.kernel
def p2g_1_kernel(particles: MLSMPMParticleData, grid: MLSMPMGridData, params: MLSMPMParameters):
    p = wp.tid()
    pos = particles.position[p]
    vel = particles.velocity[p]
    C = particles.C[p]

    base = base_node(pos)
    fx = pos - wp.vec3(float(base[0]), float(base[1]), float(base[2]))
    w = quadratic_weights(fx)
    multiplier = params.fixed_point_multiplier

    for i in range(3):
        for j in range(3):
            for k in range(3):
                ix = base[0] + i
                iy = base[1] + j
                iz = base[2] + k
                if node_in_grid(ix, iy, iz, params.grid_dim):
                    idx = node_index(ix, iy, iz, params.grid_dim)
                    dpos = wp.vec3(float(i), float(j), float(k)) - fx
                    weight = w[0, i] * w[1, j] * w[2, k]

                    # APIC: the affine field carries the velocity to the node
                    mass_contrib = weight * params.particle_mass
                    vel_contrib = mass_contrib * (vel + C @ dpos)

                    wp.atomic_add(grid.mass, idx, encode_fixed_point(mass_contrib, multiplier))
                    wp.atomic_add(grid.vx, idx, encode_fixed_point(vel_contrib[0], multiplier))
                    wp.atomic_add(grid.vy, idx, encode_fixed_point(vel_contrib[1], multiplier))
                    wp.atomic_add(grid.vz, idx, encode_fixed_point(vel_contrib[2], multiplier))


@wp.kernel
def p2g_2_kernel(particles: MLSMPMParticleData, grid: MLSMPMGridData, params: MLSMPMParameters):
    p = wp.tid()
    pos = particles.position[p]
    C = particles.C[p]

    base = base_node(pos)
    fx = pos - wp.vec3(float(base[0]), float(base[1]), float(base[2]))
    w = quadratic_weights(fx)
    multiplier = params.fixed_point_multiplier

    density = float(0.0)
    for i in range(3):
        for j in range(3):
            for k in range(3):
                ix = base[0] + i
                iy = base[1] + j
                iz = base[2] + k
                if node_in_grid(ix, iy, iz, params.grid_dim):
                    idx = node_index(ix, iy, iz, params.grid_dim)
                    weight = w[0, i] * w[1, j] * w[2, k]
                    density += weight * decode_fixed_point(grid.mass[idx], multiplier)

    if density <= 0.0:
        return

    volume = params.particle_mass / density
    # water cannot sustain tension
    pressure = wp.max(0.0, params.stiffness * (density - params.rest_density))
    stress = -pressure * wp.identity(n=3, dtype=float) + params.dynamic_viscosity * (C + wp.transpose(C))

    # cell size 1, so D^-1 = 4
    force_term = -volume * 4.0 * params.dt * stress

    for i in range(3):
        for j in range(3):
            for k in range(3):
                ix = base[0] + i
                iy = base[1] + j
                iz = base[2] + k
                if node_in_grid(ix, iy, iz, params.grid_dim):
                    idx = node_index(ix, iy, iz, params.grid_dim)
                    dpos = wp.vec3(float(i), float(j), float(k)) - fx
                    weight = w[0, i] * w[1, j] * w[2, k]
                    momentum = weight * (force_term @ dpos)

                    wp.atomic_add(grid.vx, idx, encode_fixed_point(momentum[0], multiplier))
                    wp.atomic_add(grid.vy, idx, encode_fixed_point(momentum[1], multiplier))
                    wp.atomic_add(grid.vz, idx, encode_fixed_point(momentum[2], multiplier))


@wp.func
def slip_wall(v: float, node: int, upper: int):
    # drop the velocity component leaving the box within two nodes of a face
    out = float(v)
    if node < 2 and out < 0.0:
        out = 0.0
    if node > upper - 2 and out > 0.0:
        out = 0.0
    return out


@wp.kernel
def update_grid_kernel(grid: MLSMPMGridData, params: MLSMPMParameters):
    idx = wp.tid()
    multiplier = params.fixed_point_multiplier
    m = decode_fixed_point(grid.mass[idx], multiplier)

    if m <= 0.0:
        return

    v = wp.vec3(
        decode_fixed_point(grid.vx[idx], multiplier),
        decode_fixed_point(grid.vy[idx], multiplier),
        decode_fixed_point(grid.vz[idx], multiplier),
    )
    v = v / m + params.gravity * params.dt

    dim_yz = params.grid_dim[1] * params.grid_dim[2]
    i = idx // dim_yz
    j = (idx % dim_yz) // params.grid_dim[2]
    k = idx % params.grid_dim[2]

    real = params.real_box_size
    v = wp.vec3(
        slip_wall(v[0], i, int(wp.ceil(real[0])) - 1),
        slip_wall(v[1], j, int(wp.ceil(real[1])) - 1),
        slip_wall(v[2], k, int(wp.ceil(real[2])) - 1),
    )

    grid.vx[idx] = encode_fixed_point(v[0], multiplier)
    grid.vy[idx] = encode_fixed_point(v[1], multiplier)
    grid.vz[idx] = encode_fixed_point(v[2], multiplier)


@wp.kernel
def g2p_kernel(particles: MLSMPMParticleData, grid: MLSMPMGridData, params: MLSMPMParameters):
    p = wp.tid()
    pos = particles.position[p]

    base = base_node(pos)
    fx = pos - wp.vec3(float(base[0]), float(base[1]), float(base[2]))
    w = quadratic_weights(fx)
    multiplier = params.fixed_point_multiplier

    new_v = wp.vec3(0.0)
    B = wp.mat33(0.0)

    for i in range(3):
        for j in range(3):
            for k in range(3):
                ix = base[0] + i
                iy = base[1] + j
                iz = base[2] + k
                if node_in_grid(ix, iy, iz, params.grid_dim):
                    idx = node_index(ix, iy, iz, params.grid_dim)
                    dpos = wp.vec3(float(i), float(j), float(k)) - fx
                    weight = w[0, i] * w[1, j] * w[2, k]

                    node_v = wp.vec3(
                        decode_fixed_point(grid.vx[idx], multiplier),
                        decode_fixed_point(grid.vy[idx], multiplier),
                        decode_fixed_point(grid.vz[idx], multiplier),
                    )
                    new_v += weight * node_v
                    B += weight * wp.outer(node_v, dpos)

    particles.velocity[p] = new_v
    particles.C[p] = 4.0 * B


@wp.func
def wall_push(x_next: float, v: float, lo: float, hi: float, stiffness: float):
    out = float(v)
    if x_next < lo:
        out += stiffness * (lo - x_next)
    if x_next > hi:
        out += stiffness * (hi - x_next)
    return out


@wp.func
def clamp_axis(x: float, v: float, lo: float, hi: float):
    px = float(x)
    pv = float(v)
    if px < lo:
        px = lo
        pv = wp.max(pv, 0.0)
    elif px > hi:
        px = hi
        pv = wp.min(pv, 0.0)
    return wp.vec2(px, pv)


@wp.kernel
def copy_position_kernel(
    particles: MLSMPMParticleData,
    params: MLSMPMParameters,
    posvel: wp.array2d(dtype=wp.vec3),
):
    p = wp.tid()
    v = particles.velocity[p]
    x = particles.position[p] + params.dt * v

    # soft walls three cells inside the real box, looking three steps ahead
    real = params.real_box_size
    x_next = x + 3.0 * params.dt * v
    v = wp.vec3(
        wall_push(x_next[0], v[0], 3.0, real[0] - 4.0, params.wall_stiffness),
        wall_push(x_next[1], v[1], 3.0, real[1] - 4.0, params.wall_stiffness),
        wall_push(x_next[2], v[2], 3.0, real[2] - 4.0, params.wall_stiffness),
    )

    cx = clamp_axis(x[0], v[0], 1.0, real[0] - 2.0)
    cy = clamp_axis(x[1], v[1], 1.0, real[1] - 2.0)
    cz = clamp_axis(x[2], v[2], 1.0, real[2] - 2.0)
    x = wp.vec3(cx[0], cy[0], cz[0])
    v = wp.vec3(cx[1], cy[1], cz[1])

    particles.position[p] = x
    particles.velocity[p] = v
    posvel[p, 0] = x
    posvel[p, 1] = v
