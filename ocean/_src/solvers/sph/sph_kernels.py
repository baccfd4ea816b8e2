import warp as wp

from .sph_types import SPHEnvironment, SPHParameters, SPHParticleData

# smoothing kernels, 3-D normalisation


@wp.func
def density_kernel(r2: float, params: SPHParameters):
    # poly6
    scale = 315.0 / (64.0 * wp.pi * params.kernel_radius_pow9)
    d = params.kernel_radius_pow2 - r2
    return scale * d * d * d


@wp.func
def near_density_kernel(r: float, params: SPHParameters):
    scale = 15.0 / (wp.pi * params.kernel_radius_pow6)
    d = params.kernel_radius - r
    return scale * d * d * d


@wp.func
def density_kernel_gradient(r: float, params: SPHParameters):
    # spiky
    scale = 45.0 / (wp.pi * params.kernel_radius_pow6)
    d = params.kernel_radius - r
    return scale * d * d


@wp.func
def near_density_kernel_gradient(r: float, params: SPHParameters):
    scale = 45.0 / (wp.pi * params.kernel_radius_pow6)
    d = params.kernel_radius - r
    return scale * d * d


@wp.func
def viscosity_kernel_laplacian(r: float, params: SPHParameters):
    scale = 45.0 / (wp.pi * params.kernel_radius_pow6)
    return scale * (params.kernel_radius - r)


# grid addressing


@wp.func
def cell_coord(x: wp.vec3, env: SPHEnvironment):
    inv_cell_size = 1.0 / env.cell_size
    cx = int(wp.floor((x[0] + env.half_extents[0] + env.offset) * inv_cell_size))
    cy = int(wp.floor((x[1] + env.half_extents[1] + env.offset) * inv_cell_size))
    cz = int(wp.floor((x[2] + env.half_extents[2] + env.offset) * inv_cell_size))
    return wp.vec3i(
        wp.clamp(cx, 0, env.grid_dim[0] - 1),
        wp.clamp(cy, 0, env.grid_dim[1] - 1),
        wp.clamp(cz, 0, env.grid_dim[2] - 1),
    )


@wp.func
def cell_id(cx: int, cy: int, cz: int, env: SPHEnvironment):
    return cx * env.grid_dim[1] * env.grid_dim[2] + cy * env.grid_dim[2] + cz


@wp.func
def cell_in_grid(cx: int, cy: int, cz: int, env: SPHEnvironment):
    return cx >= 0 and cx < env.grid_dim[0] and cy >= 0 and cy < env.grid_dim[1] and cz >= 0 and cz < env.grid_dim[2]


# counting sort


@wp.kernel
def grid_clear_kernel(cell_counts: wp.array(dtype=wp.int32)):
    c = wp.tid()
    cell_counts[c] = wp.int32(0)


@wp.kernel
def grid_build_kernel(
    particles: SPHParticleData,
    env: SPHEnvironment,
    cell_counts: wp.array(dtype=wp.int32),
    cell_index: wp.array(dtype=wp.int32),
    cell_rank: wp.array(dtype=wp.int32),
):
    i = wp.tid()
    c = cell_coord(particles.position[i], env)
    cell = cell_id(c[0], c[1], c[2], env)

    cell_index[i] = cell
    # pre-increment count is the particle's rank inside its cell
    cell_rank[i] = wp.atomic_add(cell_counts, cell, wp.int32(1))


@wp.kernel
def reorder_kernel(
    src: SPHParticleData,
    dst: SPHParticleData,
    cell_offsets: wp.array(dtype=wp.int32),
    cell_index: wp.array(dtype=wp.int32),
    cell_rank: wp.array(dtype=wp.int32),
    sorted_index: wp.array(dtype=wp.int32),
):
    i = wp.tid()
    target = cell_offsets[cell_index[i]] + cell_rank[i]
    sorted_index[i] = target

    dst.position[target] = src.position[i]
    dst.velocity[target] = src.velocity[i]
    dst.force[target] = src.force[i]
    dst.density[target] = src.density[i]
    dst.near_density[target] = src.near_density[i]


# solver stages


@wp.kernel
def compute_density_kernel(
    particles: SPHParticleData,
    sorted_particles: SPHParticleData,
    cell_offsets: wp.array(dtype=wp.int32),
    env: SPHEnvironment,
    params: SPHParameters,
):
    i = wp.tid()
    x = particles.position[i]
    c = cell_coord(x, env)

    density = float(0.0)
    near_density = float(0.0)

    for dx in range(-1, 2):
        for dy in range(-1, 2):
            for dz in range(-1, 2):
                nx = c[0] + dx
                ny = c[1] + dy
                nz = c[2] + dz
                if cell_in_grid(nx, ny, nz, env):
                    cell = cell_id(nx, ny, nz, env)
                    start = cell_offsets[cell]
                    end = cell_offsets[cell + 1]
                    for j in range(start, end):
                        r2 = wp.length_sq(x - sorted_particles.position[j])
                        if r2 < params.kernel_radius_pow2:
                            r = wp.sqrt(r2)
                            density += params.mass * density_kernel(r2, params)
                            near_density += params.mass * near_density_kernel(r, params)

    particles.density[i] = density
    particles.near_density[i] = near_density


@wp.kernel
def compute_force_kernel(
    particles: SPHParticleData,
    sorted_particles: SPHParticleData,
    cell_offsets: wp.array(dtype=wp.int32),
    sorted_index: wp.array(dtype=wp.int32),
    env: SPHEnvironment,
    params: SPHParameters,
):
    i = wp.tid()
    x_i = particles.position[i]
    v_i = particles.velocity[i]
    density_i = particles.density[i]
    self_j = sorted_index[i]

    pressure_i = params.stiffness * (density_i - params.rest_density)
    near_pressure_i = params.near_stiffness * particles.near_density[i]

    f_pressure = wp.vec3(0.0)
    f_viscosity = wp.vec3(0.0)
    c = cell_coord(x_i, env)

    for dx in range(-1, 2):
        for dy in range(-1, 2):
            for dz in range(-1, 2):
                nx = c[0] + dx
                ny = c[1] + dy
                nz = c[2] + dz
                if cell_in_grid(nx, ny, nz, env):
                    cell = cell_id(nx, ny, nz, env)
                    start = cell_offsets[cell]
                    end = cell_offsets[cell + 1]
                    for j in range(start, end):
                        if j == self_j:
                            continue
                        r_vec = sorted_particles.position[j] - x_i
                        r2 = wp.length_sq(r_vec)
                        # coincident particles have no separation direction
                        if r2 < params.kernel_radius_pow2 and r2 > 1.0e-12:
                            r = wp.sqrt(r2)
                            direction = r_vec / r
                            density_j = sorted_particles.density[j]
                            near_density_j = sorted_particles.near_density[j]

                            pressure_j = params.stiffness * (density_j - params.rest_density)
                            near_pressure_j = params.near_stiffness * near_density_j
                            shared_pressure = 0.5 * (pressure_i + pressure_j)
                            near_shared_pressure = 0.5 * (near_pressure_i + near_pressure_j)

                            if density_j > 0.0:
                                f_pressure += (
                                    -params.mass * shared_pressure * density_kernel_gradient(r, params) / density_j
                                ) * direction
                                f_viscosity += (
                                    params.mass * viscosity_kernel_laplacian(r, params) / density_j
                                ) * (sorted_particles.velocity[j] - v_i)
                            if near_density_j > 0.0:
                                f_pressure += (
                                    -params.mass
                                    * near_shared_pressure
                                    * near_density_kernel_gradient(r, params)
                                    / near_density_j
                                ) * direction

    force = params.mass * params.gravity
    if density_i > 0.0:
        force += (params.mass / density_i) * (f_pressure + params.viscosity * f_viscosity)
    particles.force[i] = force


@wp.func
def reflect_axis(x: float, v: float, half: float, restitution: float):
    px = float(x)
    pv = float(v)
    if px < -half:
        px = -half
        if pv < 0.0:
            pv = -pv * restitution
    elif px > half:
        px = half
        if pv > 0.0:
            pv = -pv * restitution
    return wp.vec2(px, pv)


@wp.kernel
def integrate_kernel(particles: SPHParticleData, params: SPHParameters):
    i = wp.tid()

    # semi-implicit Euler
    v = particles.velocity[i] + params.dt * particles.force[i] / params.mass
    x = particles.position[i] + params.dt * v

    half = params.real_half_extents
    rx = reflect_axis(x[0], v[0], half[0], params.restitution)
    ry = reflect_axis(x[1], v[1], half[1], params.restitution)
    rz = reflect_axis(x[2], v[2], half[2], params.restitution)

    particles.position[i] = wp.vec3(rx[0], ry[0], rz[0])
    particles.velocity[i] = wp.vec3(rx[1], ry[1], rz[1])


@wp.kernel
def copy_position_kernel(particles: SPHParticleData, posvel: wp.array2d(dtype=wp.vec3)):
    i = wp.tid()
    posvel[i, 0] = particles.position[i]
    posvel[i, 1] = particles.velocity[i]
