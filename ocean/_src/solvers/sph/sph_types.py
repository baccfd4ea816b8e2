import warp as wp


@wp.struct
class SPHParticleData:
    position: wp.array(dtype=wp.vec3)
    velocity: wp.array(dtype=wp.vec3)
    force: wp.array(dtype=wp.vec3)
    density: wp.array(dtype=float)
    near_density: wp.array(dtype=float)


@wp.struct
class SPHEnvironment:
    grid_dim: wp.vec3i
    cell_size: float
    half_extents: wp.vec3  # box the grid was built for
    offset: float  # sentinel padding on each side of the box


@wp.struct
class SPHParameters:
    mass: float
    kernel_radius: float
    kernel_radius_pow2: float
    kernel_radius_pow6: float
    kernel_radius_pow9: float
    dt: float
    stiffness: float
    near_stiffness: float
    rest_density: float
    viscosity: float
    gravity: wp.vec3
    restitution: float
    real_half_extents: wp.vec3  # walls used by the integrator


def allocate_particles(capacity: int, device) -> SPHParticleData:
    data = SPHParticleData()
    data.position = wp.zeros(capacity, dtype=wp.vec3, device=device)
    data.velocity = wp.zeros(capacity, dtype=wp.vec3, device=device)
    data.force = wp.zeros(capacity, dtype=wp.vec3, device=device)
    data.density = wp.zeros(capacity, dtype=float, device=device)
    data.near_density = wp.zeros(capacity, dtype=float, device=device)
    return data
