import warp as wp

# default scale of the integer grid accumulators
FIXED_POINT_MULTIPLIER = wp.constant(1.0e7)


@wp.struct
class MLSMPMParameters:
    grid_dim: wp.vec3i
    init_box_size: wp.vec3  # box the particles and the grid were built for
    real_box_size: wp.vec3  # current walls, never larger than init_box_size
    dt: float
    particle_mass: float
    stiffness: float
    rest_density: float
    dynamic_viscosity: float
    gravity: wp.vec3
    wall_stiffness: float
    fixed_point_multiplier: float


@wp.struct
class MLSMPMParticleData:
    position: wp.array(dtype=wp.vec3)
    velocity: wp.array(dtype=wp.vec3)
    C: wp.array(dtype=wp.mat33)


@wp.struct
class MLSMPMGridData:
    # fixed-point momentum during P2G, fixed-point velocity after UpdateGrid
    vx: wp.array(dtype=wp.int32)
    vy: wp.array(dtype=wp.int32)
    vz: wp.array(dtype=wp.int32)
    mass: wp.array(dtype=wp.int32)


def allocate_particles(capacity: int, device) -> MLSMPMParticleData:
    data = MLSMPMParticleData()
    data.position = wp.zeros(capacity, dtype=wp.vec3, device=device)
    data.velocity = wp.zeros(capacity, dtype=wp.vec3, device=device)
    data.C = wp.zeros(capacity, dtype=wp.mat33, device=device)
    return data


def allocate_grid(capacity: int, device) -> MLSMPMGridData:
    grid = MLSMPMGridData()
    grid.vx = wp.zeros(capacity, dtype=wp.int32, device=device)
    grid.vy = wp.zeros(capacity, dtype=wp.int32, device=device)
    grid.vz = wp.zeros(capacity, dtype=wp.int32, device=device)
    grid.mass = wp.zeros(capacity, dtype=wp.int32, device=device)
    return grid
