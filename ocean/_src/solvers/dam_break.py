import numpy as np

__all__ = ["dam_break_lattice"]


def dam_break_lattice(lo, hi, spacing: float, num_particles: int, jitter: float = 0.0, seed: int = 0) -> np.ndarray:
    """Fill the region ``[lo, hi)`` with a regular lattice, one y-layer at a time.

    Layers are stacked from ``lo[1]`` upward until ``num_particles`` points were
    placed or the region is full, so the returned array may be shorter than
    requested. Each point gets an independent offset drawn uniformly from
    ``[0, jitter)`` per axis.
    """
    lo = np.asarray(lo, dtype=np.float64)
    hi = np.asarray(hi, dtype=np.float64)
    if spacing <= 0.0:
        raise ValueError(f"spacing must be positive, got {spacing}")

    num_particles = max(int(num_particles), 0)
    xs = np.arange(lo[0], hi[0], spacing)
    ys = np.arange(lo[1], hi[1], spacing)
    zs = np.arange(lo[2], hi[2], spacing)

    per_layer = len(xs) * len(zs)
    if per_layer == 0 or len(ys) == 0 or num_particles == 0:
        return np.zeros((0, 3), dtype=np.float32)

    layers = min(len(ys), (num_particles + per_layer - 1) // per_layer)
    Y, X, Z = np.meshgrid(ys[:layers], xs, zs, indexing="ij")
    points = np.stack([X.ravel(), Y.ravel(), Z.ravel()], axis=1)[:num_particles]

    if jitter > 0.0:
        rng = np.random.default_rng(seed)
        points = points + rng.uniform(0.0, jitter, size=points.shape)

    return points.astype(np.float32)
