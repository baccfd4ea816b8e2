# SPDX-FileCopyrightText: Copyright (c) 2025 The Newton Developers
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import numpy as np

import ocean.examples
from ocean.solvers import SolverSPH


class Example:
    def __init__(self, options):
        self.frame = 0
        self.squeeze_frame = options.squeeze_frame
        self.half_extents = np.array(options.half_extents, dtype=np.float64)

        sph_options = SolverSPH.Options()
        ocean.examples.apply_args(sph_options, options)
        sph_options.max_particles = max(sph_options.max_particles, options.num_particles)

        self.solver = SolverSPH(sph_options)
        if not self.solver.reset(options.num_particles, self.half_extents):
            raise RuntimeError("dam break does not fit the solver capacity")

    def step(self):
        if self.squeeze_frame > 0 and self.frame == self.squeeze_frame:
            squeezed = self.half_extents.copy()
            squeezed[2] *= 0.5
            self.solver.change_box_size(squeezed)
            print(f"walls moved to half extents {tuple(squeezed)}")

        self.solver.compute()
        self.frame += 1

    def posvel(self):
        return self.solver.posvel.numpy()[: self.solver.num_particles]

    def render(self, frame):
        ocean.examples.print_stats(frame, self.posvel())

    def test_final(self):
        real = self.solver.params.real_half_extents
        half = np.array([real[0], real[1], real[2]]) + 1.0e-5
        ocean.examples.test_particle_state(
            self.posvel(),
            "all particles are inside the box",
            lambda q, qd: bool(np.all(np.abs(q) <= half)),
        )
        ocean.examples.test_particle_state(
            self.posvel(),
            "all particles have finite velocity",
            lambda q, qd: bool(np.all(np.isfinite(qd))),
        )


if __name__ == "__main__":
    parser = ocean.examples.create_parser()

    parser.add_argument("--num-particles", type=int, default=20000)
    parser.add_argument("--half-extents", type=float, nargs=3, default=[0.5, 1.0, 0.5])
    parser.add_argument("--squeeze-frame", type=int, default=0, help="Frame at which the z walls move in (0 disables).")

    # solver constants
    parser.add_argument("--kernel-radius", type=float, default=0.07)
    parser.add_argument("--stiffness", type=float, default=20.0)
    parser.add_argument("--near-stiffness", type=float, default=1.0)
    parser.add_argument("--rest-density", type=float, default=15000.0)
    parser.add_argument("--viscosity", type=float, default=100.0)
    parser.add_argument("--dt", type=float, default=0.006)
    parser.add_argument("--num-substeps", type=int, default=2)
    parser.add_argument("--gravity", type=float, nargs=3, default=[0.0, -9.8, 0.0])

    args = ocean.examples.init(parser)

    example = Example(args)

    ocean.examples.run(example, args)
