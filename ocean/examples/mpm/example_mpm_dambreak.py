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
from ocean.solvers import SolverMLSMPM


class Example:
    def __init__(self, options):
        self.frame = 0
        self.resize_frame = options.resize_frame
        self.resize_z = options.resize_z
        self.box_size = np.array(options.box_size, dtype=np.float64)

        mpm_options = SolverMLSMPM.Options()
        ocean.examples.apply_args(mpm_options, options)
        mpm_options.max_particles = max(mpm_options.max_particles, options.num_particles)

        self.solver = SolverMLSMPM(mpm_options)
        if not self.solver.reset(options.num_particles, self.box_size):
            raise RuntimeError("dam break does not fit the solver capacity")

    def step(self):
        if self.resize_frame > 0 and self.frame == self.resize_frame:
            real = self.box_size.copy()
            real[2] = self.resize_z
            self.solver.change_box_size(real)
            print(f"walls moved to box {tuple(self.solver.real_box_size)}")

        self.solver.compute()
        self.frame += 1

    def posvel(self):
        return self.solver.posvel.numpy()[: self.solver.num_particles]

    def render(self, frame):
        ocean.examples.print_stats(frame, self.posvel())

    def test_final(self):
        upper = self.solver.real_box_size - 2.0 + 1.0e-5
        ocean.examples.test_particle_state(
            self.posvel(),
            "all particles are inside the box",
            lambda q, qd: bool(np.all(q >= 1.0 - 1.0e-5) and np.all(q <= upper)),
        )


if __name__ == "__main__":
    parser = ocean.examples.create_parser()

    parser.add_argument("--num-particles", type=int, default=40000)
    parser.add_argument("--box-size", type=float, nargs=3, default=[40.0, 30.0, 60.0])
    parser.add_argument("--resize-frame", type=int, default=0, help="Frame at which the z wall moves (0 disables).")
    parser.add_argument("--resize-z", type=float, default=30.0)

    # solver constants
    parser.add_argument("--stiffness", type=float, default=3.0)
    parser.add_argument("--rest-density", type=float, default=4.0)
    parser.add_argument("--dynamic-viscosity", type=float, default=0.1)
    parser.add_argument("--dt", type=float, default=0.2)
    parser.add_argument("--num-substeps", type=int, default=2)
    parser.add_argument("--gravity", type=float, nargs=3, default=[0.0, -0.3, 0.0])
    parser.add_argument("--max-grid-size", type=int, nargs=3, default=[64, 64, 64])

    args = ocean.examples.init(parser)

    example = Example(args)

    ocean.examples.run(example, args)
