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

import argparse

import numpy as np
import warp as wp


def create_parser():
    """Parser with the arguments shared by every example."""
    parser = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument("--device", type=str, default=None, help="Override the default Warp device.")
    parser.add_argument("--num-frames", type=int, default=300, help="Total number of frames.")
    parser.add_argument("--log-every", type=int, default=50, help="Print statistics every N frames (0 disables).")
    parser.add_argument("--output", type=str, default=None, help="Save a scatter plot of the final frame to this path.")
    parser.add_argument("--test", action="store_true", help="Check the final state after the last frame.")
    parser.add_argument("--verbose", action="store_true", help="Print solver diagnostics.")
    return parser


def init(parser):
    args = parser.parse_args()
    wp.init()
    if args.device:
        wp.set_device(args.device)
    return args


def apply_args(options, args):
    # argparse turns "--rest-density" into "rest_density"
    for key in vars(args):
        if hasattr(options, key):
            value = getattr(args, key)
            if isinstance(value, list):
                value = tuple(value)
            setattr(options, key, value)
    return options


def run(example, args):
    for frame in range(args.num_frames):
        example.step()
        if args.log_every and (frame + 1) % args.log_every == 0:
            example.render(frame + 1)

    if args.test:
        example.test_final()
    if args.output:
        save_scatter(example.posvel(), args.output)


def test_particle_state(posvel: np.ndarray, test_name: str, predicate):
    """Assert ``predicate(position, velocity)`` for every particle."""
    failures = [i for i, (q, qd) in enumerate(zip(posvel[:, 0], posvel[:, 1])) if not predicate(q, qd)]
    if failures:
        raise ValueError(f'Test "{test_name}" failed for {len(failures)} of {len(posvel)} particles')


def print_stats(frame: int, posvel: np.ndarray):
    positions = posvel[:, 0]
    speed = np.linalg.norm(posvel[:, 1], axis=1)
    print(
        f"frame {frame:5d} | mean pos {np.array2string(positions.mean(axis=0), precision=3)} "
        f"| max speed {speed.max():.3f}"
    )


def save_scatter(posvel: np.ndarray, path: str):
    import matplotlib.pyplot as plt  # noqa: PLC0415

    positions = posvel[:, 0]
    speed = np.linalg.norm(posvel[:, 1], axis=1)

    # side view, y is up
    plt.figure(figsize=(10, 6))
    plt.scatter(positions[:, 2], positions[:, 1], c=speed, s=1, cmap="viridis")
    plt.colorbar(label="Speed")
    plt.xlabel("z")
    plt.ylabel("y")
    plt.axis("equal")
    plt.grid(True)
    plt.savefig(path)
    plt.close()
    print(f"saved {path}")
