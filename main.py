import argparse
import logging

import warp as wp

from macfluid.core.simulation import SimulationController
from macfluid.scene_parser import load_scene

wp.init()

logger = logging.getLogger("macfluid.main")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="MAC Grid Fluid Simulation")

    parser.add_argument(
        "scene",
        nargs="?",
        default="scenes/basic.json",
        help="Scene JSON file (default: scenes/basic.json)"
    )
    parser.add_argument(
        "--frames",
        type=int,
        default=60,
        help="Number of frames to simulate (default: 60)"
    )
    parser.add_argument(
        "--dt",
        type=float,
        default=None,
        help="Fixed sub-step size, overrides the scene's frame pacing"
    )
    parser.add_argument(
        "--p-iter",
        type=int,
        default=None,
        help="Pressure solver iterations, overrides the scene"
    )
    parser.add_argument(
        "--cfl-check",
        action="store_true",
        help="Enable CFL number checking"
    )
    parser.add_argument(
        "--device",
        default=None,
        help="Warp device, e.g. cpu or cuda:0 (default: warp's current device)"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    args = parser.parse_args()

    logging.basicConfig(level=args.log_level, format="[%(levelname)s] %(name)s: %(message)s")

    config = load_scene(args.scene)
    if args.p_iter is not None:
        config.solver.p_iter = args.p_iter
    if args.cfl_check:
        config.scene.cfl_check = True

    sim = SimulationController(config, device=args.device)

    for _ in range(args.frames):
        sim.advance_frame(args.dt)
        logger.info("Frame %d: max divergence %.4e", sim.frame_count, sim.solver.max_divergence())
