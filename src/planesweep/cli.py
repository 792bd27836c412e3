"""Command-line interface for plane-sweep depth estimation."""

import argparse
import logging
import sys
from pathlib import Path

import cv2

from planesweep.camera import PoseConvention
from planesweep.config import PipelineConfig
from planesweep.dense.plane_sweep import save_depth_map


def init_config(
    config_path: Path,
    pose_convention: str | None = None,
    output_dir: str = "",
) -> PipelineConfig:
    """Write a configuration file with every option at its default.

    Args:
        config_path: Path to the output YAML file.
        pose_convention: Pose convention to record. Left unset when None, in
            which case it has to be filled in before running.
        output_dir: Output directory to record.

    Returns:
        The written configuration.
    """
    config = PipelineConfig(output_dir=output_dir)
    if pose_convention is not None:
        config.plane_sweep.pose_convention = PoseConvention(pose_convention)
    config.to_yaml(config_path)

    print(f"Config written to {config_path}")
    if config.plane_sweep.pose_convention is None:
        print(
            "Note: set plane_sweep.pose_convention "
            f"({', '.join(c.value for c in PoseConvention)}) before running"
        )
    return config


def run_command(
    scene_path: Path,
    config_path: Path,
    output_dir: str | None = None,
    verbose: bool = False,
    device: str | None = None,
    refine: str | None = None,
    render: bool = False,
    point_cloud: bool = False,
) -> None:
    """Estimate the depth map of a scene's reference view.

    Writes depth.npz (float depth and vote count) and depth_8u.png to the
    output directory, plus optional depth.png rendering and points.ply.

    Args:
        scene_path: Path to the scene YAML file.
        config_path: Path to the configuration YAML file.
        output_dir: Optional override of config.output_dir.
        verbose: If True, set logging to DEBUG level.
        device: Optional device override (replaces config.runtime.device).
        refine: Optional override of config.refinement.
        render: Also write a colormapped rendering.
        point_cloud: Also write the back-projected point cloud.
    """
    # 1. Configure logging
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Silence noisy third-party loggers
    for name in ("matplotlib", "PIL", "open3d"):
        logging.getLogger(name).setLevel(logging.WARNING)

    # 2. Load config
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        config = PipelineConfig.from_yaml(config_path)
    except Exception as e:
        print(f"Error: Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)

    # 3. Apply CLI overrides
    if output_dir is not None:
        config.output_dir = output_dir
    if device is not None:
        config.runtime.device = device
    if refine is not None:
        config.refinement = refine

    if config.plane_sweep.pose_convention is None:
        print(
            "Error: plane_sweep.pose_convention is not set "
            f"({', '.join(c.value for c in PoseConvention)})",
            file=sys.stderr,
        )
        sys.exit(1)

    # 4. Load scene
    from planesweep.io import load_scene

    try:
        scene = load_scene(scene_path)
    except Exception as e:
        print(f"Error: Failed to load scene: {e}", file=sys.stderr)
        sys.exit(1)

    # 5. Run
    from planesweep.engine import PlaneSweep

    engine = PlaneSweep(scene.reference, scene.sources, scene.intrinsics, config)
    if not engine.run_algorithm():
        print("Error: Plane sweep failed", file=sys.stderr)
        sys.exit(1)

    depth, depth8u = engine.depthmap, engine.depthmap8u
    if config.refinement == "tvl1":
        if not engine.denoise_tvl1():
            print("Error: TV-L1 refinement failed", file=sys.stderr)
            sys.exit(1)
        depth, depth8u = engine.depthmap_denoised, engine.depthmap8u_denoised
    elif config.refinement == "tgv":
        if not engine.refine_tgv():
            print("Error: TGV refinement failed", file=sys.stderr)
            sys.exit(1)
        depth, depth8u = engine.depthmap_tgv, engine.depthmap8u_tgv

    # 6. Write outputs
    out = Path(config.output_dir or ".")
    out.mkdir(parents=True, exist_ok=True)

    save_depth_map(depth, out / "depth.npz", raw=engine.depthmap, count=engine.count)
    cv2.imwrite(str(out / "depth_8u.png"), depth8u)

    if render:
        from planesweep import visualization

        if config.refinement == "none":
            visualization.render_depth_map(
                engine.depthmap,
                out / "depth.png",
                title="Plane sweep",
                vmin=config.plane_sweep.znear,
                vmax=config.plane_sweep.zfar,
            )
        else:
            visualization.render_depth_comparison(
                {
                    "Plane sweep": engine.depthmap,
                    f"Refined ({config.refinement})": depth,
                },
                out / "depth.png",
            )

    if point_cloud:
        import torch

        from planesweep.geometry import coordinates_to_point_cloud, save_point_cloud

        if not engine.compute_3d_coordinates(depth):
            print("Error: Back-projection failed", file=sys.stderr)
            sys.exit(1)
        pcd = coordinates_to_point_cloud(
            torch.from_numpy(engine.coordinates), scene.reference.image
        )
        save_point_cloud(pcd, out / "points.ply")

    print(f"Results written to {out}")


def main() -> None:
    """Main entry point for the planesweep CLI."""
    parser = argparse.ArgumentParser(
        prog="planesweep",
        description="Plane-sweep depth estimation with variational refinement.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Write a default config file",
    )
    init_parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to output config YAML file (default: config.yaml)",
    )
    init_parser.add_argument(
        "--pose-convention",
        choices=[c.value for c in PoseConvention],
        default=None,
        help="How image poses in scene files are to be read",
    )
    init_parser.add_argument(
        "--output-dir",
        type=str,
        default="",
        help="Output directory for results",
    )

    # run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Estimate the depth map of a scene",
    )
    run_parser.add_argument(
        "scene",
        type=Path,
        help="Path to scene YAML file (intrinsics, images, poses)",
    )
    run_parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config YAML file (default: config.yaml)",
    )
    run_parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Override the output directory",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    run_parser.add_argument(
        "--device",
        type=str,
        default=None,
        help="Override device (e.g., 'cpu' or 'cuda')",
    )
    run_parser.add_argument(
        "--refine",
        choices=["none", "tvl1", "tgv"],
        default=None,
        help="Override the refinement stage",
    )
    run_parser.add_argument(
        "--render",
        action="store_true",
        help="Also write a colormapped depth rendering",
    )
    run_parser.add_argument(
        "--point-cloud",
        action="store_true",
        help="Also write the back-projected point cloud (PLY)",
    )

    args = parser.parse_args()

    if args.command == "init":
        init_config(
            config_path=args.config,
            pose_convention=args.pose_convention,
            output_dir=args.output_dir,
        )
    elif args.command == "run":
        run_command(
            scene_path=args.scene,
            config_path=args.config,
            output_dir=args.output_dir,
            verbose=args.verbose,
            device=args.device,
            refine=args.refine,
            render=args.render,
            point_cloud=args.point_cloud,
        )
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
