"""
FourAxis - 4-axis milling direction planner for triangle meshes

Main entry point
"""

import sys
import os
import logging
from pathlib import Path

# Ensure repository root is on sys.path so "fouraxis" is importable.
ROOT_DIR = Path(__file__).resolve().parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from fouraxis.core.runtime_defaults import CHECK_MODES, DEFAULTS
from fouraxis.core.output_paths import restored_mesh_path, session_path, view_image_path

_LOGGER = logging.getLogger(__name__)
DEFAULT_MESH_UNIT = "mm"


def run_cli(argv=None) -> int:
    """Command-line interface"""
    args = list(sys.argv[1:] if argv is None else argv)

    log_path = None
    try:
        from fouraxis.core.logging_utils import setup_logging

        log_path = setup_logging()
    except Exception as e:
        _LOGGER.debug("Failed to initialize logging: %s", e, exc_info=True)

    if not args or args[0] in ("--help", "-h"):
        print_help()
        return 0

    if args[0] == "--info":
        if len(args) < 2:
            print("Error: --info needs a mesh file")
            return 2
        return show_file_info(args[1])

    if args[0] == "--view":
        if len(args) < 2:
            print("Error: --view needs a mesh file")
            return 2
        return view_mesh(args[1], args[2] if len(args) > 2 else None)

    mode = DEFAULTS.check_mode
    if "--mode" in args:
        i = args.index("--mode")
        if i + 1 >= len(args):
            print("Error: --mode needs a value")
            return 2
        mode = args[i + 1]
        del args[i:i + 2]
        if mode not in CHECK_MODES:
            print(f"Error: unknown mode {mode!r} (expected one of {', '.join(CHECK_MODES)})")
            return 2

    mesh_file = args[0]
    smoothed_file = args[1] if len(args) > 1 else None
    if not os.path.exists(mesh_file):
        print(f"Error: Unknown command or file not found: {mesh_file}")
        print("Use --help for usage information")
        return 2
    if smoothed_file is not None and not os.path.exists(smoothed_file):
        print(f"Error: Smoothed mesh not found: {smoothed_file}")
        return 2

    return process_mesh(mesh_file, smoothed_file, mode=mode, log_path=log_path)


def print_help():
    """Print usage"""
    from fouraxis.core.mesh_loader import MeshLoader

    print("=" * 60)
    print("FourAxis - 4-axis milling direction planner")
    print("=" * 60)
    print()
    print("Usage:")
    print("  python main.py <mesh_file> [smoothed_mesh] [--mode MODE]   # Full pipeline")
    print("  python main.py --info <mesh_file>                          # Show file info")
    print("  python main.py --view <mesh_file> [output.png]             # Depth view along +Z")
    print()
    print(f"Modes: {', '.join(CHECK_MODES)} (default: {DEFAULTS.check_mode})")
    print(f"Supported formats: {list(MeshLoader.SUPPORTED_FORMATS.keys())}")
    print()
    print("Outputs:")
    print("  <mesh>.restored.ply   smoothed mesh with restored detail")
    print("  <mesh>.faf            session file (directions, labels, regions)")
    print()
    print("Examples:")
    print("  python main.py statue.stl")
    print("  python main.py statue.stl statue_smooth.stl --mode ray")


def show_file_info(filepath: str) -> int:
    """Print file info"""
    from fouraxis.core.mesh_loader import MeshLoader

    print(f"\nFile Info: {filepath}")
    print("-" * 40)

    try:
        loader = MeshLoader(default_unit=DEFAULT_MESH_UNIT)
        info = loader.get_file_info(filepath)
    except Exception as e:
        print(f"  Error: {e}")
        return 1
    for key, value in info.items():
        print(f"  {key}: {value}")
    return 0


def view_mesh(filepath: str, output_path: str | None = None) -> int:
    """Render a depth image of the mesh seen from +Z"""
    from fouraxis.core.mesh_loader import MeshLoader
    from fouraxis.core.view_renderer import ViewRenderer

    print(f"\nRendering: {filepath}")
    print("-" * 40)

    try:
        loader = MeshLoader(default_unit=DEFAULT_MESH_UNIT)
        mesh = loader.load(filepath)
        print(f"  Loaded: {mesh.n_vertices:,} vertices, {mesh.n_faces:,} faces")

        image = ViewRenderer(resolution=DEFAULTS.render_resolution).render(mesh, [0.0, 0.0, 1.0])
        visible = image.visible_faces(mesh.n_faces)
        print(f"  Visible faces: {int(visible.sum()):,} of {mesh.n_faces:,}")

        save_path = view_image_path(filepath, output_path)
        image.save(str(save_path))
        print(f"  Saved: {save_path}")
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


def process_mesh(filepath: str, smoothed_path: str | None = None, *,
                 mode: str = DEFAULTS.check_mode, log_path=None) -> int:
    """Load, plan, restore and save"""
    from fouraxis.core.errors import FourAxisError, StageError
    from fouraxis.core.logging_utils import format_exception_message
    from fouraxis.core.mesh_loader import MeshLoader, MeshProcessor
    from fouraxis.core.pipeline import FabricationParameters, FabricationPipeline
    from fouraxis.core.session_file import save_session

    print(f"\n{'='*60}")
    print(f"Processing: {filepath}")
    print(f"{'='*60}")

    try:
        print("\n[1/3] Loading mesh...")
        loader = MeshLoader(default_unit=DEFAULT_MESH_UNIT)
        mesh = loader.load(filepath)
        smoothed = loader.load(smoothed_path) if smoothed_path else None

        print(f"      Vertices: {mesh.n_vertices:,}")
        print(f"      Faces: {mesh.n_faces:,}")
        print(f"      Size: {mesh.extents[0]:.1f} x {mesh.extents[1]:.1f} x {mesh.extents[2]:.1f} {mesh.unit}")

        print(f"\n[2/3] Planning directions ({mode})...")
        params = FabricationParameters(check_mode=mode)
        data = FabricationPipeline().run(mesh, smoothed, params)

        print(f"      Directions kept: {len(data.target_directions)} of {len(data.directions)}")
        print(f"      Non-visible faces: {len(data.non_visible_faces):,}")
        print(f"      Machining regions: {len(data.regions):,}")

        print("\n[3/3] Saving output...")
        mesh_out = restored_mesh_path(filepath)
        MeshProcessor().save_mesh(data.restored_mesh, mesh_out)
        print(f"      Saved: {mesh_out}")
        session_out = session_path(filepath)
        save_session(session_out, data, meta={"app": "FourAxis"})
        print(f"      Saved: {session_out}")
    except StageError as e:
        _LOGGER.error("Pipeline stopped at stage %s", e.stage, exc_info=True)
        print(format_exception_message(f"Failed at stage '{e.stage}'.", str(e.__cause__ or e), log_path=log_path))
        return 1
    except (FourAxisError, OSError, ValueError) as e:
        _LOGGER.error("Processing failed", exc_info=True)
        print(format_exception_message("Processing failed.", str(e), log_path=log_path))
        return 1

    print(f"\n{'='*60}")
    print("Done!")
    print(f"{'='*60}")
    return 0


if __name__ == '__main__':
    sys.exit(run_cli())
