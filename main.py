#!/usr/bin/env python3
"""
rowscribe - Recognize handwritten math on a row-ruled canvas.

Entry point with CLI support.

Usage:
    rowscribe scene.json --image canvas.png                 # Recognize every row
    rowscribe scene.json --image canvas.png -f json         # Machine-readable output
    rowscribe scene.json --image canvas.png --engine mock --mock-text "x + 1"
    rowscribe scene.json --image canvas.png --state-out rows.json
"""

import sys
import os
import argparse
import json

# Add the package root to path for imports
sys.path.insert(0, os.path.dirname(__file__))


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="rowscribe",
        description="Partition a drawn scene into rows and recognize each row as LaTeX",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rowscribe scene.json --image canvas.png              Recognize with pix2tex
  rowscribe scene.json --image canvas.png -f json      Output rows as JSON
  rowscribe scene.json --image canvas.png --engine mock --mock-text "x^2"
  rowscribe scene.json --image canvas.png --state-in rows.json --state-out rows.json
        """,
    )

    parser.add_argument(
        "scene",
        help="Scene JSON: a list of elements or an object with an 'elements' list",
    )

    parser.add_argument(
        "--image",
        required=True,
        help="Rendered canvas image used as the raster source",
    )

    parser.add_argument(
        "--origin",
        nargs=2,
        type=float,
        metavar=("X", "Y"),
        default=(0.0, 0.0),
        help="Canvas coordinates of the image's top-left pixel (default: 0 0)",
    )

    parser.add_argument(
        "-f",
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    parser.add_argument(
        "--engine",
        choices=["pix2tex", "mock"],
        default="pix2tex",
        help="Recognizer engine (default: pix2tex)",
    )

    parser.add_argument(
        "--mock-text",
        metavar="LATEX",
        help="Text the mock engine returns for every tile",
    )

    parser.add_argument("--config", metavar="FILE", help="JSON configuration file")
    parser.add_argument("--row-height", type=float, help="Row height in canvas units")
    parser.add_argument("--tile-size", type=int, help="Tile size in pixels")
    parser.add_argument("--overlap", type=int, help="Tile overlap in pixels")
    parser.add_argument("--workers", type=int, help="Recognizer pool size")

    parser.add_argument(
        "--state-in",
        metavar="FILE",
        help="Restore a serialized partitioner state before processing",
    )
    parser.add_argument(
        "--state-out",
        metavar="FILE",
        help="Write the serialized partitioner state after processing",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show debug logging",
    )

    return parser


def build_config(args: argparse.Namespace):
    """Load the config file, then apply command line overrides."""
    from rowscribe.utils.config import PipelineConfig, load_config

    data = load_config(args.config).to_dict()
    if args.row_height is not None:
        data["partition"]["row_height"] = args.row_height
    if args.tile_size is not None:
        data["tiling"]["tile_size"] = args.tile_size
    if args.overlap is not None:
        data["tiling"]["overlap_px"] = args.overlap
    if args.workers is not None:
        data["pool_size"] = args.workers

    return PipelineConfig.from_dict(data)


def recognize_scene_cli(args: argparse.Namespace) -> int:
    """Partition the scene, recognize every pending row and print the result."""
    from rowscribe.input import create_engine, load_scene
    from rowscribe.models import OCRStatus
    from rowscribe.pipeline import RowProcessor
    from rowscribe.rows import RowPartitioner
    from rowscribe.tiling import ImageRasterSource

    config = build_config(args)

    partitioner = RowPartitioner.from_config(config.partition)
    if args.state_in:
        with open(args.state_in, encoding="utf-8") as f:
            partitioner.deserialize(json.load(f))

    elements = load_scene(args.scene)
    changed = partitioner.apply_changes(changed=elements)
    if args.verbose:
        print(f"Loaded {len(elements)} elements into {len(changed)} rows", file=sys.stderr)

    engine_kwargs = {}
    if args.engine == "mock" and args.mock_text is not None:
        engine_kwargs["responses"] = args.mock_text
    engine = create_engine(args.engine, **engine_kwargs)

    source = ImageRasterSource.from_file(
        args.image, origin_x=args.origin[0], origin_y=args.origin[1]
    )

    processor = RowProcessor.from_config(partitioner, engine, config)
    try:
        report = processor.process_all(elements, source)
    finally:
        processor.close()

    if args.state_out:
        with open(args.state_out, "w", encoding="utf-8") as f:
            json.dump(partitioner.serialize(), f, indent=2)

    if args.format == "json":
        output = report.to_dict()
        output["activeRowId"] = partitioner.active_row_id
        print(json.dumps(output, indent=2))
    else:
        for row in partitioner.all_rows():
            if row.is_empty:
                continue
            outcome = report.outcomes.get(row.id)
            if row.ocr_status is OCRStatus.ERROR:
                print(f"{row.id}: ERROR {row.error_message}")
            elif outcome is not None and outcome.ok:
                print(f"{row.id}: {row.transcribed_latex}  (confidence {outcome.confidence:.2f})")
                if args.verbose:
                    for repair in outcome.repairs:
                        print(f"    repair: {repair.to_dict()}", file=sys.stderr)
            else:
                print(f"{row.id}: [{row.ocr_status.value}] {row.transcribed_latex or ''}")

    return 1 if report.failed else 0


def main(argv=None):
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    from rowscribe.utils.errors import (
        RowscribeError,
        format_error_for_report,
        format_error_for_user,
    )
    from rowscribe.utils.log import configure_logging

    configure_logging(verbose=args.verbose)

    try:
        return recognize_scene_cli(args)
    except (RowscribeError, OSError, json.JSONDecodeError) as e:
        print(f"Error: {format_error_for_user(e)}", file=sys.stderr)
        if args.format == "json":
            print(json.dumps({"error": format_error_for_report(e)}, indent=2))
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
