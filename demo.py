#!/usr/bin/env python3
"""
DP Measurement Demo Script

Run the measurement pipeline on a photo: card calibration, automatic pupil
detection (or manually given points) and the text report.

Usage:
    python demo.py <image_path> [options]

Examples:
    python demo.py photo.jpg
    python demo.py photo.jpg --card-only --debug-dir debug
    python demo.py photo.jpg --point 312.5,240 --point 402,238 -o results.txt
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from typing import List, Optional

from dp_engine.calibration import CardCalibration
from dp_engine.config import get_settings
from dp_engine.coordinates import CanvasPoint
from dp_engine.detection import DetectionOrchestrator
from dp_engine.errors import DPEngineError
from dp_engine.imaging import load_image_file
from dp_engine.mediapipe_detector import MediaPipeDetectorLoader
from dp_engine.session import MeasurementSession


def create_debug_dir(base_dir: str = "debug") -> str:
    """Create timestamped debug directory."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    debug_dir = os.path.join(base_dir, timestamp)
    os.makedirs(debug_dir, exist_ok=True)
    return debug_dir


def print_header(title: str) -> None:
    """Print formatted header."""
    line = "=" * 70
    print(f"\n{line}")
    print(f"  {title}")
    print(line)


def print_section(title: str) -> None:
    """Print formatted section header."""
    print(f"\n{'-' * 40}")
    print(f"  {title}")
    print(f"{'-' * 40}")


def parse_point(text: str) -> CanvasPoint:
    try:
        x, y = (float(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected X,Y but got {text!r}")
    return CanvasPoint(x, y)


def run_card_detection(session: MeasurementSession) -> bool:
    print_section("CARD CALIBRATION")
    result = session.detect_card()
    if result.calibrated:
        print(f"  ✓ Card detected ({result.candidates} candidate(s))")
        print(f"    Scale: {result.scale_mm_per_px:.6f} mm/px")
        for lbl, corner in zip(['TL', 'TR', 'BR', 'BL'], result.quad):
            print(f"      {lbl}: ({corner.x:.1f}, {corner.y:.1f})")
    else:
        print("  ✗ Card NOT detected")
        print(f"    {result.error_message}")
    return result.calibrated


def run_pupil_detection(session: MeasurementSession) -> bool:
    print_section("PUPIL DETECTION")
    outcome = asyncio.run(session.detect_pupils())
    path = " -> ".join(state.value for state in outcome.transitions)
    if outcome.success:
        print(f"  ✓ Pupils: ({outcome.left.x:.1f}, {outcome.left.y:.1f}) "
              f"and ({outcome.right.x:.1f}, {outcome.right.y:.1f}) canvas px")
    else:
        print(f"  ✗ {session.status}")
    print(f"    States: {path}")
    if outcome.used_cpu_fallback:
        print("    CPU fallback was used")
    return outcome.success


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Measure interpupillary distance on a photo with a 10 x 10 cm card",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("image_path", help="Path to input image")
    parser.add_argument("-o", "--output", help="Write the text report to this file or directory")
    parser.add_argument("--debug-dir", help="Base directory for card-detection debug images")
    parser.add_argument("--card-only", action="store_true",
                        help="Only run card calibration")
    parser.add_argument("--point", action="append", type=parse_point, default=[],
                        metavar="X,Y", help="Pupil center in canvas pixels (repeat; skips auto detection)")

    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")

    try:
        image = load_image_file(args.image_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    debug_dir = create_debug_dir(args.debug_dir) if args.debug_dir else None
    session = MeasurementSession(
        settings=settings,
        orchestrator=DetectionOrchestrator(MediaPipeDetectorLoader.from_settings(settings)),
        calibration=CardCalibration(
            card_mm=settings.card_mm,
            max_aspect=settings.max_card_aspect,
            debug_dir=debug_dir,
        ),
    )
    session.load_image(image)

    h, w = image.shape[:2]
    cw, ch = session.space.display_size
    print_header("DP MEASUREMENT DEMO")
    print(f"  Input: {args.image_path}")
    print(f"  Size: {w}x{h} (canvas {cw}x{ch})")
    if debug_dir:
        print(f"  Debug: {debug_dir}")

    run_card_detection(session)
    if args.card_only:
        return 0

    if args.point:
        for p in args.point:
            session.add_point(p)
    elif not run_pupil_detection(session):
        return 2

    print_section("RESULT")
    try:
        print(f"  {session.measurement().describe()}")
        if args.output:
            path = session.export(args.output)
            print(f"\n    → Report: {path}")
        else:
            print()
            print(session.report())
    except DPEngineError as e:
        print(f"  ✗ {e}")
        return 1

    print("\n✓ Done!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
