"""
Replay a recorded detector trace through the crop engine.

Each line of the trace is a JSON object with a "type" field:
    {"type": "load", "width": 1920, "height": 1080, "fps": 23.976}
    {"type": "detect", "w": 1920, "h": 800, "x": 0, "y": 140}
    {"type": "detect", "metadata": {"lavfi.cropdetect.w": "1920", ...}}
    {"type": "detect"}                      (no data)
    {"type": "tick", "t": 1000}             (playback time in ms)
    {"type": "seek"} / {"type": "resume"}
    {"type": "pause", "paused": true}
    {"type": "toggle"}
    {"type": "end"}
The pipeline commands emitted by the engine are printed to stdout.
"""
import argparse
import json
import logging
import sys
from typing import Iterable

from domain.errors import ConfigError
from domain.events import Seek, Resume, Pause, Toggle, FileLoaded, FileEnded
from domain.pipeline import RecordingPipeline
from realtime.lifecycle import CropController
from trust.config import CropOptions


def replay(lines: Iterable[str], controller: CropController) -> int:
    """
    Feed trace lines to a controller.

    Args:
        lines: JSON lines
        controller: Controller receiving the events

    Returns:
        Number of malformed lines that were skipped
    """
    logger = logging.getLogger("Replay")
    errors = 0
    for number, line in enumerate(lines, 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            record = json.loads(line)
            kind = record["type"]
            if kind == "load":
                controller.on_lifecycle(FileLoaded(
                    width=int(record["width"]),
                    height=int(record["height"]),
                    fps=record.get("fps"),
                    albumart=bool(record.get("albumart", False)),
                    time_pos=record.get("t"),
                ))
            elif kind == "detect":
                sample = record.get("metadata")
                if sample is None and "w" in record:
                    sample = {k: record.get(k) for k in ("w", "h", "x", "y")}
                controller.on_detection(sample, record.get("t"))
            elif kind == "tick":
                controller.on_clock_tick(record.get("t"))
            elif kind == "seek":
                controller.on_lifecycle(Seek())
            elif kind == "resume":
                controller.on_lifecycle(Resume())
            elif kind == "pause":
                controller.on_lifecycle(Pause(bool(record.get("paused", True))))
            elif kind == "toggle":
                controller.on_lifecycle(Toggle())
            elif kind == "end":
                controller.on_lifecycle(FileEnded())
            else:
                raise ValueError(f"unknown type {kind!r}")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Line {number} skipped: {e}")
            errors += 1
    return errors


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Replay a detector trace through the dynacrop engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python app.py trace.jsonl
  python app.py trace.jsonl --opts "mode=4,new_known_ratio_timer=3"
  cat trace.jsonl | python app.py - --log-level DEBUG
        """
    )
    parser.add_argument(
        "trace",
        help="JSON lines trace file, '-' for stdin"
    )
    parser.add_argument(
        "--opts", "-o",
        default="",
        help="Options as key=value pairs separated by commas"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        options = CropOptions.from_script_opts(args.opts)
    except ConfigError as e:
        print(f"Invalid options: {e}")
        return 2

    controller = CropController(RecordingPipeline(echo=True), options)
    if args.trace == "-":
        errors = replay(sys.stdin, controller)
    else:
        try:
            with open(args.trace, "r", encoding="utf-8") as f:
                errors = replay(f, controller)
        except OSError as e:
            print(f"Cannot read trace: {e}")
            return 2
    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
