"""
Sentinel-Vision — Launcher
===========================
Headless entry point: runs the engine on a camera or video file and
prints a once-per-second summary (model status, FPS, alerts).

Usage:
  python start_sentinel.py --source 0 --module classroom-behavior
  python start_sentinel.py --source lobby.mp4 --module safety-detection --duration 60
"""

import argparse
import os
import sys
import time

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from sentinel_engine import SentinelEngine
from sentinel_types import MonitoringModule
from sentinel_utils_core import load_config, setup_logger

_log = setup_logger("Launcher")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sentinel-Vision Launcher")
    parser.add_argument("--source", type=str, default=None,
                        help="Camera ID (0, 1, etc.) or video file path")
    parser.add_argument("--module", type=str, default=None,
                        choices=[m.value for m in MonitoringModule],
                        help="Monitoring module to run")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    parser.add_argument("--width", type=int, default=None, help="Camera width")
    parser.add_argument("--height", type=int, default=None, help="Camera height")
    parser.add_argument("--max-rate", type=float, default=None,
                        help="Max detection calls per second (<= 10)")
    parser.add_argument("--audit", action="store_true",
                        help="Write the audit trail to a per-session log file")
    parser.add_argument("--duration", type=float, default=0.0,
                        help="Stop after N seconds (0 = until Ctrl+C)")
    return parser


def build_config(args: argparse.Namespace) -> dict:
    """Map CLI flags onto the loaded config."""
    config = load_config(args.config)

    if args.source is not None:
        config["camera"]["id"] = int(args.source) if args.source.isdigit() else args.source
    if args.width is not None:
        config["camera"]["width"] = args.width
    if args.height is not None:
        config["camera"]["height"] = args.height
    if args.module is not None:
        config["engine"]["module"] = args.module
    if args.max_rate is not None:
        config["engine"]["max_detection_rate_hz"] = args.max_rate
    if args.audit:
        config["engine"]["log_path"] = f"logs/sentinel_session_{int(time.time())}.jsonl"
    return config


def format_summary(result) -> str:
    status = result.model_status
    mode = "real" if status["real"] else ("fallback" if status["ready"] else "loading")
    alerts = "; ".join(result.analysis.alerts) or "none"
    return (f"[{result.analysis.module.value}] models={mode} "
            f"fps={result.fps:.1f} alerts: {alerts}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = build_config(args)

    print("=" * 60)
    print("  Sentinel-Vision — Starting...")
    print(f"  Source: {config['camera']['id']}")
    print(f"  Module: {config['engine']['module']}")
    print(f"  Max detection rate: {config['engine']['max_detection_rate_hz']} Hz")
    print("=" * 60)

    engine = None
    try:
        engine = SentinelEngine(config)
        engine.start()

        started = time.monotonic()
        last_print = 0.0
        while engine.running:
            now = time.monotonic()
            if args.duration and now - started >= args.duration:
                break

            result = engine.get_latest_result()
            if result is not None and now - last_print >= 1.0:
                print(format_summary(result))
                last_print = now
            else:
                time.sleep(0.05)

    except KeyboardInterrupt:
        print("\n[SENTINEL] Interrupted by user.")
    except Exception as e:
        _log.exception("Critical error: %s", e)
        return 1
    finally:
        if engine is not None:
            print("[SENTINEL] Cleaning up...")
            engine.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
