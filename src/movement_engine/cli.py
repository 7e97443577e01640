"""Command line entry point: python -m movement_engine ..."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config import get_settings
from .models import BodyMetrics, Gender, SessionSummary
from .persistence import HttpSessionStore, JsonlSessionStore, SessionPayload
from .sample_filter import SampleFilter
from .track_io import load_fixes_csv
from .transitions import TransitionContext, replay

logger = logging.getLogger(__name__)


def format_summary_lines(summary: SessionSummary) -> List[str]:
    minutes, seconds = divmod(int(summary.duration_seconds), 60)
    return [
        f"Start:         {summary.start_time.isoformat()}",
        f"End:           {summary.end_time.isoformat()}",
        f"Duration:      {minutes}m {seconds:02d}s",
        f"Distance:      {summary.total_distance_km:.3f} km",
        f"Steps:         {summary.total_steps}",
        f"Calories:      {summary.total_calories} kcal",
        f"Average speed: {summary.average_speed_kmh:.2f} km/h",
        f"Max speed:     {summary.max_speed_kmh:.2f} km/h",
        f"Path points:   {len(summary.path)}",
    ]


def _cmd_replay(args: argparse.Namespace) -> int:
    settings = get_settings()
    fixes = load_fixes_csv(args.csv)
    metrics = BodyMetrics(
        height_cm=args.height,
        weight_kg=args.weight,
        gender=Gender.parse(args.gender),
    )
    ctx = TransitionContext(
        metrics=metrics,
        sample_filter=SampleFilter(
            accuracy_threshold_m=args.accuracy_threshold or settings.accuracy_threshold_m,
            min_displacement_km=settings.min_displacement_km,
        ),
        speed_window=args.window or settings.speed_window_size,
    )
    result = replay(fixes, ctx)

    print(f"Fixes read: {len(fixes)}, accepted: {len(result.state.accepted_fixes)}, "
          f"rejected: {result.state.rejected_count}")
    if result.summary is None:
        print("No fix passed the filter; no session summary.")
        return 1

    if args.json:
        print(json.dumps(SessionPayload.from_summary(result.summary).to_wire(), indent=2))
    else:
        print("\n".join(format_summary_lines(result.summary)))

    if args.save:
        save_result = HttpSessionStore().save(result.summary)
        if not save_result.ok:
            print(f"Save failed: {save_result.message}", file=sys.stderr)
            return 2
        print(f"Saved as session {save_result.session_id}")
    return 0


def _cmd_retry(args: argparse.Namespace) -> int:
    cache = JsonlSessionStore(args.cache)
    pending = len(cache.load_pending())
    if not pending:
        print("No cached sessions.")
        return 0
    saved = cache.retry_pending(HttpSessionStore())
    print(f"Saved {saved}/{pending} cached sessions.")
    return 0 if saved == pending else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="movement_engine",
        description="Movement Analytics Engine tools",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_replay = sub.add_parser("replay", help="Replay a recorded CSV track and print the session summary")
    p_replay.add_argument("csv", help="CSV with timestamp, latitude, longitude, accuracy columns")
    p_replay.add_argument("--height", type=float, required=True, help="Height in cm")
    p_replay.add_argument("--weight", type=float, required=True, help="Weight in kg")
    p_replay.add_argument("--gender", default="other", choices=[g.value for g in Gender])
    p_replay.add_argument("--accuracy-threshold", type=float, help="Reject fixes at or above this accuracy (m)")
    p_replay.add_argument("--window", type=int, help="Speed estimator window (fixes)")
    p_replay.add_argument("--json", action="store_true", help="Print the session payload as JSON")
    p_replay.add_argument("--save", action="store_true", help="Save the summary through the session API")
    p_replay.set_defaults(func=_cmd_replay)

    p_retry = sub.add_parser("retry", help="Push locally cached sessions to the session API")
    p_retry.add_argument("--cache", help="Cache file (default: MOVEMENT_SESSION_CACHE_PATH)")
    p_retry.set_defaults(func=_cmd_retry)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)
