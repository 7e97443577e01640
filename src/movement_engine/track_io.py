"""
CSV import of recorded position fixes for offline replay.

Expected columns (header row required):
  - timestamp: epoch milliseconds or ISO-8601
  - latitude / longitude: decimal degrees
  - accuracy: horizontal accuracy in meters
  - speed (optional): m/s, negative means unknown
  - altitude (optional): meters
"""

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

from .models import PositionFix

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> datetime:
    """Parse epoch milliseconds or an ISO-8601 string into an aware datetime."""
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
    dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _optional(row: dict, key: str) -> Optional[float]:
    value = (row.get(key) or "").strip()
    if not value:
        return None
    return float(value)


def load_fixes_csv(csv_path: Union[str, Path]) -> List[PositionFix]:
    """
    Load all fixes from a CSV file in file order.

    Malformed rows are skipped and counted in a single warning.

    Raises:
        KeyError: The header lacks a required column
    """
    p = Path(csv_path)
    fixes: List[PositionFix] = []
    skipped = 0

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or []
        missing = {"timestamp", "latitude", "longitude", "accuracy"} - set(fieldnames)
        if missing:
            raise KeyError(f"CSV is missing required columns {sorted(missing)}; found {fieldnames}")

        for row in reader:
            try:
                speed = _optional(row, "speed")
                fixes.append(
                    PositionFix(
                        latitude=float(row["latitude"]),
                        longitude=float(row["longitude"]),
                        timestamp=parse_timestamp(row["timestamp"]),
                        accuracy_m=float(row["accuracy"]),
                        speed_mps=speed if speed is not None and speed >= 0 else None,
                        altitude_m=_optional(row, "altitude"),
                    )
                )
            except (ValueError, TypeError):
                skipped += 1

    if skipped:
        logger.warning(f"[TRACK] Skipped {skipped} malformed rows in {p}")
    return fixes


def write_fixes_csv(csv_path: Union[str, Path], fixes: List[PositionFix]) -> None:
    """Write fixes in the format load_fixes_csv() reads."""
    with Path(csv_path).open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["timestamp", "latitude", "longitude", "accuracy", "speed", "altitude"])
        for fix in fixes:
            writer.writerow([
                int(fix.timestamp.timestamp() * 1000),
                f"{fix.latitude:.7f}",
                f"{fix.longitude:.7f}",
                fix.accuracy_m,
                "" if fix.speed_mps is None else fix.speed_mps,
                "" if fix.altitude_m is None else fix.altitude_m,
            ])
