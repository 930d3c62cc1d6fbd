"""Exponential temporal decay for daily-log relevance scores.

    decayed = score * e^(-ln(2) / half_life * max(0, age_days))

Permanent notes (MEMORY.md) and undated Markdown files are evergreen.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo

NOTES_FILENAME = "MEMORY.md"

_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})\.md$")
_SECONDS_PER_DAY = 24 * 60 * 60


def apply_temporal_decay(score: float, age_days: float, half_life_days: float = 30.0) -> float:
    """Down-weight *score* by its age. ``half_life_days <= 0`` disables decay."""
    if half_life_days <= 0:
        return score
    lam = math.log(2) / half_life_days
    return score * math.exp(-lam * max(0.0, age_days))


def is_evergreen_path(path: str | Path) -> bool:
    """MEMORY.md and non-dated .md files never decay."""
    name = Path(path).name
    if name == NOTES_FILENAME:
        return True
    return name.endswith(".md") and not _DATE_RE.match(name)


def age_in_days(
    path: str | Path,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> float | None:
    """Return the age of the document at *path* in days, or None if evergreen.

    Dated files (``YYYY-MM-DD.md``) age from local midnight of that date in
    *tz*; other files fall back to their mtime (age 0 if it can't be read).
    """
    if is_evergreen_path(path):
        return None

    tz = tz or ZoneInfo("UTC")
    now = now or datetime.now(tz)

    match = _DATE_RE.match(Path(path).name)
    if match:
        year, month, day = (int(g) for g in match.groups())
        try:
            born = datetime(year, month, day, tzinfo=tz)
        except ValueError:
            born = None
        if born is not None:
            return max(0.0, (now - born).total_seconds() / _SECONDS_PER_DAY)

    try:
        mtime = Path(path).stat().st_mtime
    except OSError:
        return 0.0
    return max(0.0, (now.timestamp() - mtime) / _SECONDS_PER_DAY)
