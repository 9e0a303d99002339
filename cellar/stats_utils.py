import csv
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Tuple

from .records import Bottle
from .storage_config import CONSUMED, GIFTED, UNKNOWN

logger = logging.getLogger(__name__)


def _as_date(value) -> date | None:
    """Return ``date`` from a ``date``/``datetime`` or ISO string ``value``.

    Empty or malformed values return ``None`` instead of raising an error.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).split("T", 1)[0]
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def get_statistics(bottles: Iterable[Bottle], start: date, end: date) -> Dict:
    """Return cellar statistics for ``bottles``.

    Parameters
    ----------
    bottles:
        Bottles of every status joined with their wine.
    start, end:
        Inclusive date range used for consumption figures.  Distributions
        describe the current in-stock bottles regardless of the range.
    """

    in_stock = 0
    consumed = 0
    gifted = 0

    daily: Dict[str, int] = {}
    colors: Dict[str, int] = defaultdict(int)
    regions: Dict[str, int] = defaultdict(int)
    vintages: Dict[int, int] = defaultdict(int)

    for bottle in bottles:
        wine = bottle.wine
        if bottle.in_stock:
            in_stock += 1
            colors[wine.color if wine is not None else UNKNOWN] += 1
            regions[(wine.region if wine is not None else None) or UNKNOWN] += 1
            if wine is not None and wine.vintage and wine.vintage > 0:
                vintages[wine.vintage] += 1
            continue

        if bottle.status not in (CONSUMED, GIFTED):
            continue
        when = _as_date(bottle.consumption_date)
        if when is None:
            logger.warning("Bottle %s has no consumption date, skipping", bottle.id)
            continue
        if not start <= when <= end:
            continue
        if bottle.status == CONSUMED:
            consumed += 1
            key = when.isoformat()
            daily[key] = daily.get(key, 0) + 1
        else:
            gifted += 1

    # ensure every day in the range is present
    cur = start
    while cur <= end:
        daily.setdefault(cur.isoformat(), 0)
        cur += timedelta(days=1)

    def _top(d: Dict, limit: int) -> List[Tuple]:
        return sorted(d.items(), key=lambda x: (-x[1], x[0]))[:limit]

    return {
        "in_stock": in_stock,
        "consumed": consumed,
        "gifted": gifted,
        "daily_consumption": dict(sorted(daily.items())),
        "colors": dict(_top(colors, len(colors))),
        "top_regions": _top(regions, 10),
        "vintages": sorted(vintages.items()),
    }


def export_statistics_csv(data: Dict, path: str) -> None:
    """Write ``data`` returned from :func:`get_statistics` to ``path``."""
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, delimiter=";")
        writer.writerow(["metric", "value"])
        writer.writerow(["in_stock", data.get("in_stock", 0)])
        writer.writerow(["consumed", data.get("consumed", 0)])
        writer.writerow(["gifted", data.get("gifted", 0)])
        for color, count in data.get("colors", {}).items():
            writer.writerow([f"color:{color}", count])
        for region, count in data.get("top_regions", []):
            writer.writerow([f"region:{region}", count])
