import csv
import sys
from datetime import date, datetime
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from cellar import stats_utils
from cellar.records import Bottle, Wine

RIOJA = Wine("w1", "Rioja Reserva", "red", vintage=2015, region="Rioja")
CHABLIS = Wine("w2", "Chablis", "white", vintage=2020, region="Bourgogne")
TABLE = Wine("w3", "Table wine", "red")


def _bottles():
    return [
        Bottle("b1", "w1", wine=RIOJA),
        Bottle("b2", "w1", wine=RIOJA),
        Bottle("b3", "w2", wine=CHABLIS),
        Bottle("b4", "w3", wine=TABLE),
        Bottle("b5", "w1", status="consumed", consumption_date=date(2024, 5, 2), wine=RIOJA),
        Bottle("b6", "w2", status="consumed", consumption_date="2024-05-02T20:15:00", wine=CHABLIS),
        Bottle("b7", "w2", status="gifted", consumption_date=datetime(2024, 5, 3, 9, 0), wine=CHABLIS),
        Bottle("b8", "w1", status="consumed", consumption_date=date(2024, 4, 1), wine=RIOJA),
        Bottle("b9", "w1", status="consumed", wine=RIOJA),
        Bottle("b10", "w1", status="lost", consumption_date=date(2024, 5, 2), wine=RIOJA),
    ]


def test_get_statistics_counts_and_distributions():
    data = stats_utils.get_statistics(_bottles(), date(2024, 5, 1), date(2024, 5, 3))

    assert data["in_stock"] == 4
    assert data["consumed"] == 2
    assert data["gifted"] == 1
    assert data["daily_consumption"] == {
        "2024-05-01": 0,
        "2024-05-02": 2,
        "2024-05-03": 0,
    }
    assert data["colors"] == {"red": 3, "white": 1}
    assert list(data["colors"]) == ["red", "white"]
    assert data["top_regions"] == [("Rioja", 2), ("Bourgogne", 1), ("unknown", 1)]
    assert data["vintages"] == [(2015, 2), (2020, 1)]


def test_get_statistics_empty():
    data = stats_utils.get_statistics([], date(2024, 1, 1), date(2024, 1, 1))
    assert data["in_stock"] == 0
    assert data["daily_consumption"] == {"2024-01-01": 0}
    assert data["top_regions"] == []


def test_as_date_handles_bad_values():
    assert stats_utils._as_date("") is None
    assert stats_utils._as_date("not a date") is None
    assert stats_utils._as_date("2024-02-29") == date(2024, 2, 29)


def test_export_statistics_csv(tmp_path):
    data = stats_utils.get_statistics(_bottles(), date(2024, 5, 1), date(2024, 5, 3))
    out = tmp_path / "stats.csv"
    stats_utils.export_statistics_csv(data, str(out))

    with open(out, newline="", encoding="utf-8") as fh:
        rows = list(csv.reader(fh, delimiter=";"))

    assert rows[0] == ["metric", "value"]
    assert ["in_stock", "4"] in rows
    assert ["color:red", "3"] in rows
    assert ["region:Rioja", "2"] in rows
