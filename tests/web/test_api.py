import datetime as dt
import sys
from contextlib import suppress
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine


ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(scope="session")
def db_path(tmp_path_factory):
    return tmp_path_factory.mktemp("web") / "api.db"


@pytest.fixture
def api_client(db_path, monkeypatch):
    db_url = f"sqlite:///{db_path}"
    monkeypatch.setenv("CELLAR_DATABASE_URL", db_url)

    from cellar_web import database, models  # noqa: F401

    with suppress(Exception):
        database.engine.dispose()
    if db_path.exists():
        db_path.unlink()
    connect_args = {"check_same_thread": False}
    database.engine = create_engine(db_url, echo=False, connect_args=connect_args)

    SQLModel.metadata.create_all(database.engine)

    import server

    with TestClient(server.app) as client:
        yield client


def create_wine(client: TestClient, name: str = "Rioja Reserva", color: str = "red", **extra) -> dict:
    res = client.post("/wines/", json={"name": name, "color": color, **extra})
    assert res.status_code == 201
    return res.json()


def create_location(client: TestClient, name: str, rows=None, cols=None, type_: str = "rack") -> dict:
    res = client.post(
        "/storage/",
        json={"name": name, "type": type_, "row_count": rows, "column_count": cols},
    )
    assert res.status_code == 201
    return res.json()


def position_ids(client: TestClient, location_id: int) -> list[int]:
    res = client.get(f"/storage/{location_id}/grid")
    assert res.status_code == 200
    return [pos["id"] for pos in res.json()["positions"]]


def create_bottle(client: TestClient, wine_id: int, position_id=None, **extra) -> dict:
    res = client.post("/bottles/", json={"wine_id": wine_id, "position_id": position_id, **extra})
    assert res.status_code == 201
    return res.json()


def test_location_grid_is_generated(api_client):
    client = api_client
    cave = create_location(client, "Cave A", 2, 3, "cellar")
    assert cave["capacity"] == 6
    assert cave["available"] == 6
    assert cave["occupancy_rate"] == 0.0

    res = client.get(f"/storage/{cave['id']}/grid")
    data = res.json()
    assert len(data["positions"]) == 6
    assert data["positions"][0]["label"] == "Cave A | Row 1 | Col 1"
    assert data["positions"][-1]["label"] == "Cave A | Row 2 | Col 3"
    assert data["row_occupancy"] == {"1": 0, "2": 0}


def test_location_without_dimensions(api_client):
    client = api_client
    box = create_location(client, "Gift box", type_="case")
    assert box["capacity"] is None
    assert box["occupancy_rate"] == 0.0
    assert position_ids(client, box["id"]) == []


def test_location_validation(api_client):
    client = api_client
    res = client.post("/storage/", json={"name": "Bad", "type": "spaceship"})
    assert res.status_code == 400
    res = client.post("/storage/", json={"name": "Bad", "row_count": 0, "column_count": 3})
    assert res.status_code == 422
    assert client.get("/storage/999").status_code == 404


def test_capacity_optimization(api_client):
    client = api_client
    wine = create_wine(client)
    rack_a = create_location(client, "Rack A", 1, 2)
    rack_b = create_location(client, "Rack B", 1, 3)
    bottles = [create_bottle(client, wine["id"]) for _ in range(4)]

    res = client.post("/storage/optimize", json={"strategy": "capacity"})
    assert res.status_code == 200
    report = res.json()
    assert report["severity"] == "success"
    assert report["message"] == "4 bottles placed"
    assert report["placed"] == 4
    rack_b_positions = position_ids(client, rack_b["id"])
    assert [a["position_id"] for a in report["assignments"][:3]] == rack_b_positions
    assert [a["bottle_id"] for a in report["assignments"]] == [b["id"] for b in bottles]

    assert client.get(f"/storage/{rack_b['id']}").json()["occupancy_rate"] == 100.0
    assert client.get(f"/storage/{rack_a['id']}").json()["occupancy_rate"] == 50.0

    again = client.post("/storage/optimize", json={"strategy": "capacity"}).json()
    assert again["severity"] == "info"
    assert again["message"] == "No bottles to place"


def test_affinity_optimization_groups_same_wine(api_client):
    client = api_client
    rioja = create_wine(client, "Rioja Reserva", "red", region="Rioja")
    chablis = create_wine(client, "Chablis", "white", region="Bourgogne")
    cave_a = create_location(client, "Cave A", 1, 3)
    cave_b = create_location(client, "Cave B", 1, 3)
    b_positions = position_ids(client, cave_b["id"])
    create_bottle(client, rioja["id"], b_positions[0])
    new_rioja = create_bottle(client, rioja["id"])
    new_chablis = create_bottle(client, chablis["id"])

    report = client.post("/storage/optimize", json={"strategy": "affinity"}).json()

    assert report["placed"] == 2
    targets = {a["bottle_id"]: a["position_id"] for a in report["assignments"]}
    assert targets[new_rioja["id"]] == b_positions[1]
    assert targets[new_chablis["id"]] == position_ids(client, cave_a["id"])[0]

    bottle = client.get(f"/bottles/{new_rioja['id']}").json()
    assert bottle["position_label"] == "Cave B | Row 1 | Col 2"


def test_optimize_validation_and_empty_capacity(api_client):
    client = api_client
    wine = create_wine(client)
    create_location(client, "Drawer", type_="drawer")
    bottle = create_bottle(client, wine["id"])

    res = client.post("/storage/optimize", json={"strategy": "random"})
    assert res.status_code == 400

    report = client.post("/storage/optimize", json={}).json()
    assert report["severity"] == "info"
    assert report["message"] == "No free positions available"
    assert report["unplaced"] == [bottle["id"]]


def test_optimize_reports_failed_writes(api_client, monkeypatch):
    client = api_client
    wine = create_wine(client)
    create_location(client, "Rack", 1, 3)
    bottles = [create_bottle(client, wine["id"]) for _ in range(3)]
    broken = bottles[1]["id"]

    from cellar.service import PersistenceError
    from cellar_web.store import SqlCellarStore

    real_assign = SqlCellarStore.assign_position

    def flaky(self, bottle_id, position_id):
        if bottle_id == broken:
            raise PersistenceError("disk full")
        return real_assign(self, bottle_id, position_id)

    monkeypatch.setattr(SqlCellarStore, "assign_position", flaky)

    report = client.post("/storage/optimize", json={"stop_on_error": True}).json()
    assert report["severity"] == "warning"
    assert report["message"] == "1 bottles placed, 1 failed"
    assert report["failed"][0]["bottle_id"] == broken
    assert report["failed"][0]["error"] == "disk full"
    assert report["unplaced"] == [broken, bottles[2]["id"]]

    report = client.post("/storage/optimize", json={"stop_on_error": False}).json()
    assert report["message"] == "1 bottles placed, 1 failed"
    assert report["unplaced"] == [broken]
    assert client.get(f"/bottles/{bottles[2]['id']}").json()["position_id"] is not None


def test_move_and_unplace_bottle(api_client):
    client = api_client
    wine = create_wine(client)
    shelf = create_location(client, "Shelf", 1, 2, "shelf")
    first, second = position_ids(client, shelf["id"])
    resident = create_bottle(client, wine["id"], first)
    bottle = create_bottle(client, wine["id"])

    res = client.post(f"/bottles/{bottle['id']}/move", json={"position_id": first})
    assert res.status_code == 409

    res = client.post(f"/bottles/{bottle['id']}/move", json={"position_id": second})
    assert res.status_code == 200
    assert res.json()["position_label"] == "Shelf | Row 1 | Col 2"

    res = client.post(f"/bottles/{bottle['id']}/move", json={"position_id": 99999})
    assert res.status_code == 404

    res = client.delete(f"/bottles/{resident['id']}/position")
    assert res.status_code == 200
    assert res.json()["position_id"] is None
    assert client.get(f"/storage/{shelf['id']}").json()["available"] == 1


def test_create_bottle_checks(api_client):
    client = api_client
    wine = create_wine(client)
    shelf = create_location(client, "Shelf", 1, 1, "shelf")
    (only,) = position_ids(client, shelf["id"])
    create_bottle(client, wine["id"], only)

    res = client.post("/bottles/", json={"wine_id": wine["id"], "position_id": only})
    assert res.status_code == 409
    res = client.post("/bottles/", json={"wine_id": 4242})
    assert res.status_code == 404


def test_consume_and_gift_free_the_position(api_client):
    client = api_client
    wine = create_wine(client)
    shelf = create_location(client, "Shelf", 1, 2, "shelf")
    first, second = position_ids(client, shelf["id"])
    drunk = create_bottle(client, wine["id"], first)
    given = create_bottle(client, wine["id"], second)

    res = client.post(
        f"/bottles/{drunk['id']}/consume",
        json={"consumption_date": "2024-05-02", "tasting_note": "Ripe cherry"},
    )
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "consumed"
    assert data["position_id"] is None
    assert data["consumption_date"] == "2024-05-02"
    assert data["tasting_note"] == "Ripe cherry"

    res = client.post(f"/bottles/{drunk['id']}/consume", json={})
    assert res.status_code == 400

    res = client.post(f"/bottles/{given['id']}/gift")
    assert res.json()["status"] == "gifted"

    assert client.get(f"/storage/{shelf['id']}").json()["available"] == 2
    consumed = client.get("/bottles/", params={"status": "consumed"}).json()
    assert [b["id"] for b in consumed] == [drunk["id"]]


def test_label_toggle(api_client):
    client = api_client
    bottle = create_bottle(client, create_wine(client)["id"])
    res = client.post(f"/bottles/{bottle['id']}/label", json={"label": "party"})
    assert res.json()["label"] == "party"
    res = client.post(f"/bottles/{bottle['id']}/label", json={"label": "party"})
    assert res.json()["label"] is None


def test_bottle_filters(api_client):
    client = api_client
    rioja = create_wine(client, "Viña Ardanza", "red", vintage=2015, region="Rioja")
    chablis = create_wine(client, "Chablis", "white", vintage=2020, region="Bourgogne")
    shelf = create_location(client, "Shelf", 1, 2, "shelf")
    (first, _second) = position_ids(client, shelf["id"])
    red = create_bottle(client, rioja["id"], first)
    white = create_bottle(client, chablis["id"], label="gift")

    def ids(**params):
        res = client.get("/bottles/", params=params)
        assert res.status_code == 200
        return [b["id"] for b in res.json()]

    assert ids() == [red["id"], white["id"]]
    assert ids(colors="white") == [white["id"]]
    assert ids(search="vina ardanza") == [red["id"]]
    assert ids(labels="null") == [red["id"]]
    assert ids(vintage_min=2018) == [white["id"]]
    assert ids(location_id=shelf["id"]) == [red["id"]]
    assert client.get("/bottles/", params={"status": "broken"}).status_code == 400


def test_reorganize_location(api_client):
    client = api_client
    red = create_wine(client, "Pauillac", "red", region="Bordeaux", vintage=2010)
    white = create_wine(client, "Sancerre", "white", region="Loire", vintage=2021)
    rack = create_location(client, "Rack", 1, 2)
    first, second = position_ids(client, rack["id"])
    white_bottle = create_bottle(client, white["id"], first)
    red_bottle = create_bottle(client, red["id"], second)

    report = client.post(f"/storage/{rack['id']}/reorganize").json()
    assert report["strategy"] == "reorganize"
    assert report["message"] == "2 bottles moved"

    grid = client.get(f"/storage/{rack['id']}/grid").json()
    assert grid["positions"][0]["bottle"]["id"] == red_bottle["id"]
    assert grid["positions"][1]["bottle"]["id"] == white_bottle["id"]

    again = client.post(f"/storage/{rack['id']}/reorganize").json()
    assert again["message"] == "Placement already optimal"
    assert client.post("/storage/999/reorganize").status_code == 404


def test_resize_location(api_client):
    client = api_client
    wine = create_wine(client)
    rack = create_location(client, "Rack", 2, 2)
    positions = position_ids(client, rack["id"])
    create_bottle(client, wine["id"], positions[-1])

    res = client.patch(f"/storage/{rack['id']}", json={"row_count": 1})
    assert res.status_code == 409
    assert len(position_ids(client, rack["id"])) == 4

    res = client.patch(f"/storage/{rack['id']}", json={"column_count": 3})
    assert res.status_code == 200
    assert res.json()["capacity"] == 6
    assert len(position_ids(client, rack["id"])) == 6


def test_delete_location_moves_bottles_to_general_stock(api_client):
    client = api_client
    wine = create_wine(client)
    rack = create_location(client, "Rack", 1, 2)
    (first, _second) = position_ids(client, rack["id"])
    bottle = create_bottle(client, wine["id"], first)

    res = client.delete(f"/storage/{rack['id']}")
    assert res.status_code == 204
    assert client.get(f"/bottles/{bottle['id']}").json()["position_id"] is None
    assert client.get(f"/storage/{rack['id']}").status_code == 404


def test_statistics(api_client):
    client = api_client
    wine = create_wine(client, "Rioja Reserva", "red", region="Rioja", vintage=2015)
    keep = create_bottle(client, wine["id"])
    drunk = create_bottle(client, wine["id"])
    today = dt.date.today()
    client.post(f"/bottles/{drunk['id']}/consume", json={"consumption_date": today.isoformat()})

    res = client.get("/bottles/statistics")
    assert res.status_code == 200
    data = res.json()
    assert data["in_stock"] == 1
    assert data["consumed"] == 1
    assert data["daily_consumption"][today.isoformat()] == 1
    assert data["colors"] == {"red": 1}
    assert data["top_regions"] == [["Rioja", 1]]
    assert data["vintages"] == [[2015, 1]]
    assert keep["status"] == "in_stock"

    res = client.get("/bottles/statistics", params={"start": "2024-05-02", "end": "2024-05-01"})
    assert res.status_code == 400


def test_wines(api_client):
    client = api_client
    assert client.post("/wines/", json={"name": "Odd", "color": "blue"}).status_code == 400
    wine = create_wine(client, "Barolo", "red")
    assert client.get(f"/wines/{wine['id']}").json()["name"] == "Barolo"
    assert client.get("/wines/999").status_code == 404
