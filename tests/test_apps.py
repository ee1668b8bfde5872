import pytest

from rms.app import API_METHODS, create_admin_app, create_api_app
from rms.colladas import create_collada, create_marker
from rms.db import connect
from rms.environments import create_environment, create_interface
from rms.pairs import create_pair, get_pair_by_id, list_pairs
from rms.widgets import create_map, create_nav2d

ADMIN_AUTH = ("admin", "admin")


def login(client) -> None:
    response = client.post("/login", data={"username": "admin", "password": "admin"})
    assert response.status_code == 302


def seed_robot_lab(db) -> None:
    conn = connect(db)
    create_environment(conn, "robot1.example.edu:9090", "rosbridge", "PR2")
    create_environment(conn, "robot2.example.edu:9090", "rosbridge", "TurtleBot")
    create_interface(conn, "Basic Teleop", "basic/")
    create_interface(conn, "Map Navigation", "nav/")
    conn.close()


def test_health_endpoint_available_without_auth(tmp_path) -> None:
    db = tmp_path / "rms.db"
    for app in [create_admin_app(str(db)), create_api_app(str(db))]:
        response = app.test_client().get("/healthz")
        assert response.status_code == 200
        assert response.get_json()["status"] == "ok"
        assert response.get_json()["app"] in {"admin", "api"}


def test_admin_requires_login(tmp_path) -> None:
    client = create_admin_app(str(tmp_path / "rms.db")).test_client()

    response = client.get("/")
    assert response.status_code == 302
    assert "/login" in response.location


def test_login_rejects_invalid_credentials(tmp_path) -> None:
    client = create_admin_app(str(tmp_path / "rms.db")).test_client()

    response = client.post("/login", data={"username": "admin", "password": "nope"})
    assert response.status_code == 200
    assert "Invalid credentials" in response.get_data(as_text=True)


def test_logout_clears_session(tmp_path) -> None:
    client = create_admin_app(str(tmp_path / "rms.db")).test_client()
    login(client)

    assert client.post("/logout").status_code == 302
    redirected = client.get("/")
    assert redirected.status_code == 302
    assert "/login" in redirected.location


def test_admin_pair_lifecycle(tmp_path) -> None:
    db = tmp_path / "rms.db"
    app = create_admin_app(str(db))
    seed_robot_lab(db)
    client = app.test_client()
    login(client)

    page = client.get("/")
    assert page.status_code == 200
    html = page.get_data(as_text=True)
    assert "No environment-interface pairs found." in html
    assert "1: robot1.example.edu:9090 -- rosbridge :: PR2" in html

    created = client.post("/pairs", data={"envid": "1", "intid": "2"})
    assert created.status_code == 302
    assert "error=" not in created.location

    duplicate = client.post("/pairs", data={"envid": "1", "intid": "2"})
    assert duplicate.status_code == 302
    assert "error=" in duplicate.location

    edit_page = client.get("/?edit=1")
    assert 'value="1" readonly="readonly"' in edit_page.get_data(as_text=True)

    updated = client.post("/pairs", data={"id": "1", "envid": "2", "intid": "2"})
    assert updated.status_code == 302
    conn = connect(db)
    assert (get_pair_by_id(conn, 1).envid, get_pair_by_id(conn, 1).intid) == (2, 2)

    assert client.post("/pairs/1/delete").status_code == 302
    assert list_pairs(conn) == []

    missing = client.post("/pairs/1/delete")
    assert missing.status_code == 302
    assert "error=" in missing.location


def test_admin_interface_page_embeds_widgets(tmp_path) -> None:
    db = tmp_path / "rms.db"
    app = create_admin_app(str(db))
    seed_robot_lab(db)
    conn = connect(db)
    good_map = create_map(conn, 1, "/map")
    create_nav2d(conn, 1, good_map.mapid, "/move_base", "move_base_msgs/MoveBaseAction")
    create_nav2d(conn, 1, 404, "/move_base", "move_base_msgs/MoveBaseAction")
    create_pair(conn, 1, 2)
    client = app.test_client()
    login(client)

    page = client.get("/interfaces/1?width=800&height=600")
    assert page.status_code == 200
    html = page.get_data(as_text=True)
    assert "Map Navigation" in html
    assert 'width="800" height="600"' in html
    assert "<h2>Navigation has invalid map ID.</h2>" in html

    assert client.get("/interfaces/99").status_code == 404


def test_logs_endpoint_requires_authentication(tmp_path) -> None:
    client = create_api_app(str(tmp_path / "rms.db")).test_client()

    for method in API_METHODS:
        response = client.open("/api/config/logs", method=method)
        assert response.status_code == 401
        if method != "HEAD":
            assert response.get_json() == {"ok": False, "msg": "Invalid authentication.", "data": None}

    wrong = client.get("/api/config/logs", auth=("admin", "wrong"))
    assert wrong.status_code == 401


def test_logs_endpoint_is_unavailable_for_every_method(tmp_path) -> None:
    client = create_api_app(str(tmp_path / "rms.db")).test_client()

    for method in API_METHODS + ["TRACE", "PROPFIND"]:
        response = client.open("/api/config/logs", method=method, auth=ADMIN_AUTH)
        assert response.status_code == 404
        assert response.headers["Cache-Control"] == "no-cache, must-revalidate"
        if method != "HEAD":
            assert response.get_json()["msg"] == f"{method} method is unavailable."


def test_api_pair_crud(tmp_path) -> None:
    db = tmp_path / "rms.db"
    client = create_api_app(str(db)).test_client()
    seed_robot_lab(db)

    created = client.post("/api/robot_environments/pairs", json={"envid": 1, "intid": 2}, auth=ADMIN_AUTH)
    assert created.status_code == 201
    assert created.get_json()["data"] == {"pairid": 1, "envid": 1, "intid": 2}

    duplicate = client.post("/api/robot_environments/pairs", json={"envid": 1, "intid": 2}, auth=ADMIN_AUTH)
    assert duplicate.status_code == 409
    assert duplicate.get_json()["msg"] == "Environment-interface pair 1-2 already exists"

    incomplete = client.post("/api/robot_environments/pairs", json={"envid": 1}, auth=ADMIN_AUTH)
    assert incomplete.status_code == 400

    by_combo = client.get("/api/robot_environments/pairs?envid=1&intid=2", auth=ADMIN_AUTH)
    assert by_combo.get_json()["data"]["pairid"] == 1

    extra = client.put(
        "/api/robot_environments/pairs",
        json={"id": 1, "pairid": 5, "envid": 2, "intid": 2, "extra": 1},
        auth=ADMIN_AUTH,
    )
    assert extra.status_code == 400

    updated = client.put("/api/robot_environments/pairs", json={"id": 1, "intid": 1}, auth=ADMIN_AUTH)
    assert updated.status_code == 200
    assert updated.get_json()["data"] == {"pairid": 1, "envid": 1, "intid": 1}

    listed = client.get("/api/robot_environments/pairs?envid=1", auth=ADMIN_AUTH)
    assert [pair["intid"] for pair in listed.get_json()["data"]] == [1]

    assert client.delete("/api/robot_environments/pairs?id=1", auth=ADMIN_AUTH).status_code == 200
    missing = client.delete("/api/robot_environments/pairs?id=1", auth=ADMIN_AUTH)
    assert missing.status_code == 404
    assert missing.get_json()["msg"] == "Environment-interface pair ID 1 does not exist"

    assert client.get("/api/robot_environments/pairs", auth=ADMIN_AUTH).get_json()["data"] == []
    assert client.get("/api/robot_environments/pairs?id=1", auth=ADMIN_AUTH).status_code == 404
    assert client.patch("/api/robot_environments/pairs", json={}, auth=ADMIN_AUTH).status_code == 404
    assert client.open("/api/robot_environments/pairs", method="TRACE", auth=ADMIN_AUTH).status_code == 404


def test_api_rejects_bad_input(tmp_path) -> None:
    client = create_api_app(str(tmp_path / "rms.db")).test_client()

    bad_id = client.get("/api/robot_environments/pairs?id=abc", auth=ADMIN_AUTH)
    assert bad_id.status_code == 400

    bad_json = client.post(
        "/api/robot_environments/pairs",
        data="{not json",
        content_type="application/json",
        auth=ADMIN_AUTH,
    )
    assert bad_json.status_code == 400
    assert bad_json.get_json()["ok"] is False

    lone_intid = client.get("/api/robot_environments/pairs?intid=3", auth=ADMIN_AUTH)
    assert lone_intid.status_code == 400
    assert lone_intid.get_json()["msg"] == "intid is only accepted together with envid"

    assert client.get("/api/no/such/endpoint", auth=ADMIN_AUTH).status_code == 404


def test_api_editor_and_widget_fragments(tmp_path) -> None:
    db = tmp_path / "rms.db"
    client = create_api_app(str(db)).test_client()
    seed_robot_lab(db)
    conn = connect(db)
    map2d = create_map(conn, 1, "/map", continuous=True)
    nav = create_nav2d(conn, 1, map2d.mapid, "/move_base", "move_base_msgs/MoveBaseAction")
    create_pair(conn, 2, 1)

    editor = client.get("/api/robot_environments/pairs/editor?id=1", auth=ADMIN_AUTH)
    assert editor.status_code == 200
    assert 'readonly="readonly"' in editor.get_json()["data"]["html"]

    widget = client.get(f"/api/robot_environments/widgets/nav2d?id={nav.navid}&width=320", auth=ADMIN_AUTH)
    assert widget.status_code == 200
    html = widget.get_json()["data"]["html"]
    assert 'width="320" height="360"' in html
    assert "continuous : true" in html

    missing = client.get("/api/robot_environments/widgets/nav2d?id=99", auth=ADMIN_AUTH)
    assert missing.status_code == 404


@pytest.mark.parametrize("query, expected", [("", [1, 2, 3]), ("?studyid=1", [1, 2])])
def test_api_conditions(tmp_path, query, expected) -> None:
    db = tmp_path / "rms.db"
    client = create_api_app(str(db)).test_client()
    conn = connect(db)
    with conn:
        conn.executemany(
            "INSERT INTO conditions(studyid, pairid, name) VALUES (?, ?, ?)",
            [(1, 1, "A"), (1, 2, "B"), (2, None, "C")],
        )

    response = client.get(f"/api/user_studies/conditions{query}", auth=ADMIN_AUTH)
    assert response.status_code == 200
    assert [item["condid"] for item in response.get_json()["data"]] == expected

    single = client.get("/api/user_studies/conditions?id=3", auth=ADMIN_AUTH)
    assert single.get_json()["data"] == {"condid": 3, "studyid": 2, "pairid": None, "name": "C"}
    assert client.get("/api/user_studies/conditions?id=9", auth=ADMIN_AUTH).status_code == 404
    assert client.post("/api/user_studies/conditions", json={}, auth=ADMIN_AUTH).status_code == 404


def test_api_colladas(tmp_path) -> None:
    db = tmp_path / "rms.db"
    client = create_api_app(str(db)).test_client()
    conn = connect(db)
    pr2 = create_collada(conn, "PR2")
    create_marker(conn, pr2.colladaid, "/pr2_marker")

    detail = client.get(f"/api/robot_environments/colladas?id={pr2.colladaid}", auth=ADMIN_AUTH)
    assert detail.get_json()["data"]["ims"] == [{"imid": 1, "colladaid": 1, "topic": "/pr2_marker"}]

    deleted = client.delete(f"/api/robot_environments/colladas?id={pr2.colladaid}", auth=ADMIN_AUTH)
    assert deleted.get_json()["data"] == {"ims_removed": 1}
    assert client.get("/api/robot_environments/colladas", auth=ADMIN_AUTH).get_json()["data"] == []
