"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Phoenix Tracker - Tests API (TestClient, base en mémoire)                   ║
║                                                                              ║
║  1. Signup upline → code équipe, signup downline avec ce code                ║
║  2. Login / me / logout                                                      ║
║  3. CRUD prospects, contacts, tâches isolé par équipe                        ║
║  4. Statistiques équipe / réseau / downlines                                 ║
║  5. Flux temps réel (websocket)                                              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime, timedelta, timezone

import pytest
from starlette.websockets import WebSocketDisconnect

from tests.conftest import login, make_user


def signup(api, email, user_type="upline", upline_team_id=None):
    response = api.post("/api/auth/signup", json={
        "email": email,
        "password": "secret123",
        "confirm_password": "secret123",
        "name": email.split("@")[0],
        "user_type": user_type,
        "upline_team_id": upline_team_id
    })
    return response


class TestAuthFlow:

    def test_root(self, api):
        assert api.get("/").json()["name"] == "Phoenix Tracker API"

    def test_signup_login_me_logout(self, api):
        created = signup(api, "alice@phoenix.test")
        assert created.status_code == 200
        team_id = created.json()["user"]["teamId"]

        headers = login(api, "alice@phoenix.test")
        me = api.get("/api/auth/me", headers=headers).json()
        assert me["teamId"] == team_id
        assert me["personalTeamId"] == team_id
        assert me["state"] == "resolved"
        assert me["loading"] is False

        assert api.post("/api/auth/logout", headers=headers).json()["success"] is True
        assert api.get("/api/auth/me", headers=headers).status_code == 401

    def test_downline_signup_with_code(self, api):
        upline = signup(api, "up@phoenix.test").json()["user"]
        assert api.get(f"/api/auth/verify-team/{upline['teamId']}").json()["valid"] is True

        downline = signup(api, "down@phoenix.test", "downline", upline["teamId"])
        assert downline.status_code == 200
        assert downline.json()["user"]["teamId"] == upline["teamId"]
        assert downline.json()["user"]["personalTeamId"] != upline["teamId"]

    def test_invalid_code_rejected(self, api):
        response = signup(api, "down@phoenix.test", "downline", "ZZZZ9999")
        assert response.status_code == 400
        assert response.json()["detail"] == "invalid upline team id"

    def test_wrong_password(self, api):
        signup(api, "alice@phoenix.test")
        response = api.post("/api/auth/login", json={"email": "alice@phoenix.test", "password": "nope"})
        assert response.status_code == 401

    def test_unauthenticated(self, api):
        assert api.get("/api/prospects").status_code == 401

    def test_legacy_user_with_null_fields_resolves(self, api, fake_db):
        make_user(fake_db, "legacy", email="legacy@phoenix.test")
        fake_db.users.docs[-1].update({"name": None, "createdAt": None, "teamId": "default-team"})
        headers = login(api, "legacy@phoenix.test")

        me = api.get("/api/auth/me", headers=headers).json()
        assert me["state"] == "resolved"
        assert me["teamId"] not in (None, "default-team")
        assert api.get("/api/prospects", headers=headers).status_code == 200

    def test_expired_session_is_dropped(self, api, fake_db, snapshots):
        signup(api, "alice@phoenix.test")
        headers = login(api, "alice@phoenix.test")
        token = headers["Authorization"].split(" ")[1]
        registry = api.app.state.sessions
        assert len(registry) == 1
        assert snapshots.load(token) is not None

        session = next(s for s in fake_db.sessions.docs if s["token"] == token)
        session["expiresAt"] = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()

        assert api.get("/api/auth/me", headers=headers).status_code == 401
        assert len(registry) == 0
        assert not snapshots._path(token).exists()


class TestProspectRoutes:

    def test_crud_and_team_isolation(self, api):
        signup(api, "a@phoenix.test")
        signup(api, "b@phoenix.test")
        headers_a = login(api, "a@phoenix.test")
        headers_b = login(api, "b@phoenix.test")

        created = api.post("/api/prospects", json={"name": "Karim", "status": "contacté"}, headers=headers_a)
        assert created.status_code == 200
        prospect_id = created.json()["prospect"]["id"]

        assert api.get("/api/prospects", headers=headers_a).json()["count"] == 1
        assert api.get("/api/prospects", headers=headers_b).json()["count"] == 0
        assert api.get(f"/api/prospects/{prospect_id}", headers=headers_b).status_code == 404
        assert api.put(f"/api/prospects/{prospect_id}", json={"status": "perdu"},
                       headers=headers_b).status_code == 404

        updated = api.put(f"/api/prospects/{prospect_id}", json={"status": "inscrit"}, headers=headers_a)
        assert updated.json()["prospect"]["status"] == "inscrit"

        assert api.delete(f"/api/prospects/{prospect_id}", headers=headers_a).json()["success"] is True
        assert api.get(f"/api/prospects/{prospect_id}", headers=headers_a).status_code == 404

    def test_invalid_payload(self, api):
        signup(api, "a@phoenix.test")
        headers = login(api, "a@phoenix.test")
        assert api.post("/api/prospects", json={"name": "X", "status": "gagné"}, headers=headers).status_code == 422
        assert api.post("/api/prospects", json={"phone": "20123456"}, headers=headers).status_code == 422

    def test_update_body_limited_to_declared_fields(self, api, fake_db):
        signup(api, "a@phoenix.test")
        headers = login(api, "a@phoenix.test")
        prospect_id = api.post("/api/prospects", json={"name": "Karim"}, headers=headers).json()["prospect"]["id"]

        updated = api.put(f"/api/prospects/{prospect_id}", json={"status": "perdu", "assignedTo": "ghost"},
                          headers=headers).json()["prospect"]
        assert updated["status"] == "perdu"
        assert updated["assignedTo"] is None

        logged = [e for e in fake_db.activity_logs.docs if e["action"] == "update"]
        assert logged[-1]["details"] == {"fields": ["status"]}

    def test_update_rejects_null_name(self, api):
        signup(api, "a@phoenix.test")
        headers = login(api, "a@phoenix.test")
        prospect_id = api.post("/api/prospects", json={"name": "Karim"}, headers=headers).json()["prospect"]["id"]

        assert api.put(f"/api/prospects/{prospect_id}", json={"name": None}, headers=headers).status_code == 422
        assert api.get(f"/api/prospects/{prospect_id}", headers=headers).json()["name"] == "Karim"

    def test_assign_requires_admin(self, api, fake_db):
        make_user(fake_db, "boss", team_id="TEAM0001", role="admin", email="boss@phoenix.test")
        make_user(fake_db, "member", team_id="TEAM0001", email="member@phoenix.test")
        boss = login(api, "boss@phoenix.test")
        member = login(api, "member@phoenix.test")

        prospect_id = api.post("/api/prospects", json={"name": "Nadia"}, headers=member).json()["prospect"]["id"]

        denied = api.put(f"/api/prospects/{prospect_id}/assign", json={"assignedTo": "member"}, headers=member)
        assert denied.status_code == 403

        assigned = api.put(f"/api/prospects/{prospect_id}/assign", json={"assignedTo": "member"}, headers=boss)
        assert assigned.json()["prospect"]["assignedTo"] == "member"

        outsider = api.put(f"/api/prospects/{prospect_id}/assign", json={"assignedTo": "ghost"}, headers=boss)
        assert outsider.status_code == 400


class TestContactAndTaskRoutes:

    def test_contact_job_label(self, api):
        signup(api, "a@phoenix.test")
        headers = login(api, "a@phoenix.test")
        api.post("/api/contacts", json={"name": "Omar", "job": "other", "jobOther": "Pilote", "state": "sfax"},
                 headers=headers)

        contacts = api.get("/api/contacts", params={"state": "sfax"}, headers=headers).json()["contacts"]
        assert contacts[0]["jobLabel"] == "Pilote"

    def test_tasks_flags_and_reminders(self, api):
        signup(api, "a@phoenix.test")
        headers = login(api, "a@phoenix.test")
        soon = (datetime.now(timezone.utc) + timedelta(minutes=90)).isoformat()
        later = (datetime.now(timezone.utc) + timedelta(hours=5)).isoformat()

        soon_task = api.post("/api/tasks", json={"title": "Appeler Karim", "dueDate": soon}, headers=headers).json()
        api.post("/api/tasks", json={"title": "Relance", "dueDate": later}, headers=headers)
        assert soon_task["task"]["dueSoon"] is True

        tasks = api.get("/api/tasks", headers=headers).json()["tasks"]
        assert [t["dueSoon"] for t in tasks] == [True, False]

        first = api.get("/api/tasks/reminders", headers=headers).json()
        second = api.get("/api/tasks/reminders", headers=headers).json()
        assert [t["title"] for t in first["reminders"]] == ["Appeler Karim"]
        assert second["count"] == 0

        task_id = soon_task["task"]["id"]
        done = api.put(f"/api/tasks/{task_id}", json={"completed": True}, headers=headers).json()
        assert done["task"]["dueSoon"] is False
        assert api.get("/api/tasks", params={"completed": "false"}, headers=headers).json()["count"] == 1

    def test_task_update_rejects_null_fields(self, api):
        signup(api, "a@phoenix.test")
        headers = login(api, "a@phoenix.test")
        due = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        task_id = api.post("/api/tasks", json={"title": "Relance", "dueDate": due}, headers=headers).json()["task"]["id"]

        assert api.put(f"/api/tasks/{task_id}", json={"title": None}, headers=headers).status_code == 422
        assert api.put(f"/api/tasks/{task_id}", json={"completed": None}, headers=headers).status_code == 422
        task = api.get(f"/api/tasks/{task_id}", headers=headers).json()
        assert task["title"] == "Relance"
        assert task["completed"] is False


class TestStatsRoutes:

    def test_team_and_network_stats(self, api):
        upline = signup(api, "up@phoenix.test").json()["user"]
        signup(api, "down@phoenix.test", "downline", upline["teamId"])
        up_headers = login(api, "up@phoenix.test")
        down_headers = login(api, "down@phoenix.test")

        for status in ("inscrit", "nouveau", "contacté"):
            api.post("/api/prospects", json={"name": f"P {status}", "status": status}, headers=up_headers)

        team = api.get("/api/stats/team", headers=up_headers).json()
        assert team["status"] == "ok"
        assert team["stats"]["totalProspects"] == 3
        assert team["stats"]["conversionRate"] == 33.3

        network = api.get("/api/stats/network", headers=up_headers).json()
        assert network["stats"]["totalDownlines"] == 1
        assert network["stats"]["totalProspects"] == 3
        assert network["degraded"] is False

        overview = api.get("/api/stats/downlines", headers=up_headers).json()
        assert [d["email"] for d in overview["downlines"]] == ["down@phoenix.test"]

        assert api.get("/api/stats/network", headers=down_headers).status_code == 403

    def test_downline_records_in_overview(self, api):
        upline = signup(api, "up@phoenix.test").json()["user"]
        signup(api, "down@phoenix.test", "downline", upline["teamId"])
        up_headers = login(api, "up@phoenix.test")
        down_headers = login(api, "down@phoenix.test")
        due = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()

        api.post("/api/prospects", json={"name": "Karim", "status": "inscrit"}, headers=down_headers)
        api.post("/api/prospects", json={"name": "Nadia", "status": "inscrit"}, headers=down_headers)
        api.post("/api/tasks", json={"title": "Appeler Karim", "dueDate": due}, headers=down_headers)
        api.post("/api/prospects", json={"name": "Sami"}, headers=up_headers)

        overview = api.get("/api/stats/downlines", headers=up_headers).json()
        downline = overview["downlines"][0]
        assert downline["prospects"] == 2
        assert downline["tasks"] == 1
        assert downline["pendingTasks"] == 1
        assert overview["degraded"] is False

        network = api.get("/api/stats/network", headers=up_headers).json()
        assert network["stats"]["totalProspects"] == 3
        assert network["stats"]["prospectsByStatus"] == {"inscrit": 2, "nouveau": 1}
        assert network["stats"]["activeTasks"] == 1

    def test_degraded_team_stats(self, api, fake_db):
        user = signup(api, "up@phoenix.test").json()["user"]
        headers = login(api, "up@phoenix.test")
        fake_db.fail_teams.add(user["teamId"])

        team = api.get("/api/stats/team", headers=headers).json()
        assert team["degraded"] is True
        assert team["stats"]["totalProspects"] == 0


class TestLiveRoutes:

    def test_rejects_unknown_token(self, api):
        with pytest.raises(WebSocketDisconnect):
            with api.websocket_connect("/api/prospects/live?token=unknown") as ws:
                ws.receive_json()

    def test_snapshots(self, api):
        signup(api, "a@phoenix.test")
        headers = login(api, "a@phoenix.test")
        token = headers["Authorization"].split(" ")[1]

        with api.websocket_connect(f"/api/prospects/live?token={token}") as ws:
            assert ws.receive_json() == {"items": [], "count": 0}
            api.post("/api/prospects", json={"name": "Karim"}, headers=headers)
            snapshot = ws.receive_json()
            assert [p["name"] for p in snapshot["items"]] == ["Karim"]
