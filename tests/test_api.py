"""Tests for users, skills, dashboard and the AI endpoints."""

from generation import TextGenerator
import main


class TestUsers:
    def test_create_or_get_by_email(self, client):
        first = client.post("/api/users", json={"name": "Ana", "email": "ana@example.com"}).json()
        again = client.post("/api/users", json={"name": "Other", "email": "ana@example.com"}).json()
        assert first["id"] == again["id"]
        assert first["credits"] == 0
        assert first["rating"] == 0.0
        assert first["skills_to_teach"] == []

    def test_get_unknown_user(self, client):
        assert client.get("/api/users/65a000000000000000000000").status_code == 404

    def test_invalid_id(self, client):
        assert client.get("/api/users/not-an-id").status_code == 400

    def test_owner_updates_bio_and_availability(self, client, make_user):
        ana = make_user("Ana")
        resp = client.patch(
            f"/api/users/{ana['id']}",
            params={"user_id": ana["id"]},
            json={"bio": "I teach guitar", "availability": ["weekday evenings"]},
        )
        assert resp.status_code == 200
        assert resp.json()["bio"] == "I teach guitar"
        assert resp.json()["availability"] == ["weekday evenings"]

    def test_other_user_cannot_update(self, client, make_user):
        ana, bo = make_user("Ana"), make_user("Bo")
        resp = client.patch(f"/api/users/{ana['id']}", params={"user_id": bo["id"]}, json={"bio": "hacked"})
        assert resp.status_code == 403


class TestSkills:
    def test_create_adds_to_owner_teach_list(self, client, make_user, make_skill):
        ana = make_user("Ana")
        skill_id = make_skill(ana["id"], "Guitar")
        profile = client.get(f"/api/users/{ana['id']}").json()
        assert profile["skills_to_teach"] == [{"id": skill_id, "name": "Guitar"}]
        assert client.get(f"/api/skills/{skill_id}").json()["user_id"] == ana["id"]

    def test_browse_embeds_owner_and_filters(self, client, make_user, make_skill):
        ana, bo = make_user("Ana"), make_user("Bo")
        make_skill(ana["id"], "Guitar", "Music")
        make_skill(bo["id"], "Python", "Tech")

        music = client.get("/api/skills", params={"category": "Music"}).json()
        assert [s["name"] for s in music] == ["Guitar"]
        assert music[0]["user"]["name"] == "Ana"

        others = client.get("/api/skills", params={"exclude_user_id": ana["id"]}).json()
        assert [s["name"] for s in others] == ["Python"]

    def test_unknown_owner(self, client):
        resp = client.post("/api/skills", json={"user_id": "65a000000000000000000000", "name": "x", "category": "y"})
        assert resp.status_code == 404


def test_dashboard(client, make_user, make_skill):
    ana, bo = make_user("Ana"), make_user("Bo")
    skill_id = make_skill(ana["id"])
    client.post("/api/swap-requests", json={"requester_id": bo["id"], "skill_id": skill_id})

    data = client.get("/api/dashboard", params={"user_id": ana["id"]}).json()
    assert data["profile"]["id"] == ana["id"]
    assert len(data["pending_requests"]) == 1
    assert data["upcoming_sessions"] == []


def test_store_unavailable(client, monkeypatch):
    monkeypatch.setattr(main, "db", None)
    resp = client.get("/api/users")
    assert resp.status_code == 503


class TestAiEndpoints:
    def test_bio_suggestion(self, client, fake_llm):
        main.app.dependency_overrides[main.get_generator] = lambda: TextGenerator(client=fake_llm(text='{"bio": "Hi!"}'))
        resp = client.post("/api/ai/bio-suggestion", json={"skills": ["Guitar"]})
        assert resp.status_code == 200
        assert resp.json() == {"bio": "Hi!"}

    def test_malformed_generation_is_a_notice(self, client, fake_llm):
        main.app.dependency_overrides[main.get_generator] = lambda: TextGenerator(client=fake_llm(text="sorry, no JSON"))
        resp = client.post("/api/ai/swap-summary", json={
            "offered_skill": "Cooking",
            "requested_skill": "Guitar",
            "date_time": "Monday",
            "other_user": "Ana",
        })
        assert resp.status_code == 502
        assert "Malformed" in resp.json()["detail"]

    def test_check_conflict_endpoint(self, client):
        resp = client.post("/api/schedule/check-conflict", json={
            "proposed_start_time": "2024-01-02T14:30:00Z",
            "proposed_end_time": "2024-01-02T15:30:00Z",
            "existing_schedules": [
                {"start_time": "2024-01-02T10:00:00Z", "end_time": "2024-01-02T11:00:00Z"},
                {"start_time": "2024-01-02T14:00:00Z", "end_time": "2024-01-02T15:00:00Z", "label": "React Basics"},
            ],
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["has_conflict"] is True
        assert "React Basics" in body["conflict_details"]

    def test_check_conflict_rejects_bad_timestamps(self, client):
        resp = client.post("/api/schedule/check-conflict", json={
            "proposed_start_time": "tomorrow-ish",
            "proposed_end_time": "2024-01-02T15:30:00Z",
        })
        assert resp.status_code == 422


def test_dashboard_caps_pending_requests(client, make_user, make_skill):
    ana = make_user("Ana")
    for i in range(7):
        learner = make_user(f"Learner{i}")
        skill_id = make_skill(ana["id"], f"Skill {i}")
        client.post("/api/swap-requests", json={"requester_id": learner["id"], "skill_id": skill_id})

    data = client.get("/api/dashboard", params={"user_id": ana["id"]}).json()
    assert len(data["pending_requests"]) == 5
