"""
Improvement idea API tests — submission, review workflow, listing, statistics.
"""

import pytest
from sqlalchemy import update

from qms.models import db
from qms.models.improvement import ImprovementIdea
from qms.services import improvement_service

IDEAS = "/api/v1/improvement-ideas"


@pytest.fixture()
def make_idea(client, member_headers):
    def _make(**fields):
        payload = {"title": "Test", **fields}
        res = client.post(IDEAS, json=payload, headers=member_headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()["id"]

    return _make


class TestCreateIdea:
    def test_create_minimal(self, client, member, member_headers):
        res = client.post(IDEAS, json={"title": "Test"}, headers=member_headers)
        assert res.status_code == 201
        body = res.get_json()
        assert body["message"] == "Improvement idea created successfully"
        assert body["ideaNumber"] == "IDEA-0001"

        idea = client.get(f"{IDEAS}/{body['id']}", headers=member_headers).get_json()
        assert idea["status"] == "submitted"
        assert idea["submittedBy"] == member.id
        assert idea["reviewedBy"] is None

    def test_numbers_are_sequential(self, make_idea, client, member_headers):
        make_idea()
        second = make_idea(title="Second")
        idea = client.get(f"{IDEAS}/{second}", headers=member_headers).get_json()
        assert idea["ideaNumber"] == "IDEA-0002"

    def test_title_required(self, client, member_headers):
        res = client.post(IDEAS, json={"title": "   "}, headers=member_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Title is required"

    @pytest.mark.parametrize("field", ["title", "description", "department"])
    def test_non_string_text_field(self, client, member_headers, field):
        res = client.post(IDEAS, json={"title": "Test", field: 123}, headers=member_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == f"{field} must be a string"

    def test_cannot_start_in_other_status(self, client, member_headers):
        res = client.post(IDEAS, json={"title": "X", "status": "approved"}, headers=member_headers)
        assert res.status_code == 400

    def test_invalid_expected_impact(self, client, member_headers):
        res = client.post(IDEAS, json={"title": "X", "expectedImpact": "huge"}, headers=member_headers)
        assert res.status_code == 400

    def test_requires_auth(self, client):
        assert client.post(IDEAS, json={"title": "X"}).status_code == 401


class TestReviewWorkflow:
    def test_approve(self, client, make_idea, manager, manager_headers):
        idea_id = make_idea()
        res = client.post(
            f"{IDEAS}/{idea_id}/approve", json={"reviewComments": "ok"}, headers=manager_headers
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "approved"
        assert data["reviewedBy"] == manager.id
        assert data["reviewComments"] == "ok"
        assert data["reviewedDate"] is not None

    def test_approve_twice_is_rejected(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        client.post(f"{IDEAS}/{idea_id}/approve", json={}, headers=manager_headers)
        res = client.post(f"{IDEAS}/{idea_id}/approve", json={}, headers=manager_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Cannot approve idea with status 'approved'"

    def test_reject_requires_comments(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        res = client.post(
            f"{IDEAS}/{idea_id}/reject", json={"reviewComments": "  "}, headers=manager_headers
        )
        assert res.status_code == 400
        assert res.get_json()["error"] == "Review comments are required when rejecting an idea"

    def test_reject(self, client, make_idea, manager, manager_headers):
        idea_id = make_idea()
        res = client.post(
            f"{IDEAS}/{idea_id}/reject", json={"reviewComments": "Out of scope"}, headers=manager_headers
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "rejected"
        assert data["reviewedBy"] == manager.id

    def test_reject_with_non_string_comments(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        res = client.post(f"{IDEAS}/{idea_id}/reject", json={"reviewComments": 5}, headers=manager_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "reviewComments must be a string"
        idea = client.get(f"{IDEAS}/{idea_id}", headers=manager_headers).get_json()
        assert idea["status"] == "submitted"

    def test_status_endpoint_non_string_comments(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        res = client.put(
            f"{IDEAS}/{idea_id}/status",
            json={"status": "approved", "reviewComments": ["ok"]},
            headers=manager_headers,
        )
        assert res.status_code == 400

    def test_member_cannot_approve(self, client, make_idea, member_headers):
        idea_id = make_idea()
        res = client.post(f"{IDEAS}/{idea_id}/approve", json={}, headers=member_headers)
        assert res.status_code == 403

    def test_approve_missing_idea(self, client, manager_headers):
        res = client.post(f"{IDEAS}/999/approve", json={}, headers=manager_headers)
        assert res.status_code == 404
        assert res.get_json()["error"] == "Improvement idea not found"

    def test_status_endpoint_walks_the_lifecycle(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        for status in ("under_review", "approved", "in_progress", "implemented", "closed"):
            res = client.put(f"{IDEAS}/{idea_id}/status", json={"status": status}, headers=manager_headers)
            assert res.status_code == 200, (status, res.get_json())
            assert res.get_json()["data"]["status"] == status
        idea = client.get(f"{IDEAS}/{idea_id}", headers=manager_headers).get_json()
        assert idea["implementedDate"] is not None

    def test_status_endpoint_rejects_illegal_jump(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        res = client.put(f"{IDEAS}/{idea_id}/status", json={"status": "implemented"}, headers=manager_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Cannot implement idea with status 'submitted'"

    def test_status_endpoint_reject_needs_comments(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        res = client.put(f"{IDEAS}/{idea_id}/status", json={"status": "rejected"}, headers=manager_headers)
        assert res.status_code == 400

    def test_status_is_required(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        res = client.put(f"{IDEAS}/{idea_id}/status", json={}, headers=manager_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Status is required"

    def test_unknown_status(self, client, make_idea, manager_headers):
        idea_id = make_idea()
        res = client.put(f"{IDEAS}/{idea_id}/status", json={"status": "done"}, headers=manager_headers)
        assert res.status_code == 400


@pytest.fixture()
def idea_in_status(client, make_idea, manager_headers):
    """Create an idea and drive it to ``status`` through the review endpoints."""
    paths = {
        "approved": ["approved"],
        "in_progress": ["approved", "in_progress"],
        "implemented": ["approved", "in_progress", "implemented"],
        "closed": ["approved", "in_progress", "implemented", "closed"],
    }

    def _make(status):
        idea_id = make_idea()
        if status == "rejected":
            res = client.post(
                f"{IDEAS}/{idea_id}/reject", json={"reviewComments": "Original review"},
                headers=manager_headers,
            )
            assert res.status_code == 200, res.get_json()
        for step in paths.get(status, []):
            body = {"status": step}
            if step == "approved":
                body["reviewComments"] = "Original review"
            res = client.put(f"{IDEAS}/{idea_id}/status", json=body, headers=manager_headers)
            assert res.status_code == 200, (step, res.get_json())
        return idea_id

    return _make


class TestReviewGuards:
    @pytest.mark.parametrize("action", ["approve", "reject"])
    @pytest.mark.parametrize("status", ["approved", "rejected", "implemented", "closed", "in_progress"])
    def test_decided_idea_is_left_untouched(self, client, idea_in_status, admin_headers, action, status):
        idea_id = idea_in_status(status)
        before = client.get(f"{IDEAS}/{idea_id}", headers=admin_headers).get_json()
        assert before["status"] == status

        res = client.post(
            f"{IDEAS}/{idea_id}/{action}", json={"reviewComments": "Second opinion"}, headers=admin_headers
        )
        assert res.status_code == 400
        assert res.get_json()["error"] == f"Cannot {action} idea with status '{status}'"

        after = client.get(f"{IDEAS}/{idea_id}", headers=admin_headers).get_json()
        for key in ("status", "reviewedBy", "reviewComments", "reviewedDate"):
            assert after[key] == before[key], key
        assert after["reviewComments"] == "Original review"

    def test_approve_under_review(self, client, make_idea, manager, manager_headers):
        idea_id = make_idea()
        res = client.put(f"{IDEAS}/{idea_id}/status", json={"status": "under_review"}, headers=manager_headers)
        assert res.status_code == 200
        assert res.get_json()["data"]["reviewedBy"] is None

        res = client.post(f"{IDEAS}/{idea_id}/approve", json={"reviewComments": "Go"}, headers=manager_headers)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "approved"
        assert data["reviewedBy"] == manager.id
        assert data["reviewComments"] == "Go"

    def test_concurrent_modification_is_a_conflict(self, client, make_idea, manager_headers, monkeypatch):
        idea_id = make_idea()
        original_lock = improvement_service.lock_for_update

        def lock_then_bump(model, pk, resource):
            obj = original_lock(model, pk, resource)
            # Another writer commits between our read and our flush.
            db.session.execute(
                update(ImprovementIdea.__table__)
                .where(ImprovementIdea.__table__.c.id == pk)
                .values(version=ImprovementIdea.__table__.c.version + 1)
            )
            return obj

        monkeypatch.setattr(improvement_service, "lock_for_update", lock_then_bump)
        res = client.post(f"{IDEAS}/{idea_id}/approve", json={}, headers=manager_headers)
        assert res.status_code == 409
        assert res.get_json()["error"] == "Record was modified by another request"

        monkeypatch.undo()
        idea = client.get(f"{IDEAS}/{idea_id}", headers=manager_headers).get_json()
        assert idea["status"] == "submitted"
        assert idea["reviewedBy"] is None


class TestUpdateAndDelete:
    def test_update_fields(self, client, make_idea, member_headers):
        idea_id = make_idea()
        res = client.put(
            f"{IDEAS}/{idea_id}",
            json={"title": "Renamed", "estimatedCost": "1200.50", "department": "Assembly"},
            headers=member_headers,
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["title"] == "Renamed"
        assert data["estimatedCost"] == 1200.5
        assert data["department"] == "Assembly"

    def test_update_cannot_change_status(self, client, make_idea, member_headers):
        idea_id = make_idea()
        res = client.put(f"{IDEAS}/{idea_id}", json={"status": "approved"}, headers=member_headers)
        assert res.status_code == 400

    def test_negative_cost(self, client, make_idea, member_headers):
        idea_id = make_idea()
        res = client.put(f"{IDEAS}/{idea_id}", json={"estimatedCost": -5}, headers=member_headers)
        assert res.status_code == 400

    def test_delete_requires_reviewer(self, client, make_idea, member_headers, manager_headers):
        idea_id = make_idea()
        assert client.delete(f"{IDEAS}/{idea_id}", headers=member_headers).status_code == 403
        assert client.delete(f"{IDEAS}/{idea_id}", headers=manager_headers).status_code == 200
        assert client.get(f"{IDEAS}/{idea_id}", headers=manager_headers).status_code == 404


class TestListAndStatistics:
    def test_list_pagination(self, client, make_idea, member_headers):
        for i in range(3):
            make_idea(title=f"Idea {i}")
        res = client.get(f"{IDEAS}?page=1&limit=2", headers=member_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 3
        assert len(body["data"]) == 2
        assert body["page"] == 1
        assert body["limit"] == 2

    def test_list_filter_by_status(self, client, make_idea, manager_headers):
        first = make_idea()
        make_idea()
        client.post(f"{IDEAS}/{first}/approve", json={}, headers=manager_headers)
        res = client.get(f"{IDEAS}?status=approved", headers=manager_headers)
        body = res.get_json()
        assert body["total"] == 1
        assert body["data"][0]["id"] == first

    def test_list_sort_by_title(self, client, make_idea, member_headers):
        make_idea(title="Beta")
        make_idea(title="Alpha")
        res = client.get(f"{IDEAS}?sortBy=title&sortOrder=ASC", headers=member_headers)
        assert [d["title"] for d in res.get_json()["data"]] == ["Alpha", "Beta"]

    def test_invalid_sort_field(self, client, member_headers):
        res = client.get(f"{IDEAS}?sortBy=password", headers=member_headers)
        assert res.status_code == 400

    @pytest.mark.parametrize("query", ["page=0", "limit=101", "limit=abc"])
    def test_invalid_pagination(self, client, member_headers, query):
        res = client.get(f"{IDEAS}?{query}", headers=member_headers)
        assert res.status_code == 400
        assert "Invalid pagination parameters" in res.get_json()["error"]

    def test_statistics(self, client, make_idea, manager_headers):
        first = make_idea(category="safety")
        make_idea(category="safety")
        make_idea()
        client.post(f"{IDEAS}/{first}/approve", json={}, headers=manager_headers)
        stats = client.get(f"{IDEAS}/statistics", headers=manager_headers).get_json()
        assert stats["totalIdeas"] == 3
        assert stats["submitted"] == 2
        assert stats["approved"] == 1
        assert stats["byCategory"] == {"safety": 2, "general": 1}
