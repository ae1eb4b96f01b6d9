"""
Audit trail tests — entries written by write operations and the read API.
"""

import pytest

from qms.core.caller import Caller
from qms.models import db
from qms.models.audit_log import AuditLog, sanitize_values, write_audit

LOGS = "/api/v1/audit-logs"


@pytest.fixture()
def idea_id(client, member_headers):
    res = client.post("/api/v1/improvement-ideas", json={"title": "Label bins"}, headers=member_headers)
    return res.get_json()["id"]


class TestWriteAudit:
    def test_sanitize_drops_secrets_and_volatile_keys(self):
        cleaned = sanitize_values({"email": "a@acme.com", "password": "x", "updatedAt": "now"})
        assert cleaned == {"email": "a@acme.com"}
        assert sanitize_values(None) is None

    def test_write_outside_request(self, member):
        caller = Caller(user_id=member.id, email=member.email, ip_address="10.0.0.5")
        entry = write_audit(
            caller=caller, action="export", action_category="system", entity_type="report",
            new_values={"rows": 3, "token": "secret"},
        )
        db.session.commit()
        assert entry.user_email == member.email
        assert entry.ip_address == "10.0.0.5"
        assert entry.request_method is None
        assert entry.new_values == {"rows": 3}

    def test_create_request_is_recorded(self, client, member, idea_id):
        entry = AuditLog.query.filter_by(entity_type="improvement_idea", action="create").one()
        assert entry.user_id == member.id
        assert entry.entity_id == str(idea_id)
        assert entry.entity_identifier == "IDEA-0001"
        assert entry.request_method == "POST"
        assert entry.request_url == "/api/v1/improvement-ideas"
        assert entry.new_values["title"] == "Label bins"


class TestAuditLogApi:
    def test_requires_admin_or_auditor(self, client, member_headers, manager_headers):
        assert client.get(LOGS, headers=member_headers).status_code == 403
        assert client.get(LOGS, headers=manager_headers).status_code == 403

    def test_list_and_filter(self, client, idea_id, manager_headers, auditor_headers):
        client.post(f"/api/v1/improvement-ideas/{idea_id}/approve", json={}, headers=manager_headers)
        body = client.get(LOGS, headers=auditor_headers).get_json()
        assert body["total"] == 2
        assert body["limit"] == 50

        body = client.get(f"{LOGS}?action=status_change", headers=auditor_headers).get_json()
        assert body["total"] == 1
        assert body["data"][0]["newValues"] == {"status": "approved"}

    def test_filter_by_success(self, client, member, auditor_headers):
        client.post("/api/v1/auth/login", json={"email": member.email, "password": "wrong-pass"})
        body = client.get(f"{LOGS}?success=false", headers=auditor_headers).get_json()
        assert body["total"] == 1
        assert body["data"][0]["action"] == "login"

    def test_invalid_date_filter(self, client, auditor_headers):
        res = client.get(f"{LOGS}?startDate=yesterday", headers=auditor_headers)
        assert res.status_code == 400

    def test_get_entry(self, client, idea_id, admin_headers):
        entry_id = AuditLog.query.first().id
        res = client.get(f"{LOGS}/{entry_id}", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["entityType"] == "improvement_idea"
        assert client.get(f"{LOGS}/999", headers=admin_headers).status_code == 404

    def test_entity_history(self, client, idea_id, manager_headers, admin_headers):
        client.put(
            f"/api/v1/improvement-ideas/{idea_id}", json={"department": "Logistics"}, headers=manager_headers
        )
        body = client.get(f"{LOGS}/entity/improvement_idea/{idea_id}", headers=admin_headers).get_json()
        assert body["total"] == 2
        assert {row["action"] for row in body["data"]} == {"create", "update"}

    def test_statistics(self, client, idea_id, member, auditor_headers):
        client.post("/api/v1/auth/login", json={"email": member.email, "password": "wrong-pass"})
        stats = client.get(f"{LOGS}/statistics", headers=auditor_headers).get_json()
        assert stats["totalActions"] == 2
        assert stats["failedActions"] == 1
        assert stats["byCategory"]["improvement"] == 1
        assert stats["topUsers"][0]["userId"] == member.id
