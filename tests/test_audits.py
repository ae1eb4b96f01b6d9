"""
Internal audit API tests — planning, lifecycle actions and findings.
"""

import pytest

AUDITS = "/api/v1/audits"
FINDINGS = "/api/v1/audit-findings"


@pytest.fixture()
def audit_id(client, auditor_headers):
    res = client.post(
        AUDITS,
        json={"title": "Q3 process audit", "auditType": "process", "scheduledDate": "2030-09-15",
              "scope": "Welding line"},
        headers=auditor_headers,
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]["id"]


@pytest.fixture()
def make_finding(client, auditor_headers, audit_id):
    def _make(**fields):
        payload = {
            "auditId": audit_id,
            "title": "Missing calibration record",
            "description": "Torque wrench TW-4 has no record for 2030",
            "category": "Documentation",
            "severity": "minor",
            **fields,
        }
        res = client.post(FINDINGS, json=payload, headers=auditor_headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()["findingId"]

    return _make


def _walk(client, audit_id, headers, *actions, **body):
    for action in actions:
        res = client.post(f"{AUDITS}/{audit_id}/{action}", json=body, headers=headers)
        assert res.status_code == 200, (action, res.get_json())
    return res


class TestAuditCrud:
    def test_create(self, client, auditor, audit_id, auditor_headers):
        audit = client.get(f"{AUDITS}/{audit_id}", headers=auditor_headers).get_json()
        assert audit["auditNumber"] == "AUD-0001"
        assert audit["status"] == "planned"
        assert audit["leadAuditorId"] == auditor.id
        assert audit["scheduledDate"].startswith("2030-09-15")

    def test_create_requires_date(self, client, auditor_headers):
        res = client.post(AUDITS, json={"title": "No date"}, headers=auditor_headers)
        assert res.status_code == 400

    def test_create_invalid_type(self, client, auditor_headers):
        res = client.post(
            AUDITS, json={"title": "X", "auditType": "casual", "scheduledDate": "2030-01-01"},
            headers=auditor_headers,
        )
        assert res.status_code == 400

    def test_member_cannot_create(self, client, member_headers):
        res = client.post(AUDITS, json={"title": "X", "scheduledDate": "2030-01-01"}, headers=member_headers)
        assert res.status_code == 403

    def test_update_rejects_status(self, client, audit_id, auditor_headers):
        res = client.put(f"{AUDITS}/{audit_id}", json={"status": "closed"}, headers=auditor_headers)
        assert res.status_code == 400

    def test_update(self, client, audit_id, auditor_headers):
        res = client.put(f"{AUDITS}/{audit_id}", json={"department": "Welding"}, headers=auditor_headers)
        assert res.status_code == 200
        assert res.get_json()["data"]["department"] == "Welding"

    def test_delete_is_admin_only(self, client, audit_id, manager_headers, admin_headers):
        assert client.delete(f"{AUDITS}/{audit_id}", headers=manager_headers).status_code == 403
        assert client.delete(f"{AUDITS}/{audit_id}", headers=admin_headers).status_code == 200

    def test_list(self, client, audit_id, member_headers):
        body = client.get(f"{AUDITS}?status=planned", headers=member_headers).get_json()
        assert body["total"] == 1
        assert body["data"][0]["id"] == audit_id


class TestAuditLifecycle:
    def test_full_review_cycle(self, client, audit_id, auditor_headers, manager, manager_headers):
        _walk(client, audit_id, auditor_headers, "start", "complete", "submit-for-review")
        res = _walk(client, audit_id, manager_headers, "approve", "close")
        data = res.get_json()["data"]
        assert data["status"] == "closed"
        assert data["reviewerId"] == manager.id
        assert data["completedDate"] is not None

    def test_submit_requires_completed(self, client, audit_id, auditor_headers):
        res = client.post(f"{AUDITS}/{audit_id}/submit-for-review", json={}, headers=auditor_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Only completed audits can be submitted for review"

    def test_approve_requires_pending_review(self, client, audit_id, manager_headers):
        res = client.post(f"{AUDITS}/{audit_id}/approve", json={}, headers=manager_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Only audits pending review can be approved"

    def test_auditor_cannot_approve(self, client, audit_id, auditor_headers):
        _walk(client, audit_id, auditor_headers, "start", "complete", "submit-for-review")
        res = client.post(f"{AUDITS}/{audit_id}/approve", json={}, headers=auditor_headers)
        assert res.status_code == 403

    def test_reject_requires_comments_then_revise(self, client, audit_id, auditor_headers, manager_headers):
        _walk(client, audit_id, auditor_headers, "start", "complete", "submit-for-review")
        res = client.post(f"{AUDITS}/{audit_id}/reject", json={}, headers=manager_headers)
        assert res.status_code == 400

        res = _walk(client, audit_id, manager_headers, "reject", reviewComments="Add evidence")
        assert res.get_json()["data"]["status"] == "rejected"
        res = _walk(client, audit_id, auditor_headers, "revise")
        assert res.get_json()["data"]["status"] == "in_progress"

    def test_unknown_action(self, client, audit_id, auditor_headers):
        res = client.post(f"{AUDITS}/{audit_id}/explode", json={}, headers=auditor_headers)
        assert res.status_code == 400

    def test_missing_audit(self, client, auditor_headers):
        res = client.post(f"{AUDITS}/999/start", json={}, headers=auditor_headers)
        assert res.status_code == 404
        assert res.get_json()["error"] == "Audit not found"


class TestFindings:
    def test_create_and_get(self, client, make_finding, auditor, auditor_headers, audit_id):
        finding_id = make_finding()
        finding = client.get(f"{FINDINGS}/{finding_id}", headers=auditor_headers).get_json()
        assert finding["findingNumber"] == "FND-0001"
        assert finding["status"] == "open"
        assert finding["auditId"] == audit_id
        assert finding["identifiedBy"] == auditor.id

    def test_create_missing_fields(self, client, auditor_headers, audit_id):
        res = client.post(FINDINGS, json={"auditId": audit_id, "title": "X"}, headers=auditor_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Missing required fields: description, category, severity"

    def test_create_invalid_severity(self, client, make_finding, auditor_headers, audit_id):
        res = client.post(
            FINDINGS,
            json={"auditId": audit_id, "title": "X", "description": "Y", "category": "Z",
                  "severity": "catastrophic"},
            headers=auditor_headers,
        )
        assert res.status_code == 400

    def test_create_for_missing_audit(self, client, auditor_headers):
        res = client.post(
            FINDINGS,
            json={"auditId": 999, "title": "X", "description": "Y", "category": "Z", "severity": "minor"},
            headers=auditor_headers,
        )
        assert res.status_code == 404

    def test_stats_shape(self, client, make_finding, auditor_headers, audit_id):
        make_finding()
        make_finding(severity="major")
        make_finding(severity="major")
        stats = client.get(f"{FINDINGS}/{audit_id}/stats", headers=auditor_headers).get_json()
        assert stats == {
            "total": 3,
            "bySeverity": {"minor": 1, "major": 2},
            "byStatus": {"open": 3},
        }

    def test_stats_empty_audit(self, client, auditor_headers, audit_id):
        stats = client.get(f"{FINDINGS}/{audit_id}/stats", headers=auditor_headers).get_json()
        assert stats == {"total": 0, "bySeverity": {}, "byStatus": {}}

    def test_findings_for_audit(self, client, make_finding, auditor_headers, audit_id):
        make_finding()
        body = client.get(f"{FINDINGS}/audit/{audit_id}", headers=auditor_headers).get_json()
        assert body["total"] == 1

    def test_list_filter_by_severity(self, client, make_finding, auditor_headers):
        make_finding()
        make_finding(severity="critical")
        body = client.get(f"{FINDINGS}?severity=critical", headers=auditor_headers).get_json()
        assert body["total"] == 1
        assert body["data"][0]["severity"] == "critical"

    def test_status_transitions(self, client, make_finding, auditor_headers):
        finding_id = make_finding()
        for status in ("action_planned", "resolved", "closed"):
            res = client.put(f"{FINDINGS}/{finding_id}", json={"status": status}, headers=auditor_headers)
            assert res.status_code == 200, (status, res.get_json())
        assert res.get_json()["data"]["closedDate"] is not None

    def test_illegal_status_jump(self, client, make_finding, auditor_headers):
        finding_id = make_finding()
        res = client.put(f"{FINDINGS}/{finding_id}", json={"status": "closed"}, headers=auditor_headers)
        assert res.status_code == 400

    def test_link_ncr(self, client, make_finding, auditor_headers):
        finding_id = make_finding()
        ncr = client.post(
            "/api/v1/ncrs",
            json={"title": "Calibration gap", "description": "No record", "source": "Internal Audit",
                  "category": "Documentation", "severity": "minor"},
            headers=auditor_headers,
        ).get_json()
        res = client.post(f"{FINDINGS}/{finding_id}/link-ncr", json={"ncrId": ncr["id"]}, headers=auditor_headers)
        assert res.status_code == 200
        assert res.get_json()["message"] == "Audit finding linked to NCR successfully"
        data = res.get_json()["data"]
        assert data["ncrId"] == ncr["id"]
        assert data["requiresNCR"] is True

    def test_link_missing_ncr(self, client, make_finding, auditor_headers):
        finding_id = make_finding()
        res = client.post(f"{FINDINGS}/{finding_id}/link-ncr", json={"ncrId": 999}, headers=auditor_headers)
        assert res.status_code == 404

    def test_summary(self, client, make_finding, auditor_headers):
        make_finding()
        make_finding(severity="major", category="Safety")
        summary = client.get(f"{FINDINGS}/summary", headers=auditor_headers).get_json()
        assert summary["total"] == 2
        assert summary["byCategory"] == {"Documentation": 1, "Safety": 1}
        assert summary["linkedToNCR"] == 0

    def test_delete(self, client, make_finding, auditor_headers, manager_headers):
        finding_id = make_finding()
        assert client.delete(f"{FINDINGS}/{finding_id}", headers=auditor_headers).status_code == 403
        assert client.delete(f"{FINDINGS}/{finding_id}", headers=manager_headers).status_code == 200

    def test_deleting_audit_cascades(self, client, make_finding, audit_id, admin_headers, auditor_headers):
        finding_id = make_finding()
        client.delete(f"{AUDITS}/{audit_id}", headers=admin_headers)
        assert client.get(f"{FINDINGS}/{finding_id}", headers=auditor_headers).status_code == 404
