"""
NCR API tests — classification, lifecycle, assignment, metrics.
"""

import pytest

NCRS = "/api/v1/ncrs"


@pytest.fixture()
def make_ncr(client, auditor_headers):
    def _make(**fields):
        payload = {
            "title": "Burr on flange",
            "description": "Lot 42 flanges show burrs on the sealing face",
            "source": "Inspection",
            "category": "Product Quality",
            "severity": "major",
            **fields,
        }
        res = client.post(NCRS, json=payload, headers=auditor_headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()["id"]

    return _make


def _set_status(client, ncr_id, status, headers):
    return client.put(f"{NCRS}/{ncr_id}/status", json={"status": status}, headers=headers)


class TestCreateNcr:
    def test_create(self, client, make_ncr, auditor, auditor_headers):
        ncr_id = make_ncr()
        ncr = client.get(f"{NCRS}/{ncr_id}", headers=auditor_headers).get_json()
        assert ncr["ncrNumber"] == "NCR-0001"
        assert ncr["status"] == "open"
        assert ncr["reportedBy"] == auditor.id
        assert ncr["impactScore"] == 5

    def test_missing_fields(self, client, auditor_headers):
        res = client.post(NCRS, json={"title": "X"}, headers=auditor_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Missing required fields: description, source, category, severity"

    def test_invalid_severity(self, client, make_ncr, auditor_headers):
        res = client.post(
            NCRS,
            json={"title": "X", "description": "Y", "source": "Inspection",
                  "category": "Safety", "severity": "apocalyptic"},
            headers=auditor_headers,
        )
        assert res.status_code == 400
        assert "severity" in res.get_json()["details"]

    def test_member_cannot_create(self, client, member_headers):
        res = client.post(NCRS, json={"title": "X"}, headers=member_headers)
        assert res.status_code == 403

    def test_classification_options(self, client, member_headers):
        body = client.get(f"{NCRS}/classification-options", headers=member_headers).get_json()
        assert body["severities"] == ["minor", "major", "critical"]
        assert body["impactScores"] == {"minor": 1, "major": 5, "critical": 10}
        assert "Inspection" in body["sources"]


class TestNcrLifecycle:
    def test_resolve_and_close(self, client, make_ncr, manager, manager_headers, auditor_headers):
        ncr_id = make_ncr()
        res = _set_status(client, ncr_id, "resolved", auditor_headers)
        assert res.status_code == 200
        assert res.get_json() == {"message": "NCR status updated successfully", "status": "resolved"}

        assert _set_status(client, ncr_id, "closed", manager_headers).status_code == 200
        ncr = client.get(f"{NCRS}/{ncr_id}", headers=manager_headers).get_json()
        assert ncr["closedDate"] is not None
        assert ncr["verifiedBy"] == manager.id

    def test_auditor_cannot_close(self, client, make_ncr, auditor_headers):
        ncr_id = make_ncr()
        _set_status(client, ncr_id, "resolved", auditor_headers)
        res = _set_status(client, ncr_id, "closed", auditor_headers)
        assert res.status_code == 403
        assert res.get_json()["error"] == "Only Admin and Manager can close NCRs"

    def test_close_requires_resolved(self, client, make_ncr, manager_headers):
        ncr_id = make_ncr()
        res = _set_status(client, ncr_id, "closed", manager_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Cannot close NCR with status 'open'"

    def test_reopen_rejected(self, client, make_ncr, auditor_headers):
        ncr_id = make_ncr()
        _set_status(client, ncr_id, "rejected", auditor_headers)
        res = _set_status(client, ncr_id, "in_progress", auditor_headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "in_progress"

    def test_status_required(self, client, make_ncr, auditor_headers):
        ncr_id = make_ncr()
        res = client.put(f"{NCRS}/{ncr_id}/status", json={}, headers=auditor_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Status is required"

    def test_invalid_status(self, client, make_ncr, auditor_headers):
        ncr_id = make_ncr()
        assert _set_status(client, ncr_id, "fixed", auditor_headers).status_code == 400

    def test_update_cannot_change_status(self, client, make_ncr, auditor_headers):
        ncr_id = make_ncr()
        res = client.put(f"{NCRS}/{ncr_id}", json={"status": "closed"}, headers=auditor_headers)
        assert res.status_code == 400

    def test_update_fields(self, client, make_ncr, auditor_headers):
        ncr_id = make_ncr()
        res = client.put(
            f"{NCRS}/{ncr_id}", json={"rootCause": "Worn deburring tool", "severity": "minor"},
            headers=auditor_headers,
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["rootCause"] == "Worn deburring tool"
        assert data["impactScore"] == 1


class TestAssignAndDelete:
    def test_assign(self, client, make_ncr, member, manager_headers):
        ncr_id = make_ncr()
        res = client.put(f"{NCRS}/{ncr_id}/assign", json={"assignedTo": member.id}, headers=manager_headers)
        assert res.status_code == 200
        assert res.get_json() == {"message": "NCR assigned successfully", "assignedTo": member.id}

    def test_assign_unknown_user(self, client, make_ncr, manager_headers):
        ncr_id = make_ncr()
        res = client.put(f"{NCRS}/{ncr_id}/assign", json={"assignedTo": 999}, headers=manager_headers)
        assert res.status_code == 404

    def test_auditor_cannot_assign(self, client, make_ncr, member, auditor_headers):
        ncr_id = make_ncr()
        res = client.put(f"{NCRS}/{ncr_id}/assign", json={"assignedTo": member.id}, headers=auditor_headers)
        assert res.status_code == 403

    def test_delete_admin_only(self, client, make_ncr, manager_headers, admin_headers):
        ncr_id = make_ncr()
        assert client.delete(f"{NCRS}/{ncr_id}", headers=manager_headers).status_code == 403
        assert client.delete(f"{NCRS}/{ncr_id}", headers=admin_headers).status_code == 200
        assert client.get(f"{NCRS}/{ncr_id}", headers=admin_headers).status_code == 404


class TestListAndMetrics:
    def test_list_filters(self, client, make_ncr, member_headers):
        make_ncr()
        make_ncr(severity="critical")
        body = client.get(f"{NCRS}?severity=critical", headers=member_headers).get_json()
        assert body["total"] == 1
        assert body["limit"] == 10

    def test_list_sort(self, client, make_ncr, member_headers):
        make_ncr(title="B")
        make_ncr(title="A")
        body = client.get(f"{NCRS}?sortBy=title&sortOrder=asc", headers=member_headers).get_json()
        assert [n["title"] for n in body["data"]] == ["A", "B"]

    def test_list_invalid_sort(self, client, member_headers):
        assert client.get(f"{NCRS}?sortBy=drop_table", headers=member_headers).status_code == 400

    def test_metrics(self, client, make_ncr, member_headers, auditor_headers):
        make_ncr(severity="minor")
        make_ncr(severity="major")
        closed = make_ncr(severity="critical")
        _set_status(client, closed, "rejected", auditor_headers)
        metrics = client.get(f"{NCRS}/metrics", headers=member_headers).get_json()
        assert metrics["totalNCRs"] == 3
        assert metrics["totalImpactScore"] == 16
        assert metrics["averageImpactScore"] == 5.33
        assert metrics["openImpactScore"] == 6
        assert metrics["bySeverity"] == {"minor": 1, "major": 1, "critical": 1}
        assert metrics["byStatus"] == {"open": 2, "rejected": 1}
