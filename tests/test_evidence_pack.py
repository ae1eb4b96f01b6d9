"""
Evidence pack tests — option parsing, PDF generation, audit trail.
"""

from datetime import date

import pytest

from qms.core.exceptions import ValidationError
from qms.models.audit_log import AuditLog
from qms.services import evidence_pack_service
from qms.services.evidence_pack_service import generate_evidence_pack, pack_filename, parse_options

PACK = "/api/v1/evidence-pack"


class TestOptions:
    def test_defaults_include_everything(self):
        opts = parse_options({})
        assert opts["includeNCRs"] and opts["includeCAPAs"]
        assert opts["includeAudits"] and opts["includeImprovementIdeas"]
        assert opts["startDate"] is None and opts["endDate"] is None

    def test_flags_and_dates(self):
        opts = parse_options({"includeCAPAs": "false", "startDate": "2030-01-01", "endDate": "2030-12-31"})
        assert opts["includeCAPAs"] is False
        assert opts["startDate"] == date(2030, 1, 1)

    def test_inverted_range(self):
        with pytest.raises(ValidationError):
            parse_options({"startDate": "2030-12-31", "endDate": "2030-01-01"})

    def test_bad_date(self):
        with pytest.raises(ValidationError):
            parse_options({"startDate": "someday"})

    def test_filename(self):
        assert pack_filename(date(2030, 3, 4)) == "QMS_Evidence_Pack_2030-03-04.pdf"

    def test_options_endpoint(self, client, member_headers):
        body = client.get(f"{PACK}/options", headers=member_headers).get_json()
        assert body["format"] == "pdf"
        assert [o["name"] for o in body["options"]][:4] == [
            "includeNCRs", "includeCAPAs", "includeAudits", "includeImprovementIdeas",
        ]


class TestGenerate:
    def test_empty_database_still_renders(self):
        pdf = generate_evidence_pack(parse_options({}))
        assert pdf.startswith(b"%PDF")

    def test_generate_endpoint(self, client, auditor, auditor_headers, member_headers):
        client.post(
            "/api/v1/ncrs",
            json={"title": "Leak", "description": "Valve leak", "source": "Inspection",
                  "category": "Product Quality", "severity": "major"},
            headers=auditor_headers,
        )
        client.post("/api/v1/improvement-ideas", json={"title": "Poka-yoke jig"}, headers=member_headers)

        res = client.post(f"{PACK}/generate", json={"includeCAPAs": False}, headers=auditor_headers)
        assert res.status_code == 200
        assert res.mimetype == "application/pdf"
        assert res.data.startswith(b"%PDF")
        assert res.headers["Content-Length"] == str(len(res.data))
        assert pack_filename() in res.headers["Content-Disposition"]

        entry = AuditLog.query.filter_by(action_category="evidence_pack").one()
        assert entry.success is True
        assert entry.user_id == auditor.id
        assert entry.new_values["includeCAPAs"] is False

    def test_member_cannot_generate(self, client, member_headers):
        assert client.post(f"{PACK}/generate", json={}, headers=member_headers).status_code == 403

    def test_invalid_range_is_400(self, client, auditor_headers):
        res = client.post(
            f"{PACK}/generate", json={"startDate": "2030-12-31", "endDate": "2030-01-01"},
            headers=auditor_headers,
        )
        assert res.status_code == 400

    def test_failure_is_audited(self, client, auditor_headers, monkeypatch):
        def _boom(options):
            raise RuntimeError("renderer crashed")

        monkeypatch.setattr(evidence_pack_service, "generate_evidence_pack", _boom)
        res = client.post(f"{PACK}/generate", json={}, headers=auditor_headers)
        assert res.status_code == 500
        assert res.get_json() == {"error": "Failed to generate evidence pack", "message": "renderer crashed"}

        entry = AuditLog.query.filter_by(action_category="evidence_pack").one()
        assert entry.success is False
        assert entry.error_message == "renderer crashed"
