"""
Admin API tests — email templates and the skill level catalogue.
"""

import pytest

from qms.services.email_template_service import extract_placeholders, render

TEMPLATES = "/api/v1/email-templates"
SKILLS = "/api/v1/skill-levels"


@pytest.fixture()
def make_template(client, admin_headers):
    def _make(**fields):
        payload = {
            "name": "ncr-assigned",
            "displayName": "NCR assigned",
            "type": "ncr_assignment",
            "category": "ncr",
            "subject": "NCR {{ncrNumber}} assigned",
            "body": "<p>Hello {{userName}}, NCR {{ncrNumber}} is yours.</p>",
            **fields,
        }
        res = client.post(TEMPLATES, json=payload, headers=admin_headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()["data"]

    return _make


class TestRendering:
    def test_render_keeps_unknown_placeholders(self):
        assert render("Hi {{ name }}, {{missing}}", {"name": "Ada"}) == "Hi Ada, {{missing}}"

    def test_extract_placeholders_in_order(self):
        assert extract_placeholders("{{a}} {{b}}", "{{a}} {{c}}") == ["a", "b", "c"]


class TestEmailTemplates:
    def test_create_extracts_placeholders(self, make_template):
        template = make_template()
        assert template["placeholders"] == ["ncrNumber", "userName"]
        assert template["isActive"] is True
        assert template["isDefault"] is False

    def test_missing_fields(self, client, admin_headers):
        res = client.post(TEMPLATES, json={"name": "x"}, headers=admin_headers)
        assert res.status_code == 400

    def test_invalid_type(self, client, make_template, admin_headers):
        res = client.post(
            TEMPLATES,
            json={"name": "x", "displayName": "X", "type": "birthday", "category": "general",
                  "subject": "s", "body": "b"},
            headers=admin_headers,
        )
        assert res.status_code == 400

    def test_admin_only(self, client, manager_headers):
        assert client.get(TEMPLATES, headers=manager_headers).status_code == 403

    def test_single_default_per_type(self, client, make_template, admin_headers):
        first = make_template(isDefault=True)
        second = make_template(name="ncr-assigned-2", isDefault=True)
        default = client.get(f"{TEMPLATES}/type/ncr_assignment/default", headers=admin_headers).get_json()
        assert default["id"] == second["id"]
        assert client.get(f"{TEMPLATES}/{first['id']}", headers=admin_headers).get_json()["isDefault"] is False

    def test_no_default(self, client, admin_headers):
        res = client.get(f"{TEMPLATES}/type/capa_assignment/default", headers=admin_headers)
        assert res.status_code == 404

    def test_list_by_type_and_meta(self, client, make_template, admin_headers):
        make_template()
        make_template(name="audit", type="audit_assignment", category="audit")
        body = client.get(f"{TEMPLATES}/type/audit_assignment", headers=admin_headers).get_json()
        assert body["total"] == 1
        assert client.get(f"{TEMPLATES}?category=ncr", headers=admin_headers).get_json()["total"] == 1
        types = client.get(f"{TEMPLATES}/meta/types", headers=admin_headers).get_json()["data"]
        assert "ncr_assignment" in types
        categories = client.get(f"{TEMPLATES}/meta/categories", headers=admin_headers).get_json()["data"]
        assert categories == ["ncr", "training", "audit", "capa", "general"]

    def test_preview(self, client, make_template, admin_headers):
        template = make_template()
        res = client.post(
            f"{TEMPLATES}/{template['id']}/preview", json={"values": {"ncrNumber": "NCR-0007"}},
            headers=admin_headers,
        )
        body = res.get_json()
        assert body["subject"] == "NCR NCR-0007 assigned"
        assert body["missingPlaceholders"] == ["userName"]

    def test_send_test_without_smtp_is_logged(self, client, make_template, admin_headers):
        template = make_template()
        res = client.post(
            f"{TEMPLATES}/{template['id']}/send-test",
            json={"toEmail": "qa@acme.com", "values": {"ncrNumber": "NCR-1", "userName": "Ada"}},
            headers=admin_headers,
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["message"] == "Test email processed"
        assert body["result"]["status"] == "logged"

    def test_send_test_requires_recipient(self, client, make_template, admin_headers):
        template = make_template()
        res = client.post(f"{TEMPLATES}/{template['id']}/send-test", json={}, headers=admin_headers)
        assert res.status_code == 400

    def test_update_and_delete(self, client, make_template, admin_headers):
        template = make_template()
        res = client.put(f"{TEMPLATES}/{template['id']}", json={"isActive": False}, headers=admin_headers)
        assert res.get_json()["data"]["isActive"] is False
        assert client.delete(f"{TEMPLATES}/{template['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"{TEMPLATES}/{template['id']}", headers=admin_headers).status_code == 404


class TestSkillLevels:
    def _create(self, client, headers, level, name):
        return client.post(
            SKILLS, json={"level": level, "name": name, "description": f"{name} level"}, headers=headers
        )

    def test_create_and_read(self, client, admin_headers, member_headers):
        assert self._create(client, admin_headers, 3, "Competent").status_code == 201
        self._create(client, admin_headers, 1, "Novice")

        body = client.get(SKILLS, headers=member_headers).get_json()
        assert [s["level"] for s in body["data"]] == [1, 3]

        res = client.get(f"{SKILLS}/level/3", headers=member_headers)
        assert res.status_code == 200
        assert res.get_json()["name"] == "Competent"

    def test_level_out_of_range(self, client, admin_headers):
        res = self._create(client, admin_headers, 7, "Guru")
        assert res.status_code == 400
        assert res.get_json()["error"] == "Level must be between 1 and 5"

    def test_lookup_out_of_range(self, client, member_headers):
        res = client.get(f"{SKILLS}/level/0", headers=member_headers)
        assert res.status_code == 400

    def test_duplicate_level(self, client, admin_headers):
        self._create(client, admin_headers, 2, "Beginner")
        res = self._create(client, admin_headers, 2, "Advanced beginner")
        assert res.status_code == 409
        assert res.get_json()["error"] == "Skill level with this level already exists"

    def test_member_cannot_create(self, client, member_headers):
        assert self._create(client, member_headers, 1, "Novice").status_code == 403

    def test_deactivate_hides_from_default_list(self, client, admin_headers):
        skill = self._create(client, admin_headers, 4, "Proficient").get_json()["data"]
        client.put(f"{SKILLS}/{skill['id']}", json={"active": False}, headers=admin_headers)
        assert client.get(SKILLS, headers=admin_headers).get_json()["total"] == 0
        assert client.get(f"{SKILLS}?includeInactive=1", headers=admin_headers).get_json()["total"] == 1

    def test_delete(self, client, admin_headers):
        skill = self._create(client, admin_headers, 5, "Expert").get_json()["data"]
        assert client.delete(f"{SKILLS}/{skill['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"{SKILLS}/{skill['id']}", headers=admin_headers).status_code == 404
