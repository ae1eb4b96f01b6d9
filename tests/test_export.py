"""
Excel export tests.
"""

import io
from datetime import date

from openpyxl import load_workbook

EXPORT = "/api/v1/export"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _workbook(res):
    return load_workbook(io.BytesIO(res.data))


def _ncr(client, headers, **fields):
    payload = {"title": "Crack", "description": "Hairline crack", "source": "Inspection",
               "category": "Product Quality", "severity": "critical", **fields}
    return client.post("/api/v1/ncrs", json=payload, headers=headers)


class TestExport:
    def test_ncrs_export(self, client, auditor_headers, member_headers):
        _ncr(client, auditor_headers)
        _ncr(client, auditor_headers, severity="minor", title="Scratch")
        res = client.get(f"{EXPORT}/ncrs.xlsx", headers=member_headers)
        assert res.status_code == 200
        assert res.mimetype == XLSX
        assert f"ncrs_{date.today().isoformat()}.xlsx" in res.headers["Content-Disposition"]

        wb = _workbook(res)
        ws = wb["NCRs"]
        assert ws["A1"].value == "NCR Number"
        assert ws.max_row == 3
        summary = wb["Summary"]
        assert summary["A3"].value == "Total records: 2"
        assert (summary["A6"].value, summary["B6"].value) == ("open", 2)

    def test_ncrs_export_filtered(self, client, auditor_headers, member_headers):
        _ncr(client, auditor_headers)
        _ncr(client, auditor_headers, severity="minor")
        res = client.get(f"{EXPORT}/ncrs.xlsx?severity=minor", headers=member_headers)
        assert _workbook(res)["NCRs"].max_row == 2

    def test_empty_capa_export(self, client, member_headers):
        res = client.get(f"{EXPORT}/capas.xlsx", headers=member_headers)
        assert res.status_code == 200
        wb = _workbook(res)
        assert wb["CAPAs"].max_row == 1
        assert wb["Summary"]["A3"].value == "Total records: 0"

    def test_ideas_export(self, client, member_headers):
        client.post("/api/v1/improvement-ideas", json={"title": "Kanban board"}, headers=member_headers)
        res = client.get(f"{EXPORT}/improvement-ideas.xlsx", headers=member_headers)
        assert res.mimetype == XLSX
        ws = _workbook(res)["Improvement Ideas"]
        assert ws.max_row == 2
        assert "Kanban board" in [cell.value for cell in ws[2]]

    def test_requires_auth(self, client):
        assert client.get(f"{EXPORT}/ncrs.xlsx").status_code == 401
