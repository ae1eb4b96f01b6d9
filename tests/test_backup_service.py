"""
Backup service tests — native tool invocation, file handling, system API.

``subprocess.run`` is replaced by a recorder so no database tool is needed;
the recorder writes the output file for ``.backup`` the way sqlite3 would.
"""

import gzip
import os
import subprocess
import time

import pytest

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models.audit_log import AuditLog
from qms.services import backup_service
from qms.services.backup_service import BackupError

SYSTEM = "/api/v1/system"


class FakeTool:
    """Records argv lists and answers with a canned CompletedProcess."""

    def __init__(self, stdout="", stderr="", returncode=0):
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        if self.returncode == 0 and cmd[0] == "sqlite3" and cmd[2].startswith(".backup"):
            dest = cmd[2][len(".backup '"):-1]
            with open(dest, "wb") as fh:
                fh.write(b"SQLite format 3\x00" + b"\x00" * 64)
        return subprocess.CompletedProcess(cmd, self.returncode, stdout=self.stdout, stderr=self.stderr)


@pytest.fixture()
def backup_dir(app, tmp_path, monkeypatch):
    path = tmp_path / "backups"
    monkeypatch.setitem(app.config, "BACKUP_PATH", str(path))
    return path


@pytest.fixture()
def sqlite_target(tmp_path, monkeypatch):
    target = {"dialect": "sqlite", "path": str(tmp_path / "qms.db"), "name": "qms"}
    monkeypatch.setattr(backup_service, "_database_target", lambda: target)
    monkeypatch.setattr(backup_service, "_release_connections", lambda: None)
    return target


@pytest.fixture()
def pg_target(monkeypatch):
    target = {
        "dialect": "postgresql", "name": "qms", "host": "db.internal",
        "port": 5432, "user": "qms", "password": "s3cret",
    }
    monkeypatch.setattr(backup_service, "_database_target", lambda: target)
    monkeypatch.setattr(backup_service, "_release_connections", lambda: None)
    return target


@pytest.fixture()
def tool(monkeypatch):
    fake = FakeTool()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


def _touch(directory, name, content=b"data", age_days=0):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(content)
    if age_days:
        old = time.time() - age_days * 86400
        os.utime(path, (old, old))
    return path


class TestDatabaseTarget:
    def test_in_memory_sqlite_is_refused(self, backup_dir):
        with pytest.raises(ValidationError, match="In-memory SQLite"):
            backup_service.create_backup()

    def test_in_memory_refusal_via_api(self, client, admin_headers, backup_dir):
        res = client.post(f"{SYSTEM}/backup", headers=admin_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "In-memory SQLite databases cannot be backed up"


class TestCreateBackup:
    def test_sqlite_backup(self, backup_dir, sqlite_target, tool):
        result = backup_service.create_backup()
        assert result["success"] is True
        assert result["database"] == "qms"
        assert result["fileName"].startswith("qms_backup_")
        assert result["fileName"].endswith(".db")
        assert os.path.isfile(result["filePath"])

        cmd, _ = tool.calls[0]
        assert cmd[:2] == ["sqlite3", sqlite_target["path"]]
        assert cmd[2] == f".backup '{result['filePath']}'"

    def test_compressed_backup(self, app, backup_dir, sqlite_target, tool, monkeypatch):
        monkeypatch.setitem(app.config, "BACKUP_COMPRESSION", True)
        result = backup_service.create_backup()
        assert result["fileName"].endswith(".db.gz")
        with gzip.open(result["filePath"], "rb") as fh:
            assert fh.read().startswith(b"SQLite format 3")
        assert not os.path.exists(result["filePath"][:-3])

    def test_postgres_backup_passes_connection_args(self, backup_dir, pg_target, monkeypatch):
        def _pg_dump(cmd, **kwargs):
            calls.append((cmd, kwargs))
            with open(cmd[cmd.index("-f") + 1], "wb") as fh:
                fh.write(b"PGDMP")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        calls = []
        monkeypatch.setattr(subprocess, "run", _pg_dump)
        result = backup_service.create_backup()

        cmd, kwargs = calls[0]
        assert cmd[:2] == ["pg_dump", "-Fc"]
        assert cmd[-1] == "qms"
        assert ["-h", "db.internal"] == cmd[4:6]
        assert kwargs["env"]["PGPASSWORD"] == "s3cret"
        assert result["fileName"].endswith(".dump")

    def test_old_backups_are_pruned(self, backup_dir, sqlite_target, tool):
        _touch(backup_dir, "qms_backup_20000101_000000.db", age_days=45)
        _touch(backup_dir, "notes.txt", age_days=45)
        result = backup_service.create_backup()
        assert result["pruned"] == ["qms_backup_20000101_000000.db"]
        assert (backup_dir / "notes.txt").exists()

    def test_tool_failure_raises(self, backup_dir, sqlite_target, monkeypatch):
        monkeypatch.setattr(subprocess, "run", FakeTool(stderr="disk I/O error", returncode=1))
        with pytest.raises(BackupError) as info:
            backup_service.create_backup()
        assert info.value.returncode == 1
        assert info.value.to_details()["stderr"] == "disk I/O error"

    def test_missing_tool_raises(self, backup_dir, sqlite_target, monkeypatch):
        def _missing(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(subprocess, "run", _missing)
        with pytest.raises(BackupError, match="Database tool not found: sqlite3"):
            backup_service.create_backup()


class TestListAndResolve:
    def test_list_ignores_foreign_files(self, backup_dir):
        _touch(backup_dir, "qms_backup_20300101_000000.db", age_days=3)
        _touch(backup_dir, "qms_backup_20300102_000000.dump")
        _touch(backup_dir, "readme.md")
        items = backup_service.list_backups()
        assert [i["fileName"] for i in items] == [
            "qms_backup_20300102_000000.dump", "qms_backup_20300101_000000.db",
        ]
        assert items[1]["ageDays"] == 3

    @pytest.mark.parametrize("name", ["../qms.db", "qms_backup.txt", "bad name.db", ""])
    def test_rejects_unsafe_names(self, backup_dir, name):
        with pytest.raises(ValidationError):
            backup_service.verify_backup(name)

    def test_missing_file(self, backup_dir):
        with pytest.raises(NotFoundError):
            backup_service.verify_backup("qms_backup_20300101_000000.db")


class TestVerify:
    def test_sqlite_integrity_ok(self, backup_dir, monkeypatch):
        _touch(backup_dir, "qms_backup_20300101_000000.db")
        monkeypatch.setattr(subprocess, "run", FakeTool(stdout="ok\n"))
        result = backup_service.verify_backup("qms_backup_20300101_000000.db")
        assert result == {"valid": True, "fileName": "qms_backup_20300101_000000.db", "details": "ok"}

    def test_sqlite_integrity_problem(self, backup_dir, monkeypatch):
        _touch(backup_dir, "qms_backup_20300101_000000.db")
        monkeypatch.setattr(subprocess, "run", FakeTool(stdout="*** in database main ***\nPage 4 is never used\n"))
        assert backup_service.verify_backup("qms_backup_20300101_000000.db")["valid"] is False

    def test_compressed_file_is_unpacked_and_cleaned(self, backup_dir, tool):
        tool.stdout = "ok"
        _touch(backup_dir, "qms_backup_20300101_000000.db.gz", content=gzip.compress(b"SQLite format 3\x00"))
        assert backup_service.verify_backup("qms_backup_20300101_000000.db.gz")["valid"] is True
        cmd, _ = tool.calls[0]
        assert cmd[1].endswith(".db")
        assert not os.path.exists(cmd[1])

    def test_dump_archive_entries(self, backup_dir, monkeypatch):
        _touch(backup_dir, "qms_backup_20300101_000000.dump")
        listing = ";\n; Archive created\n;\n201; 1259 16390 TABLE public ncrs qms\n202; 1259 16391 TABLE public capas qms\n"
        monkeypatch.setattr(subprocess, "run", FakeTool(stdout=listing))
        result = backup_service.verify_backup("qms_backup_20300101_000000.dump")
        assert result["valid"] is True
        assert result["details"] == "2 archive entries"


class TestRestore:
    def test_sqlite_requires_replace_existing(self, backup_dir, sqlite_target, tool):
        _touch(backup_dir, "qms_backup_20300101_000000.db")
        with pytest.raises(ValidationError, match="replaceExisting"):
            backup_service.restore_backup("qms_backup_20300101_000000.db")
        assert tool.calls == []

    def test_sqlite_rejects_dump(self, backup_dir, sqlite_target, tool):
        _touch(backup_dir, "qms_backup_20300101_000000.dump")
        with pytest.raises(ValidationError):
            backup_service.restore_backup("qms_backup_20300101_000000.dump", True)

    def test_sqlite_restore(self, backup_dir, sqlite_target, tool):
        path = _touch(backup_dir, "qms_backup_20300101_000000.db")
        result = backup_service.restore_backup("qms_backup_20300101_000000.db", True)
        assert result["replaceExisting"] is True
        cmd, _ = tool.calls[0]
        assert cmd == ["sqlite3", sqlite_target["path"], f".restore '{os.path.realpath(path)}'"]

    def test_postgres_clean_restore(self, backup_dir, pg_target, tool):
        _touch(backup_dir, "qms_backup_20300101_000000.dump")
        backup_service.restore_backup("qms_backup_20300101_000000.dump", True)
        cmd, kwargs = tool.calls[0]
        assert cmd[0] == "pg_restore"
        assert "--clean" in cmd and "--if-exists" in cmd
        assert cmd[-1].endswith("qms_backup_20300101_000000.dump")
        assert kwargs["env"]["PGPASSWORD"] == "s3cret"

    def test_postgres_rejects_sqlite_file(self, backup_dir, pg_target, tool):
        _touch(backup_dir, "qms_backup_20300101_000000.db")
        with pytest.raises(ValidationError, match="Only .dump archives"):
            backup_service.restore_backup("qms_backup_20300101_000000.db", True)


class TestSystemApi:
    def test_admin_only(self, client, manager_headers, backup_dir):
        assert client.get(f"{SYSTEM}/backups", headers=manager_headers).status_code == 403
        assert client.get(f"{SYSTEM}/status", headers=manager_headers).status_code == 403

    def test_create_and_list(self, client, admin, admin_headers, backup_dir, sqlite_target, tool):
        res = client.post(f"{SYSTEM}/backup", headers=admin_headers)
        assert res.status_code == 200
        file_name = res.get_json()["fileName"]

        body = client.get(f"{SYSTEM}/backups", headers=admin_headers).get_json()
        assert body["total"] == 1
        assert body["data"][0]["fileName"] == file_name

        entry = AuditLog.query.filter_by(action="backup").one()
        assert entry.success is True
        assert entry.user_id == admin.id
        assert entry.entity_identifier == file_name

    def test_tool_failure_is_500_and_audited(self, client, admin_headers, backup_dir, sqlite_target, monkeypatch):
        monkeypatch.setattr(subprocess, "run", FakeTool(stdout="", stderr="database is locked", returncode=5))
        res = client.post(f"{SYSTEM}/backup", headers=admin_headers)
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_EXTERNAL_TOOL"
        assert body["details"]["stderr"] == "database is locked"
        assert body["details"]["returnCode"] == 5

        entry = AuditLog.query.filter_by(action="backup").one()
        assert entry.success is False
        assert "database is locked" in entry.error_message

    def test_verify_requires_file(self, client, admin_headers, backup_dir):
        res = client.post(f"{SYSTEM}/backup/verify", json={}, headers=admin_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "backupFile is required"

    def test_verify_endpoint(self, client, admin_headers, backup_dir, tool):
        tool.stdout = "ok"
        _touch(backup_dir, "qms_backup_20300101_000000.db")
        res = client.post(
            f"{SYSTEM}/backup/verify", json={"backupFile": "qms_backup_20300101_000000.db"}, headers=admin_headers
        )
        assert res.status_code == 200
        assert res.get_json()["valid"] is True

    def test_restore_without_replace_is_400(self, client, admin_headers, backup_dir, sqlite_target, tool):
        _touch(backup_dir, "qms_backup_20300101_000000.db")
        res = client.post(
            f"{SYSTEM}/backup/restore", json={"backupFile": "qms_backup_20300101_000000.db"},
            headers=admin_headers,
        )
        assert res.status_code == 400

    def test_delete(self, client, admin_headers, backup_dir):
        path = _touch(backup_dir, "qms_backup_20300101_000000.db")
        res = client.delete(
            f"{SYSTEM}/backup", json={"fileName": "qms_backup_20300101_000000.db"}, headers=admin_headers
        )
        assert res.status_code == 200
        assert not path.exists()
        missing = client.delete(
            f"{SYSTEM}/backup", json={"fileName": "qms_backup_20300101_000000.db"}, headers=admin_headers
        )
        assert missing.status_code == 404

    def test_status(self, client, admin_headers, backup_dir):
        body = client.get(f"{SYSTEM}/status", headers=admin_headers).get_json()
        assert body["database"]["dialect"] == "sqlite"
        assert body["database"]["connected"] is True
        assert body["counts"]["users"] == 1
        assert body["backup"]["path"] == str(backup_dir)
