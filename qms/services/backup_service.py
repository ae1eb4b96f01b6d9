"""
Backup Service — native database backup / restore / verify.

Wraps the database's own tools through ``subprocess.run``:

    SQLite      sqlite3 <db> ".backup '<file>'"      → <db>_backup_<ts>.db[.gz]
                sqlite3 <db> ".restore '<file>'"
                sqlite3 <file> "PRAGMA integrity_check;"
    PostgreSQL  pg_dump -Fc -f <file> <db>            → <db>_backup_<ts>.dump
                pg_restore [--clean --if-exists] -d <db> <file>
                pg_restore --list <file>

Backup files live in ``BACKUP_PATH``; client-supplied names are confined to
that directory. Files older than ``BACKUP_RETENTION_DAYS`` are pruned after
each successful backup. Tool failures raise ``BackupError`` carrying the
tool's stdout/stderr.
"""

import gzip
import logging
import os
import re
import shutil
import subprocess
import tempfile
import time
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import text

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models import db

logger = logging.getLogger(__name__)

BACKUP_EXTENSIONS = (".db", ".db.gz", ".dump")
_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class BackupError(Exception):
    """A native database tool failed or could not be run."""

    def __init__(self, message: str, stdout: str = "", stderr: str = "", returncode: int | None = None):
        self.message = message
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        self.returncode = returncode
        super().__init__(message)

    def to_details(self) -> dict:
        return {
            "stdout": self.stdout[-4000:],
            "stderr": self.stderr[-4000:],
            "returnCode": self.returncode,
        }


# ═══════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════

def _database_target() -> dict:
    """Describe the bound database: dialect, name and connection parts."""
    url = db.engine.url
    dialect = url.get_backend_name()
    if dialect == "sqlite":
        path = url.database
        if not path or path == ":memory:":
            raise ValidationError("In-memory SQLite databases cannot be backed up")
        return {
            "dialect": "sqlite",
            "path": os.path.abspath(path),
            "name": os.path.splitext(os.path.basename(path))[0],
        }
    if dialect == "postgresql":
        return {
            "dialect": "postgresql",
            "name": url.database,
            "host": url.host,
            "port": url.port,
            "user": url.username,
            "password": url.password,
        }
    raise ValidationError(f"Backups are not supported for the '{dialect}' database")


def _backup_dir() -> str:
    path = os.path.abspath(current_app.config["BACKUP_PATH"])
    os.makedirs(path, exist_ok=True)
    return path


def _run(cmd: list[str], env: dict | None = None) -> subprocess.CompletedProcess:
    timeout = current_app.config.get("BACKUP_TIMEOUT", 600)
    logger.info("Running database tool: %s", cmd[0], extra={"argv": cmd[1:2]})
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env={**os.environ, **env} if env else None,
            check=False,
        )
    except FileNotFoundError as exc:
        raise BackupError(f"Database tool not found: {cmd[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise BackupError(
            f"{cmd[0]} timed out after {timeout} seconds",
            stdout=exc.stdout if isinstance(exc.stdout, str) else "",
            stderr=exc.stderr if isinstance(exc.stderr, str) else "",
        ) from exc

    if result.returncode != 0:
        logger.error("%s failed (exit %s): %s", cmd[0], result.returncode, (result.stderr or "").strip()[:500])
        raise BackupError(
            f"{cmd[0]} exited with code {result.returncode}",
            stdout=result.stdout, stderr=result.stderr, returncode=result.returncode,
        )
    return result


def _pg_args(target: dict) -> tuple[list[str], dict]:
    args = []
    if target.get("host"):
        args += ["-h", target["host"]]
    if target.get("port"):
        args += ["-p", str(target["port"])]
    if target.get("user"):
        args += ["-U", target["user"]]
    env = {"PGPASSWORD": target["password"]} if target.get("password") else None
    return args, env


def _resolve(file_name: str) -> str:
    """Map a client-supplied file name to a path inside the backup directory."""
    if not file_name or not isinstance(file_name, str):
        raise ValidationError("Backup file name is required")
    name = os.path.basename(file_name)
    if name != file_name or not _SAFE_NAME.match(name) or not name.endswith(BACKUP_EXTENSIONS):
        raise ValidationError("Invalid backup file name")

    directory = _backup_dir()
    path = os.path.realpath(os.path.join(directory, name))
    if os.path.dirname(path) != os.path.realpath(directory):
        raise ValidationError("Invalid backup file name")
    if not os.path.isfile(path):
        raise NotFoundError(resource="Backup file", resource_id=name)
    return path


def _size_mb(path: str) -> float:
    return round(os.path.getsize(path) / (1024 * 1024), 2)


def _gunzip_to_temp(path: str) -> str:
    fd, tmp = tempfile.mkstemp(suffix=".db")
    with os.fdopen(fd, "wb") as out, gzip.open(path, "rb") as src:
        shutil.copyfileobj(src, out)
    return tmp


def _release_connections() -> None:
    """Drop the session and pooled connections before the database is rewritten."""
    db.session.remove()
    db.engine.dispose()


def prune_old_backups() -> list[str]:
    """Delete backup files older than the retention window."""
    days = current_app.config.get("BACKUP_RETENTION_DAYS", 30)
    cutoff = time.time() - days * 86400
    removed = []
    directory = _backup_dir()
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        if "_backup_" in name and name.endswith(BACKUP_EXTENSIONS) and os.path.getmtime(path) < cutoff:
            os.remove(path)
            removed.append(name)
    if removed:
        logger.info("Pruned %d backups older than %d days", len(removed), days)
    return removed


# ═══════════════════════════════════════════════════════════════
# Operations
# ═══════════════════════════════════════════════════════════════

def create_backup() -> dict:
    target = _database_target()
    directory = _backup_dir()
    now = datetime.now(timezone.utc)
    stamp = now.strftime("%Y%m%d_%H%M%S")

    if target["dialect"] == "sqlite":
        file_name = f"{target['name']}_backup_{stamp}.db"
        path = os.path.join(directory, file_name)
        _run(["sqlite3", target["path"], f".backup '{path}'"])
        if current_app.config.get("BACKUP_COMPRESSION", True):
            with open(path, "rb") as src, gzip.open(path + ".gz", "wb") as out:
                shutil.copyfileobj(src, out)
            os.remove(path)
            file_name += ".gz"
            path += ".gz"
    else:
        file_name = f"{target['name']}_backup_{stamp}.dump"
        path = os.path.join(directory, file_name)
        args, env = _pg_args(target)
        _run(["pg_dump", "-Fc", "-f", path, *args, target["name"]], env=env)

    if not os.path.isfile(path):
        raise BackupError(f"Backup file was not created: {file_name}")

    pruned = prune_old_backups()
    logger.info("Backup created: %s (%.2f MB)", file_name, _size_mb(path))
    return {
        "success": True,
        "database": target["name"],
        "fileName": file_name,
        "filePath": path,
        "fileSizeMB": _size_mb(path),
        "timestamp": now.isoformat(),
        "pruned": pruned,
    }


def list_backups() -> list[dict]:
    directory = _backup_dir()
    now = time.time()
    items = []
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        if "_backup_" not in name or not name.endswith(BACKUP_EXTENSIONS) or not os.path.isfile(path):
            continue
        mtime = os.path.getmtime(path)
        items.append({
            "fileName": name,
            "filePath": path,
            "fileSizeMB": _size_mb(path),
            "createdAt": datetime.fromtimestamp(mtime, timezone.utc).isoformat(),
            "ageDays": int((now - mtime) // 86400),
            "_mtime": mtime,
        })
    items.sort(key=lambda i: i["_mtime"], reverse=True)
    for item in items:
        item.pop("_mtime")
    return items


def verify_backup(file_name: str) -> dict:
    path = _resolve(file_name)
    if path.endswith(".dump"):
        result = _run(["pg_restore", "--list", path])
        entries = [line for line in result.stdout.splitlines() if line and not line.startswith(";")]
        return {"valid": True, "fileName": file_name, "details": f"{len(entries)} archive entries"}

    source = _gunzip_to_temp(path) if path.endswith(".gz") else path
    try:
        result = _run(["sqlite3", source, "PRAGMA integrity_check;"])
    finally:
        if source != path:
            os.remove(source)
    output = result.stdout.strip()
    return {"valid": output == "ok", "fileName": file_name, "details": output}


def restore_backup(file_name: str, replace_existing: bool = False) -> dict:
    path = _resolve(file_name)
    target = _database_target()

    if target["dialect"] == "sqlite":
        if path.endswith(".dump"):
            raise ValidationError("A PostgreSQL dump cannot be restored into SQLite")
        if not replace_existing:
            raise ValidationError("replaceExisting must be true to restore a SQLite database")
    elif not path.endswith(".dump"):
        raise ValidationError("Only .dump archives can be restored into PostgreSQL")

    _release_connections()

    if target["dialect"] == "sqlite":
        source = _gunzip_to_temp(path) if path.endswith(".gz") else path
        try:
            _run(["sqlite3", target["path"], f".restore '{source}'"])
        finally:
            if source != path:
                os.remove(source)
    else:
        args, env = _pg_args(target)
        cmd = ["pg_restore", *args, "-d", target["name"]]
        if replace_existing:
            cmd += ["--clean", "--if-exists"]
        _run(cmd + [path], env=env)

    logger.warning("Database restored from %s (replaceExisting=%s)", file_name, replace_existing)
    return {
        "success": True,
        "database": target["name"],
        "fileName": file_name,
        "replaceExisting": bool(replace_existing),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def delete_backup(file_name: str) -> None:
    path = _resolve(file_name)
    os.remove(path)
    logger.info("Backup deleted: %s", file_name)


# ═══════════════════════════════════════════════════════════════
# Status
# ═══════════════════════════════════════════════════════════════

def system_status() -> dict:
    from qms.models.audit_log import AuditLog
    from qms.models.auth import User
    from qms.models.capa import CAPA
    from qms.models.improvement import ImprovementIdea
    from qms.models.internal_audit import Audit
    from qms.models.ncr import NCR

    url = db.engine.url
    started = time.perf_counter()
    db.session.execute(text("SELECT 1"))
    latency_ms = round((time.perf_counter() - started) * 1000, 2)

    counts = {
        name: model.query.count()
        for name, model in (
            ("users", User),
            ("improvementIdeas", ImprovementIdea),
            ("audits", Audit),
            ("ncrs", NCR),
            ("capas", CAPA),
            ("auditLogs", AuditLog),
        )
    }
    return {
        "database": {
            "dialect": url.get_backend_name(),
            "name": url.database,
            "connected": True,
            "latencyMs": latency_ms,
        },
        "counts": counts,
        "backup": {
            "path": os.path.abspath(current_app.config["BACKUP_PATH"]),
            "retentionDays": current_app.config.get("BACKUP_RETENTION_DAYS"),
            "compression": current_app.config.get("BACKUP_COMPRESSION"),
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
