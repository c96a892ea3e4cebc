"""
JSON document store.

The whole CRM state lives in one JSON file:

    {
        "meta": {"schemaVersion": ..., "initializedAt": ...},
        "users": [...],
        "authSessions": [...],
        "workspaces": {"<userId>": {conversations, messages, templates,
                                    automation, whatsappConfig, logs}}
    }

Every operation loads the full document, mutates it in memory and writes it
back. transaction() / async_transaction() serialize those cycles inside one
process; nothing coordinates separate processes sharing the file.
"""
import asyncio
import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from app.config import settings
from app.models.user import normalize_sessions, normalize_users
from app.models.workspace import (
    WORKSPACE_LIST_KEYS,
    WORKSPACE_OBJECT_KEYS,
    create_workspace_seed,
    ensure_workspace_shape,
)
from app.utils.time import now_iso

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
LEGACY_WORKSPACE_KEY = "__legacy"


def resolve_data_file_path() -> Path:
    explicit = (settings.DATA_FILE_PATH or "").strip()
    if explicit:
        path = Path(explicit)
        return path if path.is_absolute() else Path.cwd() / path

    if settings.is_production:
        return Path.home() / ".whatsapp-crm" / "db.json"

    return Path.cwd() / "data" / "db.json"


def default_document() -> dict:
    return {
        "meta": {"schemaVersion": SCHEMA_VERSION, "initializedAt": now_iso()},
        "users": [],
        "authSessions": [],
        "workspaces": {},
    }


def _has_legacy_workspace_data(document: dict) -> bool:
    return any(isinstance(document.get(key), list) for key in WORKSPACE_LIST_KEYS) or any(
        isinstance(document.get(key), dict) for key in WORKSPACE_OBJECT_KEYS
    )


def _extract_legacy_workspace(document: dict) -> dict:
    """Move top-level single-tenant keys into a standalone workspace"""
    base = create_workspace_seed()
    workspace = {}
    for key in WORKSPACE_LIST_KEYS:
        value = document.pop(key, None)
        workspace[key] = value if isinstance(value, list) else base[key]
    for key in WORKSPACE_OBJECT_KEYS:
        value = document.pop(key, None)
        workspace[key] = value if isinstance(value, dict) else base[key]
    return workspace


def normalize_document(document) -> Tuple[dict, bool]:
    """
    Repair structural gaps in a loaded document. Only presence and type of
    top-level fields are checked. Returns (document, changed).
    """
    if not isinstance(document, dict):
        return default_document(), True

    changed = False

    if not isinstance(document.get("meta"), dict):
        document["meta"] = default_document()["meta"]
        changed = True

    for key in ("users", "authSessions"):
        if not isinstance(document.get(key), list):
            document[key] = []
            changed = True

    if not isinstance(document.get("workspaces"), dict):
        document["workspaces"] = {}
        changed = True

    # Top-level single-tenant keys are parked once; later leftovers stay untouched.
    if LEGACY_WORKSPACE_KEY not in document["workspaces"] and _has_legacy_workspace_data(document):
        document["workspaces"][LEGACY_WORKSPACE_KEY] = _extract_legacy_workspace(document)
        changed = True

    for key in list(document["workspaces"].keys()):
        workspace, workspace_changed = ensure_workspace_shape(document["workspaces"][key])
        if workspace_changed:
            document["workspaces"][key] = workspace
            changed = True

    users = normalize_users(document["users"])
    if users != document["users"]:
        document["users"] = users
        changed = True

    sessions = normalize_sessions(document["authSessions"], users, datetime.now(timezone.utc))
    if sessions != document["authSessions"]:
        document["authSessions"] = sessions
        changed = True

    return document, changed


def get_or_create_workspace(document: dict, user_id: str) -> dict:
    workspaces = document.setdefault("workspaces", {})
    if user_id not in workspaces:
        workspaces[user_id] = create_workspace_seed()

    workspace, _ = ensure_workspace_shape(workspaces[user_id])
    workspaces[user_id] = workspace
    return workspace


def migrate_legacy_workspace(document: dict, user_id: str) -> bool:
    """
    Adopt the pre-multi-user workspace into `user_id`'s workspace.

    Runs only while no user has been registered yet and a legacy workspace
    exists, so it must be called before the new user is added.
    """
    if document.get("users"):
        return False

    workspaces = document.setdefault("workspaces", {})
    legacy = workspaces.get(LEGACY_WORKSPACE_KEY)
    if legacy is None or user_id in workspaces:
        return False

    workspaces[user_id] = copy.deepcopy(legacy)
    del workspaces[LEGACY_WORKSPACE_KEY]
    logger.info(f"Migrated legacy workspace into workspace of user {user_id}")
    return True


def _iter_user_workspaces(document: dict):
    for user_id, workspace in (document.get("workspaces") or {}).items():
        if user_id == LEGACY_WORKSPACE_KEY or not isinstance(workspace, dict):
            continue
        yield user_id, workspace


def find_workspace_by_verify_token(document: dict, verify_token) -> Optional[Tuple[str, dict]]:
    normalized = str(verify_token or "").strip()
    if not normalized:
        return None

    for user_id, workspace in _iter_user_workspaces(document):
        config = workspace.get("whatsappConfig") or {}
        if str(config.get("verifyToken") or "").strip() == normalized:
            return user_id, workspace
    return None


def find_workspace_by_phone_number_id(document: dict, phone_number_id) -> Optional[Tuple[str, dict]]:
    normalized = str(phone_number_id or "").strip()
    if not normalized:
        return None

    for user_id, workspace in _iter_user_workspaces(document):
        config = workspace.get("whatsappConfig") or {}
        if str(config.get("phoneNumberId") or "").strip() == normalized:
            return user_id, workspace
    return None


class DocumentStore:
    """Loads and persists the CRM document at `path`"""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def ensure_file(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.save(default_document())

    def load(self) -> dict:
        self.ensure_file()

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            corrupt_path = self.path.with_name(self.path.name + ".corrupt")
            logger.error(f"Data file {self.path} is not valid JSON ({e}); moved to {corrupt_path}")
            os.replace(self.path, corrupt_path)
            document = None

        document, changed = normalize_document(document)
        if changed:
            logger.info(f"Repaired structure of data file {self.path}")
            self.save(document)
        return document

    def save(self, document: dict):
        """Write the whole document atomically (temp file + rename)"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def read(self) -> dict:
        """Load under the store lock, for callers that never write"""
        with self._lock:
            return self.load()

    @contextmanager
    def transaction(self):
        """
        Load, yield and save the document while holding the store lock.
        Nothing is written when the block raises. Only use from sync code
        that does not await inside the block.
        """
        with self._lock:
            document = self.load()
            yield document
            self.save(document)

    def _release_if_acquired(self, acquiring):
        if not acquiring.cancelled() and acquiring.exception() is None and acquiring.result():
            self._lock.release()

    async def _acquire_lock(self):
        """
        Wait for the store lock in an executor thread. If the waiting task is
        cancelled the thread still finishes acquiring, so the lock is handed
        back as soon as it does.
        """
        loop = asyncio.get_running_loop()
        acquiring = loop.run_in_executor(None, self._lock.acquire)
        try:
            await asyncio.shield(acquiring)
        except asyncio.CancelledError:
            acquiring.add_done_callback(self._release_if_acquired)
            raise

    @asynccontextmanager
    async def async_transaction(self):
        """
        async variant of transaction(); the lock is acquired off the event loop.
        Do not await network calls inside the block: every other reader and
        writer waits for it.
        """
        await self._acquire_lock()
        try:
            document = self.load()
            yield document
            self.save(document)
        finally:
            self._lock.release()

    @asynccontextmanager
    async def async_snapshot(self):
        """Like async_transaction() but lets the caller decide whether to save"""
        await self._acquire_lock()
        try:
            yield self.load()
        finally:
            self._lock.release()


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = DocumentStore(resolve_data_file_path())
    return _store
