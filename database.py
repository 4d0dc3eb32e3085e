"""
Persistence for the registry aggregate.

The whole AppState is stored as one MongoDB document when DATABASE_URL and
DATABASE_NAME are set. When MongoDB is unreachable (or not configured) the same
document is written to a local JSON file instead, so callers see a single
load/save interface regardless of the backing store.
"""
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from schemas import AppState

logger = logging.getLogger(__name__)

STATE_COLLECTION = "appstate"


def _connect():
    url = os.getenv("DATABASE_URL")
    name = os.getenv("DATABASE_NAME")
    if not url or not name:
        return None
    try:
        client = MongoClient(url, serverSelectionTimeoutMS=int(os.getenv("DATABASE_TIMEOUT_MS", "3000")))
        return client[name]
    except PyMongoError as e:
        logger.warning("MongoDB not available, using local state file: %s", e)
        return None


db = _connect()


class StateStore:
    """
    Load and save AppState, remote first with a local file fallback.

    Both copies carry a revision number that grows with every save. On load the
    newer copy wins, so writes that only reached the local file during a MongoDB
    outage survive a restart and are pushed back to MongoDB.
    """

    def __init__(self, collection: Optional[Collection] = None, path: Optional[str] = None,
                 document_id: Optional[str] = None):
        if collection is None and db is not None:
            collection = db[STATE_COLLECTION]
        self.collection = collection
        self.path = path or os.getenv("STATE_FILE", ".bluecarbon_state.json")
        self.document_id = document_id or os.getenv("STATE_DOCUMENT_ID", "bluecarbon_mrv_v2")
        self.revision = 0

    def load_state(self) -> Optional[AppState]:
        remote, remote_ok = self._load_remote()
        local = self._load_local()
        if remote is None and local is None:
            return None
        self.revision = max(copy[0] for copy in (remote, local) if copy is not None)
        if local is not None and (remote is None or local[0] > remote[0]):
            if remote_ok:
                logger.info("Local state revision %s is newer than remote, pushing it", local[0])
                try:
                    self._write_remote(self._envelope(local[1], local[0]))
                except PyMongoError as e:
                    logger.warning("Could not push local state to remote store: %s", e)
            return local[1]
        return remote[1]

    def _load_remote(self) -> Tuple[Optional[Tuple[int, AppState]], bool]:
        if self.collection is None:
            return None, False
        try:
            doc = self.collection.find_one({"_id": self.document_id})
        except PyMongoError as e:
            logger.warning("Remote state load failed, trying local file: %s", e)
            return None, False
        if not doc or doc.get("state") is None:
            return None, True
        try:
            return (int(doc.get("revision", 0)), AppState.model_validate(doc["state"])), True
        except (TypeError, ValueError):
            logger.exception("Remote state document %s is invalid", self.document_id)
            return None, True

    def _load_local(self) -> Optional[Tuple[int, AppState]]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
            if isinstance(doc, dict) and "state" in doc:
                return int(doc.get("revision", 0)), AppState.model_validate(doc["state"])
            # bare AppState from before revisions were stamped
            return 0, AppState.model_validate(doc)
        except (OSError, TypeError, ValueError):
            logger.exception("Could not read local state file %s", self.path)
            return None

    def _envelope(self, state: AppState, revision: int) -> dict:
        return {
            "revision": revision,
            "savedAt": datetime.now(timezone.utc).isoformat(),
            "state": state.model_dump(mode="json", by_alias=True),
        }

    def save_state(self, state: AppState) -> List[str]:
        """Persist the aggregate. Returns warnings; an empty list means the write is durable."""
        self.revision += 1
        envelope = self._envelope(state, self.revision)
        warnings = []
        if self.collection is not None:
            try:
                self._write_remote(envelope)
                return warnings
            except PyMongoError as e:
                logger.warning("Remote state save failed, writing local file: %s", e)
                warnings.append(f"Remote persistence unavailable, state saved locally: {str(e)[:100]}")
        try:
            self._write_local(envelope)
        except OSError as e:
            logger.error("Local state save failed: %s", e)
            warnings.append(f"State not persisted, changes are held in memory only: {e}")
        return warnings

    def _write_remote(self, envelope: dict) -> None:
        self.collection.replace_one(
            {"_id": self.document_id},
            {"_id": self.document_id, **envelope, "updated_at": datetime.now(timezone.utc)},
            upsert=True,
        )

    def _write_local(self, payload: dict) -> None:
        # Write a sibling temp file and swap it in so a failed write keeps the old file
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
