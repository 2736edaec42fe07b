import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

SNAPSHOT_SCHEMA_VERSION = 1


def state_path_for(index_path: Path) -> Path:
    return index_path.with_name(index_path.name + ".meta.json")


def fingerprint_rows(rows: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    """
    Stable hash of (skill_id, updated_at) pairs from skill_embeddings.
    Any insert, overwrite or removal changes the digest.
    """
    entries = sorted(f"{skill_id}:{updated_at}" for skill_id, updated_at in rows)
    digest = hashlib.sha256("|".join(entries).encode("utf-8")).hexdigest()
    return {"hash": f"sha256:{digest}", "count": len(entries)}


class IndexStateStore:
    """
    Sidecar JSON describing an HNSW snapshot: tuning, label map and the
    fingerprint of the rows it was built from. A snapshot is only reused
    when all of these still match.
    """

    def __init__(self, index_path: Path):
        self.index_path = index_path
        self.state_path = state_path_for(index_path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.state_path.exists() or not self.index_path.exists():
            return None
        try:
            with open(self.state_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load index state %s: %s", self.state_path, e)
            return None

    def write(self, state: Dict[str, Any]) -> None:
        payload = dict(state)
        payload["schema_version"] = SNAPSHOT_SCHEMA_VERSION
        payload["saved_at"] = datetime.now(timezone.utc).isoformat()
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.state_path.with_name(self.state_path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        tmp.replace(self.state_path)

    def check_compatible(
        self, expected: Dict[str, Any], fingerprint: Dict[str, Any]
    ) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        """
        Decide whether the snapshot can be loaded.
        Returns (ok, reason, state).
        """
        prev = self.load()
        if not prev:
            return False, "no_snapshot", None
        if prev.get("schema_version") != SNAPSHOT_SCHEMA_VERSION:
            return False, "schema_changed", prev
        for key, value in expected.items():
            if prev.get(key) != value:
                return False, f"{key}_changed", prev
        if prev.get("fingerprint") != fingerprint.get("hash"):
            return False, "rows_changed", prev
        labels = prev.get("labels")
        if not isinstance(labels, dict) or len(labels) != fingerprint.get("count"):
            return False, "labels_invalid", prev
        return True, "unchanged", prev

