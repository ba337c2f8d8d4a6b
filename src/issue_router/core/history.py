"""Routing history kept as individual YAML records for duplicate detection."""

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import yaml

from issue_router.core.entities import DuplicateRecord, TargetIssueRef
from issue_router.core.interfaces import HistoryStore

LOGGER = logging.getLogger(__name__)


class RoutingHistory(HistoryStore):
    """Append-only history of routed issues, one YAML file per record.

    Layout: ``<storage_dir>/<owner>__<repo>/<timestamp>_<hash>.yaml``.
    Records are never rewritten; aging out happens at read time in the
    duplicate detector, and ``prune_old`` exists for external housekeeping.
    """

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = Path(storage_dir)

    def load(self, repo: str) -> list[DuplicateRecord]:
        """Return every record for a destination repository."""
        repo_dir = self._repo_dir(repo)
        if not repo_dir.exists():
            return []

        records = []
        for record_path in sorted(repo_dir.glob("*.yaml")):
            record = self._read_record(record_path)
            if record is not None:
                records.append(record)
        return records

    def append(self, record: DuplicateRecord) -> None:
        """Persist a record as a new YAML file."""
        repo_dir = self._repo_dir(record.target.repo)
        repo_dir.mkdir(parents=True, exist_ok=True)

        stamp = record.routed_at.strftime("%Y%m%dT%H%M%S")
        filename = f"{stamp}_{record.fingerprint[:12]}_{uuid.uuid4().hex[:6]}.yaml"

        data = {
            "fingerprint": record.fingerprint,
            "permalink": record.permalink,
            "routed_at": record.routed_at.isoformat(),
            "target": {
                "repo": record.target.repo,
                "number": record.target.number,
                "url": record.target.url,
                "node_id": record.target.node_id,
            },
        }

        with open(repo_dir / filename, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, allow_unicode=True, default_flow_style=False, sort_keys=False)

        LOGGER.debug("History record written: %s", repo_dir / filename)

    def get_stats(self) -> dict:
        """Count records per destination repository."""
        repos = {}
        total = 0

        if self.storage_dir.exists():
            for repo_dir in sorted(self.storage_dir.iterdir()):
                if repo_dir.is_dir():
                    count = len(list(repo_dir.glob("*.yaml")))
                    repos[repo_dir.name.replace("__", "/", 1)] = count
                    total += count

        return {
            "total_records": total,
            "by_repo": repos,
        }

    def prune_old(self, days: int, now: Optional[datetime] = None) -> int:
        """Remove records routed more than N days ago.

        Returns:
            Number of records removed
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        removed = 0

        if not self.storage_dir.exists():
            return removed

        for record_path in self.storage_dir.glob("*/*.yaml"):
            record = self._read_record(record_path)
            if record is None or record.routed_at >= cutoff:
                continue
            record_path.unlink()
            removed += 1

        return removed

    def _repo_dir(self, repo: str) -> Path:
        safe_repo = re.sub(r"[^\w.-]", "_", repo.replace("/", "__", 1))
        return self.storage_dir / safe_repo

    def _read_record(self, record_path: Path) -> Optional[DuplicateRecord]:
        try:
            with open(record_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            routed_at = datetime.fromisoformat(data["routed_at"])
            if routed_at.tzinfo is None:
                routed_at = routed_at.replace(tzinfo=timezone.utc)

            target = data["target"]
            return DuplicateRecord(
                fingerprint=data["fingerprint"],
                permalink=data.get("permalink"),
                target=TargetIssueRef(
                    repo=target["repo"],
                    number=int(target["number"]),
                    url=target["url"],
                    node_id=target.get("node_id"),
                    created=True,
                ),
                routed_at=routed_at,
            )
        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            LOGGER.warning("Skipping unreadable history record %s: %s", record_path, e)
            return None
