"""Tests for routing history."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from tempfile import TemporaryDirectory

from issue_router.core import DuplicateRecord, RoutingHistory, TargetIssueRef


def _record(repo: str = "acme/web", number: int = 1, days_ago: int = 0) -> DuplicateRecord:
    return DuplicateRecord(
        fingerprint=f"{number:064x}",
        permalink=f"https://acme.slack.com/archives/C1/p{number}",
        target=TargetIssueRef(
            repo=repo,
            number=number,
            url=f"https://github.com/{repo}/issues/{number}",
            node_id=f"I_{number}",
        ),
        routed_at=datetime.now(timezone.utc) - timedelta(days=days_ago),
    )


def test_history_append_and_load() -> None:
    """Test records persist across instances."""
    with TemporaryDirectory() as tmpdir:
        storage_dir = Path(tmpdir)
        history = RoutingHistory(storage_dir)

        assert history.load("acme/web") == []

        history.append(_record(number=1))
        history.append(_record(number=2))
        history.append(_record(repo="acme/ios-app", number=3))

        # One YAML file per record, grouped by repository
        assert len(list(storage_dir.glob("acme__web/*.yaml"))) == 2

        records = RoutingHistory(storage_dir).load("acme/web")
        assert sorted(record.target.number for record in records) == [1, 2]
        assert records[0].target.node_id.startswith("I_")
        assert records[0].routed_at.tzinfo is not None


def test_history_stats() -> None:
    """Test record counts per repository."""
    with TemporaryDirectory() as tmpdir:
        history = RoutingHistory(Path(tmpdir))
        history.append(_record(number=1))
        history.append(_record(repo="acme/ios-app", number=2))

        stats = history.get_stats()

        assert stats["total_records"] == 2
        assert stats["by_repo"] == {"acme/ios-app": 1, "acme/web": 1}


def test_prune_old_records() -> None:
    """Test pruning removes only records past the cutoff."""
    with TemporaryDirectory() as tmpdir:
        history = RoutingHistory(Path(tmpdir))
        history.append(_record(number=1, days_ago=100))
        history.append(_record(number=2, days_ago=1))

        removed = history.prune_old(days=30)

        assert removed == 1
        assert [record.target.number for record in history.load("acme/web")] == [2]


def test_unreadable_records_are_skipped() -> None:
    """Test that a corrupt file does not break loading."""
    with TemporaryDirectory() as tmpdir:
        storage_dir = Path(tmpdir)
        history = RoutingHistory(storage_dir)
        history.append(_record(number=1))

        (storage_dir / "acme__web" / "broken.yaml").write_text("fingerprint: [unclosed", encoding="utf-8")

        assert [record.target.number for record in history.load("acme/web")] == [1]
