"""
Action analytics log.
"""
import json

from utils import analytics


def read_events():
    with open(analytics.ANALYTICS_FILE) as f:
        return [json.loads(line) for line in f if line.strip()]


def test_log_event_appends_jsonl(analytics_dir):
    analytics.log_event("create_backup", ok=True)
    analytics.log_event("restore_backup", ok=False, destructive=True, source="http")

    events = read_events()
    assert [e["action"] for e in events] == ["create_backup", "restore_backup"]
    assert events[1]["destructive"] is True
    assert events[1]["source"] == "http"
    assert events[0]["retry"] is False


def test_repeated_action_marked_retry(analytics_dir):
    analytics.log_event("reset_boot_counter", ok=False)
    analytics.log_event("reset_boot_counter", ok=True)
    assert read_events()[1]["retry"] is True


def test_summary(analytics_dir):
    assert "error" in analytics.get_summary()
    for _ in range(3):
        analytics.log_event("delete_backup", ok=False, destructive=True)
    analytics.log_event("module_status", ok=True)

    summary = analytics.get_summary()
    assert summary["total_events"] == 4
    assert summary["action_counts"] == {"delete_backup": 3, "module_status": 1}
    assert summary["success_rate"] == 25.0
    assert summary["retry_rate"] == 50.0
    assert any("delete_backup failed 3 times" in i for i in summary["insights"])


def test_log_event_never_raises(analytics_dir, monkeypatch, tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    monkeypatch.setattr(analytics, "ANALYTICS_DIR", blocker / "sub")
    monkeypatch.setattr(analytics, "ANALYTICS_FILE", blocker / "sub" / "analytics.jsonl")
    analytics.log_event("status", ok=True)


def test_clear(analytics_dir):
    analytics.log_event("status", ok=True)
    assert analytics.clear_analytics() == "Analytics cleared."
    assert not analytics.ANALYTICS_FILE.exists()
