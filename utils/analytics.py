"""
Action analytics: one JSON line per front-end action.

Used to see which actions people actually run, how often they fail,
and how often a failure is immediately retried.
"""
import json
import os
from datetime import datetime
from pathlib import Path

# Storage location
ANALYTICS_DIR = Path(os.environ.get("ABL_ANALYTICS_DIR", Path.home() / ".antibootloop"))
ANALYTICS_FILE = ANALYTICS_DIR / "analytics.jsonl"

# Track last action for retry detection
_last_action = None


def _ensure_dir():
    ANALYTICS_DIR.mkdir(parents=True, exist_ok=True)


def log_event(action: str, ok: bool, destructive: bool = False, source: str = "mcp"):
    """
    Log an action event.

    Args:
        action: Action or tool name (e.g., "create_backup", "module_status")
        ok: Whether it succeeded
        destructive: Whether the action needed confirmation
        source: Front end that ran it ("mcp", "http", "dashboard")
    """
    global _last_action

    try:
        _ensure_dir()

        event = {
            "ts": datetime.now().isoformat(timespec="seconds"),
            "action": action,
            "ok": ok,
            "destructive": destructive,
            "retry": action == _last_action,
            "source": source,
        }

        with open(ANALYTICS_FILE, "a") as f:
            f.write(json.dumps(event) + "\n")

        _last_action = action
    except OSError:
        pass  # Never fail the action because of analytics


def get_summary() -> dict:
    """
    Usage summary.

    Returns dict with action_counts, success_rate, retry_rate,
    destructive_rate (percentages) and insights.
    """
    if not ANALYTICS_FILE.exists():
        return {"error": "No analytics data yet"}

    try:
        events = []
        with open(ANALYTICS_FILE) as f:
            for line in f:
                if line.strip():
                    events.append(json.loads(line))
    except (OSError, ValueError) as e:
        return {"error": str(e)}

    if not events:
        return {"error": "No events recorded"}

    total = len(events)
    action_counts = {}
    failures = {}
    successes = retries = destructive = 0

    for e in events:
        action = e.get("action", "unknown")
        action_counts[action] = action_counts.get(action, 0) + 1
        if e.get("ok"):
            successes += 1
        else:
            failures[action] = failures.get(action, 0) + 1
        if e.get("retry"):
            retries += 1
        if e.get("destructive"):
            destructive += 1

    return {
        "total_events": total,
        "action_counts": action_counts,
        "success_rate": round(successes / total * 100, 1),
        "retry_rate": round(retries / total * 100, 1),
        "destructive_rate": round(destructive / total * 100, 1),
        "insights": _generate_insights(failures, retries / total),
    }


def _generate_insights(failures: dict, retry_rate: float) -> list:
    insights = []

    if retry_rate > 0.15:
        insights.append(f"High retry rate ({retry_rate*100:.0f}%): check action error messages.")

    for action, count in sorted(failures.items(), key=lambda kv: -kv[1]):
        if count >= 3:
            insights.append(f"{action} failed {count} times")

    if not insights:
        insights.append("No obvious issues detected.")

    return insights


def clear_analytics():
    """Clear all analytics data."""
    global _last_action
    _last_action = None
    if ANALYTICS_FILE.exists():
        ANALYTICS_FILE.unlink()
    return "Analytics cleared."
