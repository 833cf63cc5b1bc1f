"""
Plain-text rendering shared by the MCP tools and the terminal dashboard.

Responses use the same block layout everywhere: a ``STATUS:`` line,
then ``Key: value`` lines, then optional free-form sections.
"""
from typing import Iterable, List

from core.models import StatusSnapshot, HardwareStatus, BackupRecord, ActionOutcome

BAR_WIDTH = 20


def gauge(value: float, maximum: float, width: int = BAR_WIDTH) -> str:
    """``[#####---------------] 25%`` style bar. Out-of-range values are clamped."""
    if maximum <= 0:
        return "[" + "-" * width + "]   ?"
    ratio = min(max(value / maximum, 0.0), 1.0)
    filled = int(round(ratio * width))
    return f"[{'#' * filled}{'-' * (width - filled)}] {int(round(ratio * 100)):3d}%"


def format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}GB"


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    return f"{hours}h {minutes}m"


def _errors_section(errors: Iterable[str]) -> List[str]:
    errors = list(errors)
    if not errors:
        return []
    lines = ["", f"WARNINGS ({len(errors)} field(s) unavailable):"]
    lines.extend(f"  - {e}" for e in errors)
    return lines


def render_status(status: StatusSnapshot) -> str:
    storage = status.storage
    protection = "DISABLED (emergency flag)" if status.emergency_disabled else "ACTIVE"
    lines = [
        f"STATUS: {'DEGRADED' if status.has_errors else 'OK'}",
        f"Mode: {'DEMO (synthetic data)' if status.demo else 'live'}",
        f"Updated: {status.timestamp}",
        "",
        f"Device: {status.device_model} ({status.device_name})",
        f"Android: {status.android_version}  Kernel: {status.kernel_version}",
        f"KernelSU: {status.kernelsu_version}",
        f"Uptime: {format_uptime(status.uptime_seconds)}",
        "",
        f"Protection: {protection}",
        f"Recovery state: {status.recovery_state}",
        f"Safe mode: {'ON' if status.safe_mode else 'off'}",
        f"Boot attempts: {status.boot_count}/{status.max_attempts}  {gauge(status.boot_count, status.max_attempts)}",
        f"Total boots: {status.total_boots}",
        "",
        f"CPU temp: {status.cpu_temp}°C",
        f"Memory: {status.free_ram_mb}MB free of {status.mem_total_mb}MB",
        f"Storage: {storage.used_mb}MB used of {storage.total_mb}MB  {gauge(storage.used_mb, storage.total_mb)}",
    ]
    lines.extend(_errors_section(status.errors))
    return "\n".join(lines)


def render_hardware(hardware: HardwareStatus) -> str:
    issues = hardware.issues
    lines = [
        f"STATUS: {'WARNING' if issues else 'OK'}",
        f"CPU temp: {hardware.cpu_temperature}°C (threshold {hardware.cpu_temp_threshold}°C)",
        f"Available RAM: {hardware.available_ram_mb}MB (minimum {hardware.min_free_ram}MB)",
        f"Storage health: {hardware.storage_health}",
    ]
    if issues:
        lines.append("")
        lines.append("ISSUES:")
        lines.extend(f"  - {issue}" for issue in issues)
    lines.extend(_errors_section(hardware.errors))
    return "\n".join(lines)


def render_backups(backups: List[BackupRecord]) -> str:
    if not backups:
        return "STATUS: OK\nBackups: 0\n\n(no backups found)"
    lines = ["STATUS: OK", f"Backups: {len(backups)}", ""]
    for b in backups:
        marker = "sha256" if b.has_integrity_hash else "no hash"
        lines.append(f"  {b.name:<24} {format_size(b.size_bytes):>9}  {b.created_at}  {b.type} ({marker})")
    return "\n".join(lines)


def render_names(title: str, names: List[str]) -> str:
    lines = ["STATUS: OK", f"{title}: {len(names)}"]
    if names:
        lines.append("")
        lines.extend(f"  {n}" for n in names)
    return "\n".join(lines)


def render_outcome(outcome: ActionOutcome) -> str:
    if outcome.ok:
        status = "SUCCESS"
    elif outcome.error_kind == "not_confirmed":
        status = "CONFIRMATION_REQUIRED"
    elif outcome.error_kind == "busy":
        status = "BUSY"
    else:
        status = "ERROR"
    lines = [
        f"STATUS: {status}",
        f"Action: {outcome.action}",
        f"Message: {outcome.message}",
    ]
    if outcome.error_kind and not outcome.ok:
        lines.append(f"Error kind: {outcome.error_kind}")
    if outcome.refreshed:
        lines.append(f"Refreshed: {', '.join(outcome.refreshed)}")
    if outcome.output.strip():
        lines.append("OUTPUT:")
        lines.append(outcome.output.rstrip())
    return "\n".join(lines)


def render_metrics(metrics: dict) -> str:
    lines = ["STATUS: OK"]
    for key, value in metrics.items():
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


def render_report(report: dict) -> str:
    """Free-form JSON from the module's analytics engine, one key per line."""
    lines = ["STATUS: OK", "SYSTEM REPORT:"]
    lines += [f"  {key}: {value}" for key, value in sorted(report.items())]
    return "\n".join(lines)
