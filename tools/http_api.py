"""
HTTP API for the module's WebUI.

Serves the ``?action=<name>`` contract on ``/`` and ``/action.php`` and
answers with ``{success, data?, message?}`` JSON. Destructive actions
also need ``confirm=1``, which the WebUI sends after its own dialog.
"""
import argparse
import json
import logging
from datetime import datetime

from flask import Flask, jsonify, request
from flask_cors import CORS

from core.config import HTTP_HOST, HTTP_PORT, DEFAULT_LOG_LINES
from core.dispatcher import ACTIONS
from core.errors import ExecError
from core.manager import ModuleManager
from utils import analytics
from utils.logger import setup_logging

logger = logging.getLogger(__name__)

TRUTHY = ("1", "true", "yes", "on")


def _param(name: str, default=None):
    """Query string first, then form fields, then a JSON body."""
    if name in request.args:
        return request.args.get(name)
    if name in request.form:
        return request.form.get(name)
    body = request.get_json(silent=True)
    if isinstance(body, dict) and name in body:
        return body[name]
    return default


def _confirmed() -> bool:
    return str(_param("confirm", "")).lower() in TRUTHY


def _status_payload(manager: ModuleManager) -> dict:
    snapshot = manager.refresh_status()
    data = snapshot.to_dict()
    # Keys the original WebUI reads
    data.update({
        "status": "running",
        "device": snapshot.device_model,
        "uptime": snapshot.uptime_seconds,
        "module_version": manager.aggregator.get_module_info().get("version", "unknown"),
    })
    return data


def create_app(manager: ModuleManager) -> Flask:
    app = Flask(__name__)
    CORS(app, send_wildcard=True, methods=["GET", "POST", "OPTIONS"],
         allow_headers=["Content-Type"])
    app.config["manager"] = manager

    def run(action: str, **params):
        spec = ACTIONS[action]
        if spec.destructive and not _confirmed():
            analytics.log_event(action, ok=False, destructive=True, source="http")
            return {"success": False, "message": "Confirmation required"}
        outcome = manager.confirmed(action, **params) if spec.destructive \
            else manager.run_action(action, **params)
        analytics.log_event(action, ok=outcome.ok, destructive=spec.destructive, source="http")
        response = {"success": outcome.ok, "message": outcome.message}
        if outcome.output.strip():
            response["output"] = outcome.output
        return response

    def status():
        return {"success": True, "data": _status_payload(manager)}

    def hardware():
        return {"success": True, "data": manager.aggregator.get_hardware().to_dict()}

    def backups():
        return {"success": True, "data": [b.to_dict() for b in manager.refresh_backups()]}

    def logs():
        lines = _param("lines", DEFAULT_LOG_LINES)
        try:
            lines = int(lines)
        except (TypeError, ValueError):
            return {"success": False, "message": f"Invalid lines: {lines}"}
        return {"success": True, "data": {"logs": manager.aggregator.get_logs(lines), "lines": lines}}

    def create_backup():
        return run("create_backup",
                   name=_param("name") or datetime.now().strftime("backup_%Y%m%d_%H%M%S"),
                   description=_param("description", "WebUI created backup"),
                   backup_type=_param("type", "full"))

    def restore_backup():
        backup = _param("backup")
        if not backup:
            return {"success": False, "message": "Backup name required"}
        return run("restore_backup", backup=backup)

    def delete_backup():
        backup = _param("backup")
        if not backup:
            return {"success": False, "message": "Backup name required"}
        return run("delete_backup", backup=backup)

    def export_backup():
        backup = _param("backup")
        if not backup:
            return {"success": False, "message": "Backup name required"}
        return run("export_backup", backup=backup)

    def import_backup():
        path = _param("path")
        if not path:
            return {"success": False, "message": "Backup path required"}
        return run("import_backup", path=path)

    def recovery_points():
        return {"success": True, "data": manager.refresh_recovery_points()}

    def settings():
        raw = _param("settings")
        if raw is None:
            return {"success": True, "data": manager.refresh_settings()}
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                return {"success": False, "message": f"Invalid settings JSON: {e}"}
        return run("update_settings", settings=raw)

    def webui_status():
        return {"success": True, "data": manager.aggregator.get_webui_status()}

    def system_status():
        return {"success": True, "data": manager.aggregator.get_system_report()}

    def metrics():
        return {"success": True, "data": manager.get_metrics()}

    handlers = {
        "status": status,
        "hardware": hardware,
        "backups": backups,
        "logs": logs,
        "create_backup": create_backup,
        "restore_backup": restore_backup,
        "delete_backup": delete_backup,
        "export_backup": export_backup,
        "import_backup": import_backup,
        "emergency_disable": lambda: run("emergency_disable"),
        "clear_emergency_disable": lambda: run("clear_emergency_disable"),
        "activate_emergency": lambda: run("activate_emergency"),
        "deactivate_emergency": lambda: run("deactivate_emergency"),
        "test_bootloop": lambda: run("test_bootloop"),
        "reset_boot_counter": lambda: run("reset_boot_counter"),
        "enable_safe_mode": lambda: run("enable_safe_mode"),
        "webui_status": webui_status,
        "system_status": system_status,
        "recovery_points": recovery_points,
        "settings": settings,
        "metrics": metrics,
    }

    @app.route("/", methods=["GET", "POST", "OPTIONS"])
    @app.route("/action.php", methods=["GET", "POST", "OPTIONS"])
    def action_endpoint():
        if request.method == "OPTIONS":
            return "", 200

        action = _param("action", "")
        handler = handlers.get(action)
        if handler is None:
            return jsonify({"success": False, "message": f"Invalid action: {action}"})
        try:
            return jsonify(handler())
        except ExecError as e:
            logger.error("Action %s failed: %s", action, e)
            return jsonify({"success": False, "message": f"Error: {e.message}"})

    return app


def main():
    parser = argparse.ArgumentParser(description="Anti-bootloop WebUI HTTP API")
    parser.add_argument("--host", default=HTTP_HOST)
    parser.add_argument("--port", type=int, default=HTTP_PORT)
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    setup_logging("DEBUG" if args.debug else None, args.log_file)
    manager = ModuleManager()
    app = create_app(manager)
    logger.info("Serving on http://%s:%d (transport: %s)", args.host, args.port, manager.transport.name)
    try:
        app.run(host=args.host, port=args.port, debug=args.debug, use_reloader=False)
    finally:
        manager.close()


if __name__ == "__main__":
    main()
