"""
Terminal dashboard.

    antibootloop-dashboard watch [--interval 10]
    antibootloop-dashboard action reset_boot_counter [--yes]
    antibootloop-dashboard action create_backup -p name=before_update
    antibootloop-dashboard report

In ``watch`` mode, typing an action name at any time opens its
confirmation prompt; polling is paused until the prompt is answered.
"""
import argparse
import logging
import sys
import threading

from core.config import POLL_INTERVAL_SECONDS
from core.dispatcher import ACTIONS
from core.errors import ExecError
from core.manager import ModuleManager
from core.poller import Poller
from utils import analytics
from utils.logger import setup_logging
from . import render

logger = logging.getLogger(__name__)

_print_lock = threading.Lock()


def _out(text: str):
    with _print_lock:
        print(text, flush=True)


def ask(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def parse_params(pairs) -> dict:
    params = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected key=value, got '{pair}'")
        params[key.strip()] = value
    return params


def run_action(manager: ModuleManager, action: str, params: dict, assume_yes: bool = False) -> int:
    confirm = (lambda prompt: True) if assume_yes else ask
    outcome = manager.run_action(action, confirm=confirm, **params)
    analytics.log_event(action, ok=outcome.ok, destructive=action in ACTIONS and ACTIONS[action].destructive,
                        source="dashboard")
    _out(render.render_outcome(outcome))
    return 0 if outcome.ok else 1


def render_dashboard(everything: dict) -> str:
    parts = [render.render_status(everything["status"]), "",
             render.render_hardware(everything["hardware"]), "",
             render.render_backups(everything["backups"])]
    return "\n".join(parts)


def watch(manager: ModuleManager, interval: float) -> int:
    def refresh():
        everything = manager.refresh_all()
        _out("\n" + "=" * 60 + "\n" + render_dashboard(everything))

    poller = Poller(refresh, interval=interval,
                    on_error=lambda e: _out(f"STATUS: ERROR\nReason: {e}"))
    _out(f"Refreshing every {poller.interval:g}s. Type an action name to run it, 'q' to quit.")
    poller.start()
    try:
        while True:
            try:
                line = input()
            except EOFError:
                break
            command = line.strip()
            if not command:
                continue
            if command in ("q", "quit", "exit"):
                break
            name, *pairs = command.split()
            if name not in ACTIONS:
                _out(f"Unknown action '{name}'. Use: {', '.join(sorted(ACTIONS))}")
                continue
            poller.pause()
            try:
                run_action(manager, name, parse_params(pairs))
            except ValueError as e:
                _out(f"STATUS: ERROR\nReason: {e}")
            finally:
                poller.resume()
    except KeyboardInterrupt:
        pass
    finally:
        poller.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Anti-bootloop module dashboard")
    parser.add_argument("--log-file", default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    watch_parser = sub.add_parser("watch", help="Live status, refreshed periodically")
    watch_parser.add_argument("--interval", type=float, default=POLL_INTERVAL_SECONDS)

    sub.add_parser("status", help="Print the status card once")
    sub.add_parser("report", help="Print the module's own system report")

    action_parser = sub.add_parser("action", help="Run one action")
    action_parser.add_argument("name", choices=sorted(ACTIONS))
    action_parser.add_argument("-p", "--param", action="append", metavar="KEY=VALUE")
    action_parser.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else "WARNING", args.log_file)
    manager = ModuleManager()
    try:
        if args.command == "watch":
            return watch(manager, args.interval)
        if args.command == "status":
            _out(render_dashboard(manager.refresh_all()))
            return 0
        if args.command == "report":
            try:
                _out(render.render_report(manager.aggregator.get_system_report()))
            except ExecError as e:
                _out(f"STATUS: ERROR\nReason: {e}")
                return 1
            return 0
        try:
            params = parse_params(args.param)
        except ValueError as e:
            _out(f"STATUS: ERROR\nReason: {e}")
            return 2
        return run_action(manager, args.name, params, assume_yes=args.yes)
    finally:
        manager.close()


if __name__ == "__main__":
    sys.exit(main())
