"""CLI entry point for Counterlink."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import ROLES, Config, load_config
from .node import Node, run_node
from .transport import MQTTTransport

LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class JSONFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure the root logger.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Emit JSON lines instead of text.
    """
    if log_level:
        level = LOG_LEVELS.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(
        JSONFormatter()
        if json_output
        else logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logging.basicConfig(level=level, handlers=[handler])

    # paho logs every packet at debug
    if level > logging.DEBUG:
        logging.getLogger("paho").setLevel(logging.WARNING)


def _load(args: argparse.Namespace) -> Config:
    return load_config(args.config, role=args.role, name=args.name, peer=args.peer)


async def cmd_run(args: argparse.Namespace) -> int:
    """Run a node with a terminal presenter."""
    config = _load(args)

    print(f"Counterlink node {config.node.name} ({config.node.role}), peer {config.session.peer}")
    print(f"MQTT broker: {config.mqtt.broker or '(discover)'}:{config.mqtt.port}")

    try:
        await run_node(config, interactive=not args.headless)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


async def cmd_dashboard(args: argparse.Namespace) -> int:
    """Run a node with the web dashboard."""
    config = _load(args)

    try:
        import uvicorn

        from .dashboard import create_app
    except ImportError as e:
        print(f"Dashboard dependencies not installed: {e}", file=sys.stderr)
        print("Install with: pip install counterlink[dashboard]", file=sys.stderr)
        return 1

    if args.host:
        config.dashboard.host = args.host
    if args.port:
        config.dashboard.port = args.port

    node = Node(config)
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(config, node.bridge),
            host=config.dashboard.host,
            port=config.dashboard.port,
            log_level="info" if args.verbose else "warning",
        )
    )

    print(f"Dashboard for {config.node.name}: http://{config.dashboard.host}:{config.dashboard.port}")
    try:
        await node.start()
        await server.serve()
    finally:
        await node.stop()
    return 0


async def _check_broker(config: Config) -> dict[str, Any]:
    transport = MQTTTransport(config.mqtt, config.node.name, config.session.peer)
    reachable = await asyncio.get_running_loop().run_in_executor(None, transport.check_connection)
    return {
        "broker": config.mqtt.broker,
        "port": config.mqtt.port,
        "reachable": reachable,
        "inbox_topic": transport.inbox_topic,
        "peer_inbox_topic": transport.peer_inbox_topic,
    }


async def _check_dashboard(config: Config) -> dict[str, Any]:
    import httpx

    url = f"http://localhost:{config.dashboard.port}"
    result: dict[str, Any] = {"url": url, "running": False, "session": None}
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{url}/api/health")
    except httpx.HTTPError:
        return result

    if response.status_code == 200:
        result["running"] = True
        result["session"] = response.json().get("session")
    return result


async def cmd_status(args: argparse.Namespace) -> int:
    """Check broker and dashboard connectivity."""
    config = _load(args)
    mqtt_status = await _check_broker(config)
    dashboard = await _check_dashboard(config)

    if args.json:
        print(json.dumps({
            "timestamp": datetime.now().isoformat(),
            "node": {
                "name": config.node.name,
                "role": config.node.role,
                "peer": config.session.peer,
            },
            "mqtt": mqtt_status,
            "dashboard": dashboard,
        }, indent=2))
        return 0

    print(f"Node: {config.node.name} ({config.node.role}), peer: {config.session.peer}")
    print(f"MQTT {mqtt_status['broker']}:{mqtt_status['port']}: "
          f"{'reachable' if mqtt_status['reachable'] else 'not reachable'}")
    if mqtt_status["reachable"]:
        print(f"  inbox: {mqtt_status['inbox_topic']}")
        print(f"  peer inbox: {mqtt_status['peer_inbox_topic']}")

    if dashboard["running"]:
        session = dashboard["session"] or {}
        print(f"Dashboard {dashboard['url']}: running, "
              f"counter {session.get('counter')}, status {session.get('status_key')}")
    else:
        print(f"Dashboard {dashboard['url']}: not running")
    return 0


async def cmd_peers(args: argparse.Namespace) -> int:
    """List peers announced on the local network."""
    from .discovery import DiscoveryManager

    config = _load(args)
    manager = DiscoveryManager(
        node_name=config.node.name,
        role=config.node.role,
        port=config.dashboard.port,
        service_type=config.discovery.service_type,
        announce=False,
    )

    await manager.start()
    try:
        await asyncio.sleep(args.timeout)
        peers = manager.peers()
    finally:
        await manager.stop()

    if args.json:
        print(json.dumps([p.to_dict() for p in peers], indent=2))
    elif not peers:
        print("No peers found.")
    else:
        for peer in peers:
            broker = f", broker {peer.broker}:{peer.broker_port}" if peer.broker else ""
            print(f"{peer.node_name} ({peer.role}) at {peer.address}:{peer.port}{broker}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="counterlink",
        description="Keep a counter in sync between two paired peers",
    )
    parser.add_argument("-c", "--config", type=Path, default=None,
                        help="Path to config file (default: built-in defaults)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-level", choices=list(LOG_LEVELS), default=None,
                        help="Set log level explicitly (overrides -v/--verbose)")
    parser.add_argument("--json-logs", action="store_true",
                        help="Output logs as JSON for machine parsing")

    node_args = argparse.ArgumentParser(add_help=False)
    node_args.add_argument("--role", choices=ROLES, default=None, help="Node role")
    node_args.add_argument("--name", default=None, help="Node name")
    node_args.add_argument("--peer", default=None, help="Peer node name")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run = subparsers.add_parser("run", parents=[node_args], help="Run a node in the terminal")
    run.add_argument("--headless", action="store_true", help="Do not read commands from stdin")
    run.set_defaults(func=cmd_run)

    dashboard = subparsers.add_parser("dashboard", parents=[node_args],
                                      help="Run a node with the web dashboard")
    dashboard.add_argument("-p", "--port", type=int, default=None,
                           help="Dashboard port (default: from config, 8080)")
    dashboard.add_argument("--host", default=None,
                           help="Dashboard bind address (default: from config, 0.0.0.0)")
    dashboard.set_defaults(func=cmd_dashboard)

    status = subparsers.add_parser("status", parents=[node_args], help="Check connectivity")
    status.add_argument("--json", action="store_true", help="Output status as JSON")
    status.set_defaults(func=cmd_status)

    peers = subparsers.add_parser("peers", parents=[node_args],
                                  help="List peers on the local network")
    peers.add_argument("-t", "--timeout", type=float, default=3.0,
                       help="Seconds to browse before listing (default: 3)")
    peers.add_argument("--json", action="store_true", help="Output peers as JSON")
    peers.set_defaults(func=cmd_peers)

    return parser


def main() -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
