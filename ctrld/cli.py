"""Command line interface for talking to a running DNS proxy."""

from __future__ import annotations

import argparse
import http.client
import json
import logging
import os
import sys
from typing import Any, Iterable, Mapping, Sequence

from tabulate import tabulate

from .configfile import socket_dir
from .control import LIST_CLIENTS_PATH, RELOAD_PATH, ControlClient
from .options import cur_version

CONTROL_SOCKET_NAME = "ctrld_control.sock"
CLIENTS_HEADERS = ("IP", "Hostname", "Mac", "Discovered")
QUERIES_HEADER = "Queries"

logger = logging.getLogger("ctrld")


def _sources(client: Mapping[str, Any]) -> list[str]:
    # Empty sources carry no information and are left out of the output.
    return sorted(str(name) for name in (client.get("source") or ()) if name)


def format_clients_table(clients: Sequence[Mapping[str, Any]]) -> str:
    """Render discovered clients as a text table.

    Each client is a mapping with "ip", "hostname", "mac", "source" and,
    when the server counts queries, "include_query_count" and "query_count".
    """
    # The server marks every client when it counts queries, so the first is enough.
    with_count = bool(clients) and bool(clients[0].get("include_query_count"))
    headers = list(CLIENTS_HEADERS)
    if with_count:
        headers.append(QUERIES_HEADER)
    rows = []
    for client in clients:
        row = [
            str(client.get("ip", "")),
            str(client.get("hostname", "")),
            str(client.get("mac", "")),
            ",".join(_sources(client)),
        ]
        if with_count:
            row.append(str(int(client.get("query_count") or 0)))
        rows.append(row)
    return tabulate(rows, headers=headers, tablefmt="psql", disable_numparse=True)


def _control_client(args: argparse.Namespace) -> ControlClient:
    directory = args.socket_dir or socket_dir()
    return ControlClient(os.path.join(directory, CONTROL_SOCKET_NAME))


def _list_clients(args: argparse.Namespace) -> int:
    client = _control_client(args)
    try:
        resp = client.post(LIST_CLIENTS_PATH)
    except (OSError, http.client.HTTPException) as exc:
        print(f"failed to get clients list: {exc}", file=sys.stderr)
        return 1
    try:
        clients = json.loads(resp.body or b"null") or []
    except ValueError as exc:
        print(f"failed to decode clients list result: {exc}", file=sys.stderr)
        return 1
    if not isinstance(clients, list):
        print("failed to decode clients list result: not a list", file=sys.stderr)
        return 1
    print(format_clients_table(clients))
    return 0


def _reload(args: argparse.Namespace) -> int:
    client = _control_client(args)
    try:
        resp = client.post(RELOAD_PATH)
    except (OSError, http.client.HTTPException) as exc:
        print(f"failed to send reload signal to ctrld: {exc}", file=sys.stderr)
        return 1
    if resp.status == 200:
        print("Service reloaded")
        return 0
    if resp.status == 201:
        print("Service was reloaded, but new config requires service restart.")
        return 0
    print(f"failed to reload ctrld: {resp.body.decode(errors='replace')}", file=sys.stderr)
    return 1


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--socket-dir", default="", help="Directory of the control socket")

    parser = argparse.ArgumentParser(prog="ctrld", description="dns forwarding proxy")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help='verbose log output, "-v" basic logging, "-vv" debug logging',
    )
    parser.add_argument("-s", "--silent", action="store_true", help="do not write any log output")
    commands = parser.add_subparsers(dest="command")

    reload_cmd = commands.add_parser("reload", parents=[common], help="Reload the ctrld service")
    reload_cmd.set_defaults(func=_reload)

    service = commands.add_parser("service", help="Manage ctrld service")
    service_cmds = service.add_subparsers(dest="service_command", required=True)
    service_reload = service_cmds.add_parser(
        "reload", parents=[common], help="Reload the ctrld service"
    )
    service_reload.set_defaults(func=_reload)

    clients = commands.add_parser("clients", help="Manage clients")
    clients_cmds = clients.add_subparsers(dest="clients_command", required=True)
    list_cmd = clients_cmds.add_parser(
        "list", parents=[common], help="List clients that ctrld discovered"
    )
    list_cmd.set_defaults(func=_list_clients)
    return parser


def _init_logging(verbose: int, silent: bool) -> None:
    if silent:
        level = logging.CRITICAL + 1
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")
    logger.setLevel(level)


def main(argv: Iterable[str] | None = None) -> int:
    """Run the command line interface and return the exit code."""
    parser = _build_parser()
    args = parser.parse_args(None if argv is None else list(argv))
    _init_logging(args.verbose, args.silent)
    if args.version:
        print(f"ctrld version {cur_version()}")
        return 0
    if args.command is None:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())