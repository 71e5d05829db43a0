#!/usr/bin/env python3
"""CLI entry point for testclusters.

Commands:
- run: Start a node from a YAML definition and keep it up until interrupted
- upgrade-check: Show the distribution sequence of a node definition
- summarize: Report errors, warnings and the tail of a node log file
- reap: Kill node processes left behind by aborted runs
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from testclusters.config import (
    ConfigError,
    get_base_dir,
    get_reaper_dir,
    load_node_definition,
)
from testclusters.errors import TestClustersError
from testclusters.logtail import MESSAGES_WE_DONT_CARE_ABOUT, TAIL_LOG_MESSAGES_COUNT, log_summary
from testclusters.node import ElasticsearchNode
from testclusters.reaper import PidFileReaper, reap

COMMANDS = {
    "run": "Start a node and keep it running until interrupted",
    "upgrade-check": "Show the distributions a node can be upgraded through",
    "summarize": "Summarize errors and warnings in a node log file",
    "reap": "Kill node processes left behind by aborted runs",
}

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def _load_node(file: Path, base_dir: Path, reaper_dir: Path) -> ElasticsearchNode:
    definition = load_node_definition(file)
    node = ElasticsearchNode(
        definition.path,
        definition.name,
        PidFileReaper(reaper_dir),
        base_dir,
    )
    definition.apply(node.spec)
    return node


def _wait_while_alive(node: ElasticsearchNode, interval: float = 1.0) -> None:
    try:
        while node.is_process_alive():
            time.sleep(interval)
        logger.warning("%s exited on its own", node)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping %s", node)


def cmd_run(args) -> int:
    try:
        node = _load_node(args.file, args.base_dir, args.reaper_dir)
        node.freeze()
    except TestClustersError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    rc = 0
    try:
        node.start()
        if not args.no_wait:
            node.wait_for_all_conditions()
            info = {
                "node": str(node),
                "version": str(node.version),
                "http": node.all_http_socket_uris,
                "transport": node.all_transport_port_uris,
            }
            if args.json:
                print(json.dumps(info, indent=2))
            else:
                print(f"{info['node']} ({info['version']}) is up")
                print(f"  http:      {', '.join(info['http'])}")
                print(f"  transport: {', '.join(info['transport'])}")
        if not args.exit_when_ready:
            _wait_while_alive(node)
    except TestClustersError as e:
        logger.error("%s", e)
        rc = 1
    finally:
        node.stop(True)
    return rc


def cmd_upgrade_check(args) -> int:
    try:
        definition = load_node_definition(args.file)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    versions = [str(d.get('version')) for d in definition.distributions if isinstance(d, dict)]
    if not versions:
        print(f"{definition.name}: no distributions configured")
        return 1
    print(f"{definition.name}:")
    for i, version in enumerate(versions):
        marker = '*' if i == 0 else ' '
        print(f"  {marker} {version}")
    if len(versions) > 1:
        print(f"Rolling upgrade possible through {len(versions) - 1} step(s)")
    else:
        print("Single distribution, upgrade not possible")
    return 0


def cmd_summarize(args) -> int:
    if not args.logfile.exists():
        print(f"Error: {args.logfile} does not exist", file=sys.stderr)
        return 1
    ignore = tuple(args.ignore) if args.ignore else MESSAGES_WE_DONT_CARE_ABOUT
    summary = log_summary("Log file", args.logfile, str(args.logfile), args.tail, ignore)
    if summary.is_empty:
        print(f"{args.logfile}: nothing to report")
    return 1 if summary.aggregate and args.fail_on_errors else 0


def cmd_reap(args) -> int:
    killed = reap(args.dir)
    print(f"Reaped {len(killed)} process(es) from {args.dir}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='testclusters',
        description='Manage ephemeral server nodes for integration tests',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    sub = parser.add_subparsers(dest='command', metavar='<command>')

    run = sub.add_parser('run', help=COMMANDS['run'])
    run.add_argument('--file', '-f', type=Path, required=True, help='YAML node definition')
    run.add_argument('--base-dir', type=Path, default=None, help='Base directory for working directories')
    run.add_argument('--reaper-dir', type=Path, default=None, help='Directory for reaper pid files')
    run.add_argument('--no-wait', action='store_true', help="Don't wait for the ports files")
    run.add_argument('--exit-when-ready', action='store_true', help='Stop the node once it is up')
    run.add_argument('--json', action='store_true', help='Print node info as JSON')

    upgrade_check = sub.add_parser('upgrade-check', help=COMMANDS['upgrade-check'])
    upgrade_check.add_argument('--file', '-f', type=Path, required=True, help='YAML node definition')

    summarize = sub.add_parser('summarize', help=COMMANDS['summarize'])
    summarize.add_argument('logfile', type=Path, help='Log file to summarize')
    summarize.add_argument('--tail', type=int, default=TAIL_LOG_MESSAGES_COUNT, help='Messages to keep')
    summarize.add_argument(
        '--ignore',
        action='append',
        default=[],
        help='Ignore messages containing this text (repeatable, replaces the defaults)'
    )
    summarize.add_argument('--fail-on-errors', action='store_true', help='Exit 1 if errors or warnings are found')

    reap_parser = sub.add_parser('reap', help=COMMANDS['reap'])
    reap_parser.add_argument('--dir', type=Path, default=None, help='Reaper pid file directory')
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'run':
        args.base_dir = args.base_dir or get_base_dir()
        args.reaper_dir = args.reaper_dir or get_reaper_dir()
        return cmd_run(args)
    if args.command == 'upgrade-check':
        return cmd_upgrade_check(args)
    if args.command == 'summarize':
        return cmd_summarize(args)
    if args.command == 'reap':
        args.dir = args.dir or get_reaper_dir()
        return cmd_reap(args)

    print(f"Error: Unknown command '{args.command}'")
    return 1


if __name__ == '__main__':
    sys.exit(main())
