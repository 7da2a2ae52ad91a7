"""
Parser for the doctor command.

The doctor runs pre-flight checks against a request file and the local host
without contacting the CA, unless connectivity probes are requested.
"""

import argparse
from typing import Callable, Tuple

from . import common

# Command name identifier
NAME = "doctor"


def entry(options: argparse.Namespace) -> None:
    """
    Entry point for the doctor command.

    Args:
        options: Parsed command-line arguments
    """
    from certpilot.commands import doctor

    doctor.entry(options)


def add_subparser(subparsers: argparse._SubParsersAction) -> Tuple[str, Callable]:  # type: ignore
    """
    Add the doctor subparser to the main parser.

    Args:
        subparsers: Parent parser to attach the subparser to

    Returns:
        Tuple of (command_name, entry_function) for command registration
    """
    subparser = subparsers.add_parser(
        NAME,
        help="Check a request file and this host before requesting",
        description=(
            "Run pre-flight checks: operating system, runtime, elevation, "
            "enrollment tools, required fields, mode rules and export destinations."
        ),
    )

    group = common.add_argument_group(subparser)
    group.add_argument(
        "-connectivity",
        "--connectivity",
        action="store_true",
        help="Also resolve the CA host and probe its TCP port",
    )

    conn_group = subparser.add_argument_group("connection options")
    _ = conn_group.add_argument(
        "-ns",
        "--ns",
        action="store",
        metavar="ip address",
        help="Nameserver for resolving the CA host (with -connectivity)",
    )
    _ = conn_group.add_argument(
        "-dns-tcp",
        "--dns-tcp",
        action="store_true",
        help="Use TCP instead of UDP for DNS queries",
    )

    return NAME, entry
