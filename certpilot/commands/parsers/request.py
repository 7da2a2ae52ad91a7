"""
Parser for the request command.

This module defines the command-line interface for the 'request' command,
which enrolls a certificate through certreq and exports it as PEM files.
"""

import argparse
from typing import Callable, Tuple

from certpilot.lib.constants import ENROLLMENT_TIMEOUT

from . import common

# Command name identifier
NAME = "request"


def entry(options: argparse.Namespace) -> None:
    """
    Entry point for the request command.

    Args:
        options: Parsed command-line arguments
    """
    from certpilot.commands import request

    request.entry(options)


def add_subparser(subparsers: argparse._SubParsersAction) -> Tuple[str, Callable]:  # type: ignore
    """
    Add the request subparser to the main parser.

    Args:
        subparsers: Parent parser to attach the subparser to

    Returns:
        Tuple of (command_name, entry_function) for command registration
    """
    subparser = subparsers.add_parser(
        NAME,
        help="Request a certificate and export it",
        description=(
            "Submit a certificate request to a Windows CA with certreq, "
            "export the issued certificate as PEM and verify the result."
        ),
    )

    common.add_argument_group(subparser)

    group = subparser.add_argument_group("enrollment options")
    group.add_argument(
        "-encoder",
        "--encoder",
        action="store",
        metavar="certutil,native",
        choices=["certutil", "native"],
        default="certutil",
        help="Encoder used for the leaf PEM (default: certutil)",
    )
    group.add_argument(
        "-work-dir",
        "--work-dir",
        action="store",
        metavar="directory",
        help="Directory for certreq working files (default: system temp directory)",
    )
    group.add_argument(
        "-timeout",
        "--timeout",
        action="store",
        metavar="seconds",
        type=float,
        default=ENROLLMENT_TIMEOUT,
        help=f"Seconds to wait for each certreq invocation (default: {ENROLLMENT_TIMEOUT})",
    )

    return NAME, entry
