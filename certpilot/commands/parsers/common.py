"""
Options shared by the doctor and request commands.
"""

import argparse

OUTPUT_FORMATS = ("text", "json")


def add_argument_group(parser: argparse.ArgumentParser) -> argparse._ArgumentGroup:
    """
    Add the request file and output format options to a parser.

    Args:
        parser: The command parser

    Returns:
        The created argument group, for command-specific additions
    """
    group = parser.add_argument_group("input and output options")

    group.add_argument(
        "-request",
        "--request",
        action="store",
        metavar="request file",
        help="Path of the JSON request file",
    )
    group.add_argument(
        "-format",
        "--format",
        action="store",
        metavar="text,json",
        type=str.lower,
        choices=OUTPUT_FORMATS,
        default="text",
        help="Output format (default: text)",
    )

    return group
