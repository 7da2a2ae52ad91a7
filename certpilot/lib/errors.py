"""
Error code translation and handled-error reporting.

Enrollment tools print Windows HRESULT codes (for example ``0x80094012``)
when the CA rejects a request. This module maps those codes to readable
messages using impacket's HRESULT table, and provides the shared
``handle_error`` helper used after an error has been logged.
"""

import re
import traceback
from typing import List, Tuple

from impacket import hresult_errors

from certpilot.lib.logger import is_verbose, logging

HRESULT_PATTERN = re.compile(r"0x[0-9a-fA-F]{8}")


def translate_error_code(error_code: int) -> str:
    """
    Translate a Windows HRESULT into a human-readable string.

    Args:
        error_code: HRESULT value, signed or unsigned

    Returns:
        Message with code, short name and description, or an
        ``unknown error code`` message when the code is not in the table

    Example:
        >>> translate_error_code(0x80094012)
        'code: 0x80094012 - CERTSRV_E_TEMPLATE_DENIED - The permissions on ...'
    """
    masked_code = error_code & 0xFFFFFFFF

    if masked_code in hresult_errors.ERROR_MESSAGES:
        error_tuple: Tuple[str, str] = hresult_errors.ERROR_MESSAGES[masked_code]
        error_short, error_detail = error_tuple
        return f"code: 0x{masked_code:x} - {error_short} - {error_detail}"

    return f"unknown error code: 0x{masked_code:x}"


def find_error_codes(text: str) -> List[int]:
    """
    Collect the distinct HRESULT codes mentioned in tool output.

    Args:
        text: Combined stdout/stderr of an external tool

    Returns:
        Codes in order of first appearance
    """
    codes: List[int] = []
    for match in HRESULT_PATTERN.findall(text or ""):
        code = int(match, 16)
        if code not in codes:
            codes.append(code)
    return codes


def handle_error(is_warning: bool = False) -> None:
    """
    Report a handled exception.

    Prints the traceback in verbose mode, otherwise a hint on how to get it.
    Must be called from inside an ``except`` block.
    """
    if is_verbose():
        traceback.print_exc()
    else:
        msg = "Use -debug to print a stacktrace"
        if is_warning:
            logging.warning(msg)
        else:
            logging.error(msg)
