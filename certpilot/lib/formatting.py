"""
Text rendering of doctor and request results.

JSON output comes from certpilot.lib.serialization; this module renders the
same results for a terminal. ``pretty_print`` lays out nested dictionaries
with padded keys.
"""

import datetime
from typing import Any, Callable, Dict, List

from certpilot.lib.constants import STATUS_FAIL, STATUS_WARN
from certpilot.lib.contracts import CertificateResult, DoctorResult

# Type aliases for better readability
PrintFunc = Callable[..., Any]
JsonLike = Dict[str, Any]


REMAP = {
    "sha256": "SHA-256",
    "cer_path": "CER Path",
    "pfx_path": "PFX Path",
    "chain_path": "Chain Path",
}


def to_title(snake_str: str) -> str:
    """
    Convert a snake_case key to a title.

    Example:
        >>> to_title("not_before")
        'Not Before'
    """
    if snake_str in REMAP:
        return REMAP[snake_str]
    return " ".join(x.capitalize() for x in snake_str.split("_"))


def pretty_print(
    data: JsonLike, indent: int = 0, padding: int = 32, print_func: PrintFunc = print
) -> None:
    """
    Pretty print a dictionary with customizable indentation and padding.

    Handles nested dictionaries, lists, and various data types with appropriate formatting.

    Args:
        data: Dictionary to print
        indent: Initial indentation level
        padding: Left padding for values
        print_func: Function to use for printing (default: built-in print)

    Raises:
        TypeError: If input is not a dictionary or contains unsupported types
    """
    indent_str = "  " * indent

    for key, value in data.items():
        key_str = f"{indent_str}{key}"
        padded_key = key_str.ljust(padding, " ")

        if value is None:
            # Skip None values
            continue

        elif isinstance(value, (str, int, float, bool)):
            print_func(f"{padded_key}: {value}")

        elif isinstance(value, datetime.datetime):
            print_func(f"{padded_key}: {value.isoformat()}")

        elif isinstance(value, dict):
            print_func(f"{key_str}")
            pretty_print(
                value, indent=indent + 1, padding=padding, print_func=print_func
            )

        elif isinstance(value, list):
            if len(value) > 0 and isinstance(value[0], dict):
                print_func(f"{key_str}")
                for item in value:
                    pretty_print(
                        item, indent=indent + 1, padding=padding, print_func=print_func
                    )
            elif len(value) > 0:
                # Format list with line breaks if needed
                formatted_list = ("\n" + " " * padding + "  ").join(
                    str(x) for x in value
                )
                print_func(f"{padded_key}: {formatted_list}")

        else:
            raise TypeError(
                f"Unsupported type for pretty printing: {type(value).__name__}"
            )


def print_doctor_result(result: DoctorResult, print_func: PrintFunc = print) -> None:
    """Print the doctor status header, counts, and one line per check."""
    print_func(f"Doctor Status: {result.status.upper()}")
    print_func(f"  Passed: {result.passed}")
    print_func(f"  Failed: {result.failed}")
    print_func(f"  Warnings: {result.warnings}")
    print_func()

    for check in result.checks:
        print_func(f"{check.status.upper()} {check.id} - {check.summary}")
        if check.status in (STATUS_FAIL, STATUS_WARN) and check.remediation:
            print_func(f"  {check.remediation}")


def _certificate_section(result: CertificateResult) -> JsonLike:
    details = result.certificate
    if details is None:
        return {}

    return {
        to_title("thumbprint"): details.thumbprint,
        to_title("sha256"): details.fingerprints.sha256 if details.fingerprints else None,
        to_title("subject"): details.subject,
        to_title("issuer"): details.issuer,
        to_title("serial_number"): details.serial_number,
        to_title("not_before"): details.not_before,
        to_title("not_after"): details.not_after,
        to_title("key_algorithm"): details.key_algorithm,
        to_title("key_size"): details.key_size,
        "SANs": details.subject_alternative_names,
    }


def _exported_section(result: CertificateResult) -> List[JsonLike]:
    return [
        {
            "Name": artifact.name,
            "Path": artifact.path,
            "Written": artifact.written,
            "Size": artifact.size_bytes,
            to_title("sha256"): artifact.sha256,
            "Certificates": artifact.certificate_count,
        }
        for artifact in result.artifacts.exported
    ]


def print_certificate_result(
    result: CertificateResult, print_func: PrintFunc = print
) -> None:
    """
    Print a request result.

    A failure is one ``Category: message`` line; a success lists the
    certificate, the artifacts and the invariants.
    """
    if result.failed:
        print_func(f"{result.failure_category}: {result.message}")
    else:
        print_func(f"Status: {result.status.upper()}")
        print_func(f"  {result.message}")

    native = result.artifacts.native
    native_section = {
        to_title("cer_path"): native.cer_path,
        to_title("pfx_path"): native.pfx_path,
        to_title("chain_path"): native.chain_path,
    }
    data: JsonLike = {
        "Request ID": result.request_id,
        "Certificate": _certificate_section(result) or None,
        "Native Artifacts": native_section if any(native_section.values()) else None,
        "Exported": _exported_section(result),
    }
    pretty_print(data, indent=1, print_func=print_func)

    for invariant in result.invariants:
        status = "PASS" if invariant.ok else "FAIL"
        print_func(f"{status} {invariant.name} - {invariant.detail}")
