"""
Doctor command.

Loads a request file, runs the default pre-flight checks against it and
prints the DoctorResult as text or JSON.

Exit codes:
- 0: every check passed (warnings allowed)
- 1: bad invocation
- 2: request file missing or unparsable, or at least one check failed
"""

import argparse
import sys
from typing import List, Optional

from certpilot.lib.constants import STATUS_FAIL, STATUS_PASS
from certpilot.lib.contracts import DoctorCheckResult, DoctorResult, FailureCategory
from certpilot.lib.doctor import (
    DoctorCheck,
    DoctorContext,
    DoctorRunner,
    create_default_checks,
)
from certpilot.lib.formatting import print_doctor_result
from certpilot.lib.logger import logging
from certpilot.lib.serialization import RequestFileError, load_request, to_json

FILE_READ_CHECK_ID = "cli.file.read"

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FAILED = 2


class Doctor:
    """Runs the doctor against one request file."""

    def __init__(
        self,
        request_path: Optional[str],
        output_format: str = "text",
        connectivity: bool = False,
        checks: Optional[List[DoctorCheck]] = None,
        ns: Optional[str] = None,
        dns_tcp: bool = False,
    ) -> None:
        """
        Args:
            request_path: Path of the request JSON file
            output_format: "text" or "json"
            connectivity: Also probe CA DNS and TCP reachability
            checks: Checks to run instead of the default list
            ns: Nameserver for the CA DNS probe
            dns_tcp: Send the CA DNS probe over TCP
        """
        self.request_path = request_path
        self.output_format = output_format
        self.connectivity = connectivity
        self.checks = checks
        self.ns = ns
        self.dns_tcp = dns_tcp

    def run(self) -> int:
        """
        Run the doctor and print its result.

        Returns:
            Process exit code
        """
        if not self.request_path:
            logging.error("Error: -request is required")
            return EXIT_FAILED

        try:
            request = load_request(self.request_path)
        except FileNotFoundError:
            logging.error(f"Request file not found: {self.request_path!r}")
            self._print_file_error(
                DoctorCheckResult(
                    id=FILE_READ_CHECK_ID,
                    status=STATUS_FAIL,
                    category=FailureCategory.ConfigurationError,
                    summary="Request file not found",
                    detail=f"The request file does not exist: {self.request_path}",
                    evidence={"path": self.request_path},
                    remediation="Verify the file path is correct and the file exists.",
                )
            )
            return EXIT_FAILED
        except RequestFileError as e:
            logging.error(f"Failed to read or parse request file: {e}")
            self._print_file_error(
                DoctorCheckResult(
                    id=FILE_READ_CHECK_ID,
                    status=STATUS_FAIL,
                    category=FailureCategory.ConfigurationError,
                    summary="Failed to read or parse request file",
                    detail=str(e),
                    evidence={"path": self.request_path, "error": str(e)},
                    remediation="Verify the file is valid JSON and matches "
                    "the request file schema.",
                )
            )
            return EXIT_FAILED

        checks = (
            self.checks
            if self.checks is not None
            else create_default_checks(
                include_connectivity=self.connectivity,
                ns=self.ns,
                dns_tcp=self.dns_tcp,
            )
        )
        runner = DoctorRunner(checks)
        result = runner.run(DoctorContext(request, request_path=self.request_path))

        logging.debug(
            f"Doctor finished: {result.passed} passed, {result.failed} failed, "
            f"{result.warnings} warnings"
        )

        self._print(result)
        return EXIT_OK if result.status == STATUS_PASS else EXIT_FAILED

    def _print(self, result: DoctorResult) -> None:
        if self.output_format == "json":
            print(to_json(result))
        else:
            print_doctor_result(result)

    def _print_file_error(self, check: DoctorCheckResult) -> None:
        if self.output_format == "json":
            self._print(DoctorResult(checks=[check]))
            return

        print(f"{check.category}: {check.summary}")
        print(f"  Path: {self.request_path}")
        if "error" in check.evidence:
            print(f"  Error: {check.evidence['error']}")
        print(f"  Remediation: {check.remediation}")


def entry(options: argparse.Namespace) -> None:
    """
    Entry point for the 'doctor' command.

    Args:
        options: Command-line arguments
    """
    doctor = Doctor(
        request_path=options.request,
        output_format=options.format,
        connectivity=options.connectivity,
        ns=options.ns,
        dns_tcp=options.dns_tcp,
    )
    sys.exit(doctor.run())
