"""
Request command.

Loads a request file, runs the issuance pipeline once and prints the
CertificateResult as text or JSON.

Exit codes:
- 0: certificate issued and exported
- 1: any failure other than a configuration error
- 2: configuration error, including a missing or unparsable request file
"""

import argparse
import sys
from typing import Optional

from certpilot.lib.certreq import CertificateAuthorityClient, CertReqClient
from certpilot.lib.constants import ENCODE_TIMEOUT, ENROLLMENT_TIMEOUT, RESULT_FAILED
from certpilot.lib.contracts import CertificateResult, FailureCategory
from certpilot.lib.encoders import create_encoder
from certpilot.lib.export import ExportService
from certpilot.lib.formatting import print_certificate_result
from certpilot.lib.logger import logging
from certpilot.lib.parser import CertificateParser
from certpilot.lib.pipeline import RequestExecutor
from certpilot.lib.serialization import RequestFileError, load_request, to_json

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIGURATION = 2


def exit_code_for(result: CertificateResult) -> int:
    """Map a pipeline result to the process exit code."""
    if not result.failed:
        return EXIT_OK
    if result.failure_category == FailureCategory.ConfigurationError:
        return EXIT_CONFIGURATION
    return EXIT_FAILED


class Request:
    """Runs the issuance pipeline for one request file."""

    def __init__(
        self,
        request_path: Optional[str],
        output_format: str = "text",
        encoder: str = "certutil",
        work_dir: Optional[str] = None,
        timeout: float = ENROLLMENT_TIMEOUT,
        encode_timeout: float = ENCODE_TIMEOUT,
        ca: Optional[CertificateAuthorityClient] = None,
        export: Optional[ExportService] = None,
    ) -> None:
        """
        Args:
            request_path: Path of the request JSON file
            output_format: "text" or "json"
            encoder: Leaf PEM encoder, "certutil" or "native"
            work_dir: Parent directory for certreq working files
            timeout: Seconds to wait for each certreq invocation
            encode_timeout: Seconds to wait for each certutil invocation
            ca: CA client to use instead of certreq
            export: Export service to use instead of the default one
        """
        self.request_path = request_path
        self.output_format = output_format
        self.ca = ca or CertReqClient(work_dir=work_dir, timeout=timeout)
        self.export = export or ExportService(
            encoder=create_encoder(encoder, timeout=encode_timeout)
        )

    def run(self) -> int:
        """
        Execute the request and print its result.

        Returns:
            Process exit code
        """
        if not self.request_path:
            logging.error("Error: -request is required")
            return EXIT_CONFIGURATION

        try:
            request = load_request(self.request_path)
        except FileNotFoundError:
            logging.error(f"Request file not found: {self.request_path!r}")
            return self._finish(
                self._file_error(f"Request file not found: {self.request_path}")
            )
        except RequestFileError as e:
            logging.error(f"Failed to read or parse request file: {e}")
            return self._finish(
                self._file_error(f"Failed to read or parse request file: {e}")
            )

        executor = RequestExecutor(self.ca, self.export, CertificateParser())
        return self._finish(executor.execute(request))

    @staticmethod
    def _file_error(message: str) -> CertificateResult:
        return CertificateResult(
            status=RESULT_FAILED,
            failure_category=FailureCategory.ConfigurationError,
            message=message,
        )

    def _finish(self, result: CertificateResult) -> int:
        if self.output_format == "json":
            print(to_json(result))
        else:
            print_certificate_result(result)
        return exit_code_for(result)


def entry(options: argparse.Namespace) -> None:
    """
    Entry point for the 'request' command.

    Args:
        options: Command-line arguments
    """
    request = Request(
        request_path=options.request,
        output_format=options.format,
        encoder=options.encoder,
        work_dir=options.work_dir,
        timeout=options.timeout,
    )
    sys.exit(request.run())
