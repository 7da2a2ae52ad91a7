"""
Certificate request pipeline.

issue -> export -> parse -> invariants -> result. Each stage short-circuits
to a failed CertificateResult; the executor never lets an exception from a
collaborator reach its caller.
"""

import datetime
from typing import List, Optional

from certpilot.lib.certreq import CertificateAuthorityClient
from certpilot.lib.constants import RESULT_FAILED, RESULT_SUCCESS
from certpilot.lib.contracts import (
    ArtifactReport,
    CaIssueResult,
    CertificateDetails,
    CertificateRequest,
    CertificateResult,
    ExportedArtifact,
    FailureCategory,
    InvariantResult,
    NativeArtifacts,
)
from certpilot.lib.errors import handle_error
from certpilot.lib.export import ExportService
from certpilot.lib.logger import logging
from certpilot.lib.parser import CertificateParser


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class RequestExecutor:
    """
    Runs one certificate request end to end.

    Collaborators are passed in explicitly; the executor keeps no state
    between calls.
    """

    def __init__(
        self,
        ca: CertificateAuthorityClient,
        export: ExportService,
        parser: CertificateParser,
    ) -> None:
        if ca is None or export is None or parser is None:
            raise ValueError("ca, export and parser are required")
        self.ca = ca
        self.export = export
        self.parser = parser

    def execute(self, request: Optional[CertificateRequest]) -> CertificateResult:
        """
        Issue, export and verify a certificate.

        Args:
            request: The certificate request

        Returns:
            A success result with certificate details, or a failed result
            carrying the category of the stage that failed
        """
        if request is None:
            return self._result(
                RESULT_FAILED,
                "Request was None",
                None,
                category=FailureCategory.ConfigurationError,
            )

        try:
            return self._execute(request)
        except Exception as e:
            logging.error(f"Unexpected {type(e).__name__} during request execution: {e}")
            handle_error()
            return self._result(
                RESULT_FAILED,
                f"Unexpected {type(e).__name__}: {e}",
                request.request_id,
                category=FailureCategory.EnvironmentError,
            )

    def _execute(self, request: CertificateRequest) -> CertificateResult:
        logging.info(f"Executing certificate request {request.request_id!r}")

        issued = self.ca.issue(request)
        if not issued.success:
            logging.error(f"Certificate issuance failed: {issued.message}")
            return self._result(
                RESULT_FAILED,
                issued.message,
                request.request_id,
                category=issued.failure_category or FailureCategory.CARequestError,
                issued=issued,
            )

        logging.info("Certificate issued, exporting artifacts")
        exported = self.export.export(request, issued)
        if not exported.success:
            logging.error(f"Export failed: {exported.message}")
            return self._result(
                RESULT_FAILED,
                exported.message,
                request.request_id,
                category=exported.failure_category or FailureCategory.ExportError,
                issued=issued,
                exported=exported.exported,
                invariants=self.parser.validate_invariants(
                    request, issued, exported.exported
                ),
            )

        details = self.parser.parse(issued)
        if details is None:
            return self._result(
                RESULT_FAILED,
                "Failed to parse issued certificate",
                request.request_id,
                category=FailureCategory.FormatError,
                issued=issued,
                exported=exported.exported,
            )

        invariants = self.parser.validate_invariants(request, issued, exported.exported)
        for invariant in invariants:
            if not invariant.ok:
                logging.warning(f"Invariant {invariant.name} failed: {invariant.detail}")

        logging.info(f"Got certificate with thumbprint {details.thumbprint}")
        return self._result(
            RESULT_SUCCESS,
            "Certificate issued successfully",
            request.request_id,
            issued=issued,
            exported=exported.exported,
            invariants=invariants,
            certificate=details,
        )

    @staticmethod
    def _result(
        status: str,
        message: Optional[str],
        request_id: Optional[str],
        category: Optional[FailureCategory] = None,
        issued: Optional[CaIssueResult] = None,
        exported: Optional[List[ExportedArtifact]] = None,
        invariants: Optional[List[InvariantResult]] = None,
        certificate: Optional[CertificateDetails] = None,
    ) -> CertificateResult:
        return CertificateResult(
            status=status,
            message=message,
            request_id=request_id,
            timestamp_utc=_now(),
            failure_category=category,
            certificate=certificate,
            artifacts=ArtifactReport(NativeArtifacts.from_issue(issued), exported),
            invariants=invariants,
        )
