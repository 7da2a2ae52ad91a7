"""
Pre-flight diagnostics ("doctor").

A doctor run executes an ordered list of checks against a request and
aggregates their results. Checks report expected failures as results; the
runner contains anything a check raises so one broken check never aborts
the batch.
"""

from typing import Iterable, List, Optional, Protocol

from certpilot.lib.constants import STATUS_FAIL
from certpilot.lib.contracts import (
    CertificateRequest,
    DoctorCheckResult,
    DoctorResult,
    FailureCategory,
    has_text,
)
from certpilot.lib.logger import logging


class DoctorContext:
    """
    Inputs of a doctor run.

    Holds the request and where it came from. Building a context performs
    no I/O.
    """

    def __init__(
        self,
        request: Optional[CertificateRequest],
        request_path: Optional[str] = None,
        config_path: Optional[str] = None,
    ) -> None:
        self.request = request
        self.request_path = request_path
        self.config_path = config_path


class DoctorCheck(Protocol):
    """A single diagnostic check."""

    id: str

    def run(self, context: DoctorContext) -> Optional[DoctorCheckResult]: ...


def _qualified_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ in ("builtins", None):
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


class DoctorRunner:
    """
    Runs checks in order and aggregates the outcome.

    Every check always runs. The aggregate status is "fail" iff at least one
    check failed; warnings do not flip it.
    """

    def __init__(self, checks: Iterable[DoctorCheck]) -> None:
        if checks is None:
            raise ValueError("checks must not be None")
        self.checks: List[DoctorCheck] = list(checks)

    def run(self, context: DoctorContext) -> DoctorResult:
        if context is None:
            raise ValueError("context must not be None")

        results: List[DoctorCheckResult] = []

        for check in self.checks:
            logging.debug(f"Running doctor check {check.id!r}")
            try:
                result = check.run(context)
            except Exception as e:
                logging.debug(f"Doctor check {check.id!r} raised {e!r}")
                results.append(
                    DoctorCheckResult(
                        id=check.id,
                        status=STATUS_FAIL,
                        category=FailureCategory.EnvironmentError,
                        summary="Doctor check threw an exception",
                        detail=str(e),
                        evidence={
                            "checkId": check.id,
                            "exceptionType": _qualified_name(e),
                        },
                        remediation="Fix the doctor check to report failures "
                        "via a check result rather than raising.",
                    )
                )
                continue

            if result is None:
                results.append(
                    DoctorCheckResult(
                        id=check.id,
                        status=STATUS_FAIL,
                        category=FailureCategory.EnvironmentError,
                        summary="Doctor check returned no result",
                        detail="A doctor check returned None, which violates "
                        "the doctor check contract.",
                        evidence={"checkId": check.id},
                        remediation="Fix the implementation of the doctor check "
                        "to always return a result.",
                    )
                )
                continue

            if not has_text(result.id):
                result.id = check.id

            logging.debug(f"Doctor check {result.id!r}: {result.status}")
            results.append(result)

        return DoctorResult(checks=results)


DEFAULT_CHECK_IDS = (
    "env.windows",
    "env.runtime",
    "env.elevation",
    "env.tooling",
    "config.required",
    "config.mode.legal",
    "export.destinations.ready",
)

CONNECTIVITY_CHECK_IDS = ("ca.dns", "ca.transport")


def create_default_checks(
    include_connectivity: bool = False,
    ns: Optional[str] = None,
    dns_tcp: bool = False,
) -> List[DoctorCheck]:
    """
    Build the ordered list of default checks.

    Environment viability comes first, then request shape, then (optionally)
    CA connectivity, then export-destination safety.

    Args:
        include_connectivity: Also probe CA DNS resolution and TCP reachability
        ns: Nameserver for the DNS probe instead of the system configuration
        dns_tcp: Send the DNS probe over TCP

    Returns:
        Fresh check instances in execution order
    """
    from certpilot.lib import checks

    default_checks: List[DoctorCheck] = [
        checks.WindowsOsCheck(),
        checks.RuntimeInfoCheck(),
        checks.ElevationCheck(),
        checks.ToolingPresenceCheck(),
        checks.ConfigRequiredFieldsCheck(),
        checks.ModeLegalityCheck(),
    ]

    if include_connectivity:
        default_checks.append(checks.CaDnsResolutionCheck(ns=ns, dns_tcp=dns_tcp))
        default_checks.append(checks.CaTransportReachabilityCheck())

    default_checks.append(checks.ExportDestinationReadinessCheck())

    return default_checks
