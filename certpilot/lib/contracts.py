"""
Request and result types for certpilot.

This module defines the value types exchanged between the doctor, the CA
client, the export service, the parser and the pipeline:

- CertificateRequest and its parts (subject, CA target, crypto profile,
  export plan)
- CaIssueResult and ExportResult (stage results)
- CertificateResult, ArtifactReport, InvariantResult (pipeline output)
- DoctorCheckResult and DoctorResult (diagnostic output)
- FailureCategory, the single vocabulary for why something failed

The types carry no behaviour beyond small derived helpers.
"""

import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

from certpilot.lib.constants import (
    CA_BUNDLE_PEM,
    KEY_PEM,
    LEAF_PEM,
    RESULT_FAILED,
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARN,
)

# =========================================================================
# Enumerations
# =========================================================================


class FailureCategory(Enum):
    """Why an operation failed. Shared by the doctor and the pipeline."""

    # Missing inputs, invalid combinations, malformed SANs
    ConfigurationError = "ConfigurationError"
    # Missing OS capability, missing tooling, insufficient privileges
    EnvironmentError = "EnvironmentError"
    # CA host unreachable, DNS failure, transport failure
    ConnectivityError = "ConnectivityError"
    # Access denied, enrollment permission failure
    AuthorizationError = "AuthorizationError"
    # Request rejected, template mismatch, policy denial
    CARequestError = "CARequestError"
    # Invalid path, permission failure, overwrite violation, write failure
    ExportError = "ExportError"
    # Returned certificate or key cannot be parsed or converted
    FormatError = "FormatError"

    def __str__(self) -> str:
        return self.value


class RequestMode(Enum):
    """How the certificate request is produced."""

    NewKeypair = "newKeypair"
    SignExistingCsr = "signExistingCsr"

    def __str__(self) -> str:
        return self.name

    @staticmethod
    def parse(text: Optional[str]) -> Optional["RequestMode"]:
        """
        Parse a mode name case-insensitively.

        Args:
            text: Mode text from a request file

        Returns:
            The matching mode, or None when the text is not a known mode
        """
        if text is None:
            return None

        for mode in RequestMode:
            if mode.value.lower() == str(text).strip().lower():
                return mode

        return None


def has_text(value: Optional[str]) -> bool:
    """Return True when value is a non-blank string."""
    return value is not None and str(value).strip() != ""


# =========================================================================
# Evidence
# =========================================================================

EvidenceScalar = Union[str, int, float, bool, None]
EvidenceValue = Union[
    EvidenceScalar,
    List[EvidenceScalar],
    Dict[str, EvidenceScalar],
    List[Dict[str, EvidenceScalar]],
]
Evidence = Dict[str, EvidenceValue]


def evidence_value(value: object) -> EvidenceValue:
    """
    Coerce an arbitrary value into the closed evidence value set.

    Scalars pass through, lists and string-keyed maps are coerced element by
    element, and anything else is rendered with ``str``.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value  # type: ignore

    if isinstance(value, Enum):
        return str(value)

    if isinstance(value, dict):
        return {
            str(k): _evidence_scalar(v) for k, v in value.items()  # type: ignore
        }

    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            if isinstance(item, dict):
                items.append(
                    {str(k): _evidence_scalar(v) for k, v in item.items()}
                )
            else:
                items.append(_evidence_scalar(item))
        return items  # type: ignore

    return str(value)


def _evidence_scalar(value: object) -> EvidenceScalar:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value  # type: ignore
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


# =========================================================================
# Request
# =========================================================================


class SubjectIdentity:
    """Subject of the requested certificate."""

    def __init__(
        self,
        common_name: Optional[str] = None,
        subject_dn: Optional[str] = None,
        subject_alternative_names: Optional[List[str]] = None,
        wildcard: bool = False,
    ) -> None:
        """
        Args:
            common_name: CN, required for NewKeypair unless subject_dn is set
            subject_dn: Full X.500 distinguished name override
            subject_alternative_names: Typed SAN strings ("dns:...", "ip:...")
            wildcard: Wildcard intent, enforced by the CA template
        """
        self.common_name = common_name
        self.subject_dn = subject_dn
        self.subject_alternative_names: List[str] = list(
            subject_alternative_names or []
        )
        self.wildcard = wildcard


class CaConfig:
    """Where the certificate authority lives."""

    def __init__(
        self,
        ca_server: Optional[str] = None,
        ca_name: Optional[str] = None,
        config_string: Optional[str] = None,
        port: Optional[int] = None,
    ) -> None:
        self.ca_server = ca_server
        self.ca_name = ca_name
        self.config_string = config_string
        self.port = port


class CaTarget:
    """CA configuration plus the certificate template to enroll against."""

    def __init__(
        self, ca_config: Optional[CaConfig] = None, template: Optional[str] = None
    ) -> None:
        self.ca_config = ca_config
        self.template = template

    def config_string(self) -> Optional[str]:
        """
        Resolve the CA target string passed to the enrollment tool.

        An explicit config string wins; otherwise ``server\\name`` is built
        from the server and CA name, and the server alone is used when no
        name is given.

        Returns:
            The config string, or None when nothing usable is configured
        """
        cfg = self.ca_config
        if cfg is None:
            return None

        if cfg.config_string:
            return cfg.config_string

        if cfg.ca_server:
            if cfg.ca_name:
                return f"{cfg.ca_server}\\{cfg.ca_name}"
            return cfg.ca_server

        return None


class CryptoProfile:
    """Key and hash parameters for a new keypair."""

    def __init__(
        self,
        key_algorithm: Optional[str] = None,
        key_size: int = 0,
        hash_algorithm: Optional[str] = None,
        exportable_private_key: bool = False,
    ) -> None:
        self.key_algorithm = key_algorithm
        self.key_size = key_size
        self.hash_algorithm = hash_algorithm
        self.exportable_private_key = exportable_private_key


class ExportTarget:
    """A single export destination."""

    def __init__(self, enabled: bool = False, path: Optional[str] = None) -> None:
        self.enabled = enabled
        self.path = path


class ExportPlan:
    """The three PEM exports a request may ask for."""

    def __init__(
        self,
        leaf_pem: Optional[ExportTarget] = None,
        key_pem: Optional[ExportTarget] = None,
        ca_bundle_pem: Optional[ExportTarget] = None,
    ) -> None:
        self.leaf_pem = leaf_pem
        self.key_pem = key_pem
        self.ca_bundle_pem = ca_bundle_pem

    def targets(self) -> List[Tuple[str, Optional[ExportTarget]]]:
        """Return (artifact name, target) pairs in leaf, key, bundle order."""
        return [
            (LEAF_PEM, self.leaf_pem),
            (KEY_PEM, self.key_pem),
            (CA_BUNDLE_PEM, self.ca_bundle_pem),
        ]

    def enabled_targets(self) -> Iterator[Tuple[str, ExportTarget]]:
        """Yield only the enabled (artifact name, target) pairs."""
        for name, target in self.targets():
            if target is not None and target.enabled:
                yield name, target

    def is_enabled(self, name: str) -> bool:
        """Return True when the export with the given artifact name is enabled."""
        return any(n == name for n, _ in self.enabled_targets())


class CertificateRequest:
    """
    A declarative certificate request.

    Invariants checked by the doctor (not by this class):
    - SignExistingCsr requires a non-empty csr_path
    - NewKeypair requires a common name unless a full DN is supplied
    - key export requires crypto.exportable_private_key
    """

    def __init__(
        self,
        request_id: Optional[str] = None,
        output_format: Optional[str] = None,
        subject: Optional[SubjectIdentity] = None,
        mode: RequestMode = RequestMode.NewKeypair,
        csr_path: Optional[str] = None,
        ca: Optional[CaTarget] = None,
        crypto: Optional[CryptoProfile] = None,
        auth_mode: Optional[str] = None,
        exports: Optional[ExportPlan] = None,
        overwrite: bool = False,
    ) -> None:
        self.request_id = request_id
        self.output_format = output_format
        self.subject = subject
        self.mode = mode
        self.csr_path = csr_path
        self.ca = ca
        self.crypto = crypto
        self.auth_mode = auth_mode
        self.exports = exports
        self.overwrite = overwrite

    def ca_config_string(self) -> Optional[str]:
        """Resolved CA target string, or None."""
        if self.ca is None:
            return None
        return self.ca.config_string()

    def export_enabled(self, name: str) -> bool:
        """Return True when the named export is enabled."""
        return self.exports is not None and self.exports.is_enabled(name)

    def key_exportable(self) -> bool:
        """Return True when the crypto profile marks the key exportable."""
        return self.crypto is not None and self.crypto.exportable_private_key


# =========================================================================
# Stage results
# =========================================================================


class CaIssueResult:
    """Outcome of a CA issuance, produced once per pipeline run."""

    def __init__(
        self,
        success: bool,
        message: Optional[str] = None,
        failure_category: Optional[FailureCategory] = None,
        cer_path: Optional[str] = None,
        pfx_path: Optional[str] = None,
        chain_path: Optional[str] = None,
    ) -> None:
        """
        Args:
            success: Whether the CA issued a certificate
            message: Human-readable outcome
            failure_category: Category hint when success is False
            cer_path: Native certificate file, when produced
            pfx_path: PKCS#12 container holding the key, when produced
            chain_path: CA chain file, when produced
        """
        self.success = success
        self.message = message
        self.failure_category = failure_category
        self.cer_path = cer_path
        self.pfx_path = pfx_path
        self.chain_path = chain_path

    @staticmethod
    def failed(category: FailureCategory, message: str) -> "CaIssueResult":
        return CaIssueResult(False, message=message, failure_category=category)

    def __repr__(self) -> str:
        return f"<CaIssueResult ({self.__dict__!r})>"


class ExportedArtifact:
    """One requested export, whether or not it was written."""

    def __init__(
        self,
        name: str,
        path: Optional[str] = None,
        written: bool = False,
        size_bytes: Optional[int] = None,
        sha256: Optional[str] = None,
        certificate_count: Optional[int] = None,
    ) -> None:
        self.name = name
        self.path = path
        self.written = written
        self.size_bytes = size_bytes
        self.sha256 = sha256
        self.certificate_count = certificate_count

    def __repr__(self) -> str:
        return f"<ExportedArtifact ({self.__dict__!r})>"


class ExportResult:
    """Outcome of the export stage."""

    def __init__(
        self,
        success: bool,
        message: Optional[str] = None,
        exported: Optional[List[ExportedArtifact]] = None,
        failure_category: Optional[FailureCategory] = None,
    ) -> None:
        self.success = success
        self.message = message
        self.exported: List[ExportedArtifact] = list(exported or [])
        self.failure_category = failure_category


class InvariantResult:
    """A post-hoc check on the pipeline's own output."""

    def __init__(self, name: str, ok: bool, detail: str) -> None:
        self.name = name
        self.ok = ok
        self.detail = detail

    def __repr__(self) -> str:
        return f"<InvariantResult {self.name}={self.ok} ({self.detail})>"


# =========================================================================
# Pipeline result
# =========================================================================


class Fingerprints:
    def __init__(self, sha256: Optional[str] = None) -> None:
        self.sha256 = sha256


class CertificateDetails:
    """Metadata re-derived from the issued certificate."""

    def __init__(
        self,
        thumbprint: Optional[str] = None,
        fingerprints: Optional[Fingerprints] = None,
        subject: Optional[str] = None,
        subject_alternative_names: Optional[List[str]] = None,
        issuer: Optional[str] = None,
        serial_number: Optional[str] = None,
        not_before: Optional[datetime.datetime] = None,
        not_after: Optional[datetime.datetime] = None,
        key_algorithm: Optional[str] = None,
        key_size: Optional[int] = None,
    ) -> None:
        self.thumbprint = thumbprint
        self.fingerprints = fingerprints
        self.subject = subject
        self.subject_alternative_names: List[str] = list(
            subject_alternative_names or []
        )
        self.issuer = issuer
        self.serial_number = serial_number
        self.not_before = not_before
        self.not_after = not_after
        self.key_algorithm = key_algorithm
        self.key_size = key_size


class NativeArtifacts:
    """Files produced by the CA client."""

    def __init__(
        self,
        cer_path: Optional[str] = None,
        pfx_path: Optional[str] = None,
        chain_path: Optional[str] = None,
    ) -> None:
        self.cer_path = cer_path
        self.pfx_path = pfx_path
        self.chain_path = chain_path

    @staticmethod
    def from_issue(issued: Optional[CaIssueResult]) -> "NativeArtifacts":
        if issued is None:
            return NativeArtifacts()
        return NativeArtifacts(issued.cer_path, issued.pfx_path, issued.chain_path)


class ArtifactReport:
    def __init__(
        self,
        native: Optional[NativeArtifacts] = None,
        exported: Optional[List[ExportedArtifact]] = None,
    ) -> None:
        self.native = native if native is not None else NativeArtifacts()
        self.exported: List[ExportedArtifact] = list(exported or [])


class CertificateResult:
    """Top-level outcome of one pipeline run."""

    def __init__(
        self,
        status: str,
        message: Optional[str] = None,
        request_id: Optional[str] = None,
        timestamp_utc: Optional[datetime.datetime] = None,
        failure_category: Optional[FailureCategory] = None,
        certificate: Optional[CertificateDetails] = None,
        artifacts: Optional[ArtifactReport] = None,
        invariants: Optional[List[InvariantResult]] = None,
    ) -> None:
        self.status = status
        self.failure_category = failure_category
        self.message = message
        self.request_id = request_id
        self.timestamp_utc = timestamp_utc or datetime.datetime.now(
            datetime.timezone.utc
        )
        self.certificate = certificate
        self.artifacts = artifacts if artifacts is not None else ArtifactReport()
        self.invariants: List[InvariantResult] = list(invariants or [])

    @property
    def failed(self) -> bool:
        return self.status == RESULT_FAILED

    def invariant(self, name: str) -> Optional[InvariantResult]:
        """Look up an invariant by name."""
        for invariant in self.invariants:
            if invariant.name == name:
                return invariant
        return None


# =========================================================================
# Doctor results
# =========================================================================


class DoctorCheckResult:
    """Result of one diagnostic check."""

    def __init__(
        self,
        id: str,
        status: str,
        summary: Optional[str] = None,
        category: Optional[FailureCategory] = None,
        detail: Optional[str] = None,
        evidence: Optional[Dict[str, object]] = None,
        remediation: Optional[str] = None,
    ) -> None:
        """
        Args:
            id: Stable check identifier, e.g. "env.windows"
            status: "pass", "fail" or "warn"
            summary: One-line outcome
            category: Failure category for fail/warn results
            detail: Longer explanation
            evidence: Structured facts; values are coerced to evidence values
            remediation: What the operator should do next
        """
        self.id = id
        self.status = status
        self.category = category
        self.summary = summary
        self.detail = detail
        self.evidence: Evidence = {
            str(k): evidence_value(v) for k, v in (evidence or {}).items()
        }
        self.remediation = remediation

    def __repr__(self) -> str:
        return f"<DoctorCheckResult {self.id}={self.status} ({self.summary})>"


class DoctorResult:
    """Aggregate of a doctor run."""

    def __init__(
        self,
        checks: List[DoctorCheckResult],
        status: Optional[str] = None,
        passed: Optional[int] = None,
        failed: Optional[int] = None,
        warnings: Optional[int] = None,
    ) -> None:
        """
        Counts and status are derived from checks unless given explicitly.
        """
        self.checks = list(checks)
        self.passed = (
            passed if passed is not None else _count_status(self.checks, STATUS_PASS)
        )
        self.failed = (
            failed if failed is not None else _count_status(self.checks, STATUS_FAIL)
        )
        self.warnings = (
            warnings
            if warnings is not None
            else _count_status(self.checks, STATUS_WARN)
        )
        if status is None:
            status = STATUS_FAIL if self.failed > 0 else STATUS_PASS
        self.status = status

    def check(self, check_id: str) -> Optional[DoctorCheckResult]:
        for check in self.checks:
            if check.id == check_id:
                return check
        return None


def _count_status(checks: List[DoctorCheckResult], status: str) -> int:
    return sum(1 for c in checks if (c.status or "").lower() == status)
