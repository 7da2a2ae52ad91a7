"""
Independent re-parsing of issued and exported certificates.

The parser reads artifacts back from disk instead of trusting what the
issuance and export stages reported, and derives a fixed set of
invariants describing whether the pipeline's output is actually usable.
"""

import datetime
import os
from typing import List, Optional

from cryptography.hazmat.primitives import hashes

from certpilot.lib.certificate import (
    count_pem_certificates,
    first_pem_certificate,
    get_public_key_info,
    get_subject_alternative_names,
    load_certificate,
    pem_to_cert,
)
from certpilot.lib.constants import CA_BUNDLE_PEM, KEY_PEM, LEAF_PEM
from certpilot.lib.contracts import (
    CaIssueResult,
    CertificateDetails,
    CertificateRequest,
    ExportedArtifact,
    Fingerprints,
    InvariantResult,
)
from certpilot.lib.files import read_text
from certpilot.lib.logger import logging

EXPORT_PATHS_WRITABLE = "ExportPathsWritable"
NO_OVERWRITE_WITHOUT_FLAG = "NoOverwriteWithoutFlag"
LEAF_PEM_PARSES = "LeafPemParses"
CA_BUNDLE_CONTAINS_CERTIFICATES = "CaBundleContainsCertificates"
PRIVATE_KEY_PEM_PARSES = "PrivateKeyPemParses"

INVARIANT_NAMES = (
    EXPORT_PATHS_WRITABLE,
    NO_OVERWRITE_WITHOUT_FLAG,
    LEAF_PEM_PARSES,
    CA_BUNDLE_CONTAINS_CERTIFICATES,
    PRIVATE_KEY_PEM_PARSES,
)


def _utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _find(exported: List[ExportedArtifact], name: str) -> Optional[ExportedArtifact]:
    for artifact in exported:
        if artifact.name == name:
            return artifact
    return None


class CertificateParser:
    """Re-derives certificate metadata and the output invariants."""

    def parse(self, issued: Optional[CaIssueResult]) -> Optional[CertificateDetails]:
        """
        Load the issued certificate and describe it.

        Args:
            issued: Issuance result holding the native certificate path

        Returns:
            Certificate details, or None when the certificate is missing or
            cannot be parsed
        """
        if issued is None or not issued.cer_path or not os.path.isfile(issued.cer_path):
            return None

        try:
            with open(issued.cer_path, "rb") as f:
                certificate = load_certificate(f.read())

            key_algorithm, key_size = get_public_key_info(certificate)

            return CertificateDetails(
                thumbprint=certificate.fingerprint(hashes.SHA1()).hex().upper(),
                fingerprints=Fingerprints(
                    sha256=certificate.fingerprint(hashes.SHA256()).hex().upper()
                ),
                subject=certificate.subject.rfc4514_string(),
                subject_alternative_names=get_subject_alternative_names(certificate),
                issuer=certificate.issuer.rfc4514_string(),
                serial_number=f"{certificate.serial_number:X}",
                not_before=_utc(certificate.not_valid_before_utc),
                not_after=_utc(certificate.not_valid_after_utc),
                key_algorithm=key_algorithm,
                key_size=key_size,
            )
        except (OSError, ValueError, TypeError) as e:
            logging.warning(f"Failed to parse issued certificate: {e}")
            return None

    def validate_invariants(
        self,
        request: CertificateRequest,
        issued: Optional[CaIssueResult],
        exported: Optional[List[ExportedArtifact]],
    ) -> List[InvariantResult]:
        """
        Check the pipeline's own output.

        Returns:
            Exactly five invariants, always in the same order
        """
        exported = list(exported or [])
        return [
            self._export_paths_writable(request, exported),
            self._no_overwrite_without_flag(),
            self._leaf_pem_parses(request, exported),
            self._ca_bundle_contains_certificates(request, exported),
            self._private_key_pem_parses(request, exported),
        ]

    @staticmethod
    def _export_paths_writable(
        request: CertificateRequest, exported: List[ExportedArtifact]
    ) -> InvariantResult:
        requested = request.exports is not None and any(
            True for _ in request.exports.enabled_targets()
        )
        if not requested:
            return InvariantResult(EXPORT_PATHS_WRITABLE, True, "No exports requested.")

        failed = [a.name or "unknown" for a in exported if not a.written]
        if failed:
            return InvariantResult(
                EXPORT_PATHS_WRITABLE,
                False,
                f"One or more exports failed to write: {', '.join(failed)}",
            )

        return InvariantResult(
            EXPORT_PATHS_WRITABLE,
            True,
            "Verified by export stage (atomic write succeeded).",
        )

    @staticmethod
    def _no_overwrite_without_flag() -> InvariantResult:
        # The export stage is the only place overwrites are decided
        return InvariantResult(
            NO_OVERWRITE_WITHOUT_FLAG,
            True,
            "Overwrite prevented by export stage when overwrite=false.",
        )

    @staticmethod
    def _leaf_pem_parses(
        request: CertificateRequest, exported: List[ExportedArtifact]
    ) -> InvariantResult:
        requested = request.export_enabled(LEAF_PEM)
        artifact = _find(exported, LEAF_PEM)

        if artifact is None or not artifact.written:
            if not requested:
                return InvariantResult(
                    LEAF_PEM_PARSES, True, "Leaf PEM export not requested or not written."
                )
            if artifact is None:
                detail = "Leaf PEM export was requested but artifact not found in export list."
            else:
                detail = "Leaf PEM export was requested but file was not written."
            return InvariantResult(LEAF_PEM_PARSES, False, detail)

        if not artifact.path or not os.path.isfile(artifact.path):
            return InvariantResult(
                LEAF_PEM_PARSES, False, f"Leaf PEM file not found at path: {artifact.path}"
            )

        try:
            block = first_pem_certificate(read_text(artifact.path))
            if block is None:
                return InvariantResult(
                    LEAF_PEM_PARSES,
                    False,
                    "Failed to extract certificate from PEM file "
                    "(no valid CERTIFICATE block found).",
                )
            pem_to_cert(block.encode())
        except (OSError, ValueError) as e:
            return InvariantResult(
                LEAF_PEM_PARSES, False, f"Failed to parse leaf PEM file: {e}"
            )

        return InvariantResult(LEAF_PEM_PARSES, True, "Leaf PEM file parsed successfully.")

    @staticmethod
    def _ca_bundle_contains_certificates(
        request: CertificateRequest, exported: List[ExportedArtifact]
    ) -> InvariantResult:
        requested = request.export_enabled(CA_BUNDLE_PEM)
        artifact = _find(exported, CA_BUNDLE_PEM)

        if artifact is None or not artifact.written:
            if not requested:
                return InvariantResult(
                    CA_BUNDLE_CONTAINS_CERTIFICATES,
                    True,
                    "CA bundle export not requested or not written.",
                )
            if artifact is None:
                detail = "CA bundle export was requested but artifact not found in export list."
            else:
                detail = "CA bundle export was requested but file was not written."
            return InvariantResult(CA_BUNDLE_CONTAINS_CERTIFICATES, False, detail)

        if not artifact.path or not os.path.isfile(artifact.path):
            return InvariantResult(
                CA_BUNDLE_CONTAINS_CERTIFICATES,
                False,
                f"CA bundle file not found at path: {artifact.path}",
            )

        try:
            count = count_pem_certificates(read_text(artifact.path))
        except OSError as e:
            return InvariantResult(
                CA_BUNDLE_CONTAINS_CERTIFICATES,
                False,
                f"Failed to read CA bundle file: {e}",
            )

        if count < 1:
            return InvariantResult(
                CA_BUNDLE_CONTAINS_CERTIFICATES,
                False,
                "CA bundle file does not contain any certificates.",
            )

        return InvariantResult(
            CA_BUNDLE_CONTAINS_CERTIFICATES,
            True,
            f"CA bundle contains {count} certificate(s).",
        )

    @staticmethod
    def _private_key_pem_parses(
        request: CertificateRequest, exported: List[ExportedArtifact]
    ) -> InvariantResult:
        requested = request.export_enabled(KEY_PEM)
        artifact = _find(exported, KEY_PEM)

        if requested and (artifact is None or not artifact.written):
            return InvariantResult(
                PRIVATE_KEY_PEM_PARSES,
                False,
                "Key PEM export not implemented yet or export failed "
                "(key PEM parsing not implemented in v1).",
            )

        if artifact is None or not artifact.written:
            return InvariantResult(
                PRIVATE_KEY_PEM_PARSES, True, "Key PEM export not requested or not written."
            )

        return InvariantResult(
            PRIVATE_KEY_PEM_PARSES, False, "Key PEM parsing not implemented in v1."
        )

