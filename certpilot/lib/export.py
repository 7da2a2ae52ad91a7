"""
PEM export of issued artifacts.

Every enabled export target is checked before any conversion happens: it
needs a path, and an existing file is only replaced when the request allows
overwriting. Each target is then written independently through a temporary
sibling file that is verified before it replaces the destination, so a
partial or unverified file never appears at the final path.
"""

import os
from typing import List, Optional, Tuple

from cryptography import x509

from certpilot.lib.certificate import count_pem_certificates, load_certificate
from certpilot.lib.constants import (
    CA_BUNDLE_PEM,
    KEY_PEM,
    LEAF_PEM,
    PEM_CERTIFICATE_MARKER,
)
from certpilot.lib.contracts import (
    CaIssueResult,
    CertificateRequest,
    ExportedArtifact,
    ExportResult,
    ExportTarget,
    FailureCategory,
    has_text,
)
from certpilot.lib.encoders import CertUtilEncoder, EncodeError, Encoder, NativeEncoder
from certpilot.lib.files import (
    read_text,
    remove_if_exists,
    replace_file,
    resolve_path,
    sha256_file,
    temp_sibling_path,
)
from certpilot.lib.logger import logging

# Processing order and the labels used in messages
EXPORT_LABELS = [
    (LEAF_PEM, "LeafPem"),
    (CA_BUNDLE_PEM, "CaBundlePem"),
    (KEY_PEM, "KeyPem"),
]

MISSING_CER = "No issued CER path to export"
MISSING_CHAIN = "No chain path available. Chain must be provided by CA issuance."
MISSING_PFX = "KeyPem export failed: No PFX path available"
KEY_NOT_EXPORTABLE = "KeyPem export failed: ExportablePrivateKey must be true"
KEY_NOT_IMPLEMENTED = "Key PEM export not implemented yet"


class ExportService:
    """
    Converts native artifacts into the requested PEM files.

    The leaf encoder is configurable. The CA bundle is expanded in-process
    because ``certutil -encode`` of a PKCS#7 chain does not yield a
    certificate bundle, and the issued leaf that certreq puts into the chain
    file is left out of it.
    """

    def __init__(
        self,
        encoder: Optional[Encoder] = None,
        chain_encoder: Optional[Encoder] = None,
    ) -> None:
        self.encoder = encoder if encoder is not None else CertUtilEncoder()
        self.chain_encoder = chain_encoder

    def export(
        self, request: CertificateRequest, issued: Optional[CaIssueResult]
    ) -> ExportResult:
        """
        Export every enabled target of the request.

        Args:
            request: The certificate request and its export plan
            issued: Result of a successful CA issuance

        Returns:
            The export result, with one artifact per enabled target
        """
        if issued is None or not issued.success:
            return ExportResult(
                False,
                message=(issued.message if issued else None) or "CA issuance failed",
                failure_category=(issued.failure_category if issued else None)
                or FailureCategory.CARequestError,
            )

        enabled = self._enabled_targets(request)

        precondition = self._check_preconditions(request, enabled)
        if precondition is not None:
            return precondition

        if any(name == LEAF_PEM for name, _, _ in enabled):
            try:
                self.encoder.ensure_available()
            except EncodeError as e:
                logging.error(f"Leaf encoder unavailable: {e}")
                return ExportResult(
                    False,
                    message=str(e),
                    failure_category=FailureCategory.EnvironmentError,
                )

        exported: List[ExportedArtifact] = []
        errors: List[str] = []
        missing_input = False

        for name, label, target in enabled:
            final_path = resolve_path(target.path)

            if name == LEAF_PEM:
                artifact, error, missing = self._export_certificate(
                    name, label, issued.cer_path, MISSING_CER, final_path, self.encoder
                )
            elif name == CA_BUNDLE_PEM:
                artifact, error, missing = self._export_certificate(
                    name,
                    label,
                    issued.chain_path,
                    MISSING_CHAIN,
                    final_path,
                    self._bundle_encoder(issued),
                    count_certificates=True,
                )
            else:
                artifact, error, missing = self._export_key(request, issued, final_path)

            exported.append(artifact)
            if error is not None:
                logging.warning(error)
                errors.append(error)
                missing_input = missing_input or missing
            else:
                logging.info(f"Wrote {name} to {artifact.path!r}")

        if errors:
            return ExportResult(
                False,
                message="; ".join(errors),
                exported=exported,
                failure_category=(
                    FailureCategory.FormatError
                    if missing_input
                    else FailureCategory.ExportError
                ),
            )

        return ExportResult(
            True, message="All exports completed successfully", exported=exported
        )

    def _bundle_encoder(self, issued: CaIssueResult) -> Encoder:
        if self.chain_encoder is not None:
            return self.chain_encoder
        return NativeEncoder(exclude=_issued_leaf(issued.cer_path))

    @staticmethod
    def _enabled_targets(
        request: CertificateRequest,
    ) -> List[Tuple[str, str, ExportTarget]]:
        if request.exports is None:
            return []

        targets = dict(request.exports.enabled_targets())
        return [
            (name, label, targets[name])
            for name, label in EXPORT_LABELS
            if name in targets
        ]

    @staticmethod
    def _check_preconditions(
        request: CertificateRequest, enabled: List[Tuple[str, str, ExportTarget]]
    ) -> Optional[ExportResult]:
        for _, label, target in enabled:
            if not has_text(target.path):
                message = f"{label} export is enabled but Path is empty"
            else:
                path = resolve_path(target.path)
                if path is None:
                    message = f"{label} export path cannot be resolved: {target.path}"
                elif os.path.exists(path) and not request.overwrite:
                    message = (
                        f"{label} export target already exists and overwrite "
                        f"is false: {path}"
                    )
                else:
                    continue

            logging.error(message)
            return ExportResult(
                False, message=message, failure_category=FailureCategory.ExportError
            )

        return None

    @staticmethod
    def _export_certificate(
        name: str,
        label: str,
        source_path: Optional[str],
        missing_message: str,
        final_path: Optional[str],
        encoder: Encoder,
        count_certificates: bool = False,
    ) -> Tuple[ExportedArtifact, Optional[str], bool]:
        """
        Write one certificate artifact through a verified temporary file.

        Returns:
            Tuple of (artifact, error message, whether the input was missing)
        """
        artifact = ExportedArtifact(name, path=final_path)

        if not source_path or not os.path.isfile(source_path):
            return artifact, missing_message, True

        if final_path is None:
            return artifact, f"{label} export failed: invalid path", False

        temp_path = temp_sibling_path(final_path)
        try:
            encoder.encode(source_path, temp_path)

            if not os.path.isfile(temp_path):
                raise EncodeError("encoder produced no output")
            if PEM_CERTIFICATE_MARKER not in read_text(temp_path):
                raise EncodeError("encoded output contains no certificate")

            replace_file(temp_path, final_path)
        except (EncodeError, OSError) as e:
            return artifact, f"{label} export failed: {e}", False
        finally:
            remove_if_exists(temp_path)

        artifact.written = True
        artifact.size_bytes = os.path.getsize(final_path)
        artifact.sha256 = sha256_file(final_path)
        if count_certificates:
            artifact.certificate_count = (
                count_pem_certificates(read_text(final_path)) or None
            )

        return artifact, None, False

    @staticmethod
    def _export_key(
        request: CertificateRequest, issued: CaIssueResult, final_path: Optional[str]
    ) -> Tuple[ExportedArtifact, Optional[str], bool]:
        # Extracting the key from the PFX needs explicit password handling,
        # so the key is reported as not written in every case
        artifact = ExportedArtifact(KEY_PEM, path=final_path)

        if not request.key_exportable():
            return artifact, KEY_NOT_EXPORTABLE, False

        if not issued.pfx_path or not os.path.isfile(issued.pfx_path):
            return artifact, MISSING_PFX, True

        return artifact, KEY_NOT_IMPLEMENTED, False


def _issued_leaf(cer_path: Optional[str]) -> List[x509.Certificate]:
    if not cer_path or not os.path.isfile(cer_path):
        return []

    try:
        with open(cer_path, "rb") as f:
            return [load_certificate(f.read())]
    except (OSError, ValueError) as e:
        logging.debug(f"Issued certificate {cer_path!r} could not be loaded: {e}")
        return []
