"""
Request file loading and result serialization.

Request files are flat JSON objects with camelCase keys. Sub-objects of the
request (subject, CA target, crypto profile, export plan) are only built
when at least one of their keys is present, so an absent section stays
None and is reported by the doctor as missing.

Results are rendered as camelCase dictionaries with absent fields omitted
rather than emitted as null.
"""

import datetime
import json
from enum import Enum
from typing import Any, Dict, Optional

from certpilot.lib.contracts import (
    ArtifactReport,
    CaConfig,
    CaTarget,
    CertificateDetails,
    CertificateRequest,
    CertificateResult,
    CryptoProfile,
    DoctorCheckResult,
    DoctorResult,
    ExportedArtifact,
    ExportPlan,
    ExportTarget,
    InvariantResult,
    NativeArtifacts,
    RequestMode,
    SubjectIdentity,
)
from certpilot.lib.logger import logging

JsonLike = Dict[str, Any]


class RequestFileError(Exception):
    """Raised when a request file cannot be read or parsed."""


# =========================================================================
# Request loading
# =========================================================================


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _bool(value: Any, default: bool = False) -> bool:
    """Accept JSON booleans and "true"/"false" strings; ignore anything else."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return default


def _int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _has_any(data: JsonLike, *keys: str) -> bool:
    return any(key in data for key in keys)


def _export_target(data: Any) -> Optional[ExportTarget]:
    if not isinstance(data, dict):
        return None
    return ExportTarget(enabled=_bool(data.get("enabled")), path=_text(data.get("path")))


def request_from_dict(data: JsonLike) -> CertificateRequest:
    """
    Build a CertificateRequest from a decoded request file.

    Args:
        data: Decoded JSON object

    Returns:
        The request

    Raises:
        RequestFileError: If the document is not a JSON object
    """
    if not isinstance(data, dict):
        raise RequestFileError("Request file must contain a JSON object")

    request = CertificateRequest(
        request_id=_text(data.get("requestId")),
        output_format=_text(data.get("outputFormat")),
        csr_path=_text(data.get("csrPath")),
        auth_mode=_text(data.get("authMode")),
        overwrite=_bool(data.get("overwrite")),
    )

    if "mode" in data:
        mode = RequestMode.parse(_text(data.get("mode")))
        if mode is not None:
            request.mode = mode
        else:
            logging.warning(f"Ignoring unknown request mode {data.get('mode')!r}")

    if _has_any(data, "commonName", "subjectDn", "subjectAlternativeNames", "wildcard"):
        sans = data.get("subjectAlternativeNames")
        request.subject = SubjectIdentity(
            common_name=_text(data.get("commonName")),
            subject_dn=_text(data.get("subjectDn")),
            subject_alternative_names=(
                [_text(s) for s in sans if s is not None]  # type: ignore
                if isinstance(sans, list)
                else []
            ),
            wildcard=_bool(data.get("wildcard")),
        )

    if _has_any(data, "caConfig", "template"):
        request.ca = CaTarget(template=_text(data.get("template")))
        ca_config = data.get("caConfig")
        if isinstance(ca_config, dict):
            request.ca.ca_config = CaConfig(
                ca_server=_text(ca_config.get("caServer")),
                ca_name=_text(ca_config.get("caName")),
                config_string=_text(ca_config.get("configString")),
                port=_int(ca_config.get("port")),
            )

    if _has_any(data, "keyAlgorithm", "keySize", "hashAlgorithm", "exportablePrivateKey"):
        request.crypto = CryptoProfile(
            key_algorithm=_text(data.get("keyAlgorithm")),
            key_size=_int(data.get("keySize")) or 0,
            hash_algorithm=_text(data.get("hashAlgorithm")),
            exportable_private_key=_bool(data.get("exportablePrivateKey")),
        )

    exports = data.get("exports")
    if isinstance(exports, dict):
        request.exports = ExportPlan(
            leaf_pem=_export_target(exports.get("leafPem")),
            key_pem=_export_target(exports.get("keyPem")),
            ca_bundle_pem=_export_target(exports.get("caBundlePem")),
        )

    return request


def load_request(path: str) -> CertificateRequest:
    """
    Read and parse a request file.

    Raises:
        FileNotFoundError: If the file does not exist
        RequestFileError: If the file cannot be read or is not a valid request
    """
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise
    except (OSError, ValueError) as e:
        raise RequestFileError(str(e))

    return request_from_dict(data)


# =========================================================================
# Result serialization
# =========================================================================


def _timestamp(value: Optional[datetime.datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


def _compact(data: JsonLike) -> JsonLike:
    """Drop None values, render enums by name and datetimes as ISO strings."""
    result: JsonLike = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = str(value)
        elif isinstance(value, datetime.datetime):
            value = _timestamp(value)
        result[key] = value
    return result


def check_to_dict(check: DoctorCheckResult) -> JsonLike:
    return _compact(
        {
            "id": check.id,
            "status": check.status,
            "category": check.category,
            "summary": check.summary or None,
            "detail": check.detail or None,
            "evidence": check.evidence or None,
            "remediation": check.remediation or None,
        }
    )


def doctor_result_to_dict(result: DoctorResult) -> JsonLike:
    return {
        "status": result.status,
        "passed": result.passed,
        "failed": result.failed,
        "warnings": result.warnings,
        "checks": [check_to_dict(c) for c in result.checks],
    }


def _certificate_to_dict(details: CertificateDetails) -> JsonLike:
    return _compact(
        {
            "thumbprint": details.thumbprint,
            "fingerprints": (
                _compact({"sha256": details.fingerprints.sha256})
                if details.fingerprints is not None
                else None
            ),
            "subject": details.subject,
            "subjectAlternativeNames": list(details.subject_alternative_names),
            "issuer": details.issuer,
            "serialNumber": details.serial_number,
            "notBefore": details.not_before,
            "notAfter": details.not_after,
            "keyAlgorithm": details.key_algorithm,
            "keySize": details.key_size,
        }
    )


def _artifact_to_dict(artifact: ExportedArtifact) -> JsonLike:
    return _compact(
        {
            "name": artifact.name,
            "path": artifact.path,
            "written": artifact.written,
            "sizeBytes": artifact.size_bytes,
            "sha256": artifact.sha256,
            "certificateCount": artifact.certificate_count,
        }
    )


def _artifacts_to_dict(report: ArtifactReport) -> JsonLike:
    native: NativeArtifacts = report.native
    return {
        "native": _compact(
            {
                "cerPath": native.cer_path,
                "pfxPath": native.pfx_path,
                "chainPath": native.chain_path,
            }
        ),
        "exported": [_artifact_to_dict(a) for a in report.exported],
    }


def _invariant_to_dict(invariant: InvariantResult) -> JsonLike:
    return {"name": invariant.name, "ok": invariant.ok, "detail": invariant.detail}


def certificate_result_to_dict(result: CertificateResult) -> JsonLike:
    return _compact(
        {
            "status": result.status,
            "failureCategory": result.failure_category,
            "message": result.message,
            "requestId": result.request_id,
            "timestampUtc": result.timestamp_utc,
            "certificate": (
                _certificate_to_dict(result.certificate)
                if result.certificate is not None
                else None
            ),
            "artifacts": _artifacts_to_dict(result.artifacts),
            "invariants": [_invariant_to_dict(i) for i in result.invariants],
        }
    )


def result_to_dict(result: Any) -> JsonLike:
    """
    Convert a DoctorResult or CertificateResult into a JSON-ready dict.

    Raises:
        TypeError: For any other type
    """
    if isinstance(result, DoctorResult):
        return doctor_result_to_dict(result)
    if isinstance(result, CertificateResult):
        return certificate_result_to_dict(result)
    raise TypeError(f"Unsupported result type: {type(result).__name__}")


def to_json(result: Any) -> str:
    """Serialize a result with stable, indented output."""
    return json.dumps(result_to_dict(result), indent=2)
