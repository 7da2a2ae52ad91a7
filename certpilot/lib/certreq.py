"""
CA issuance through certreq.exe.

The certificate authority is a black box reached through the certreq
command line:

- ``certreq -new request.inf request.req`` builds a request and key
- ``certreq -config <ca> -attrib CertificateTemplate:<t> -submit`` submits it
- ``certreq -accept certificate.cer`` installs the issued certificate

certreq reports failures as free text. Classification of that text into a
failure category is keyword based and English-only.
"""

import os
import subprocess
import tempfile
import uuid
from typing import List, Optional, Protocol

from certpilot.lib.constants import (
    CER_FILE,
    CERTREQ,
    CHAIN_FILE,
    DEFAULT_KEY_SIZE,
    ENROLLMENT_TIMEOUT,
    INF_FILE,
    PFX_FILE,
    REQ_FILE,
    SAN_DNS_PREFIX,
    SAN_EXTENSION_OID,
    SAN_IP_PREFIX,
    TOOL_BANNER_PREFIXES,
    WORK_DIR_NAME,
)
from certpilot.lib.contracts import (
    CaIssueResult,
    CertificateRequest,
    FailureCategory,
    RequestMode,
    has_text,
)
from certpilot.lib.errors import find_error_codes, handle_error, translate_error_code
from certpilot.lib.logger import logging
from certpilot.lib.tools import locate_tool, run_tool

# Checked in this order; the first group that matches wins
CONNECTIVITY_KEYWORDS = ("network", "unreachable", "connection", "dns", "timeout")
AUTHORIZATION_KEYWORDS = ("access denied", "permission", "unauthorized", "enrollment")

# INF keys used in the _continue_ lines of the SAN extension
INF_SAN_KEYS = {SAN_DNS_PREFIX: "dns", SAN_IP_PREFIX: "ipaddress"}


class CertificateAuthorityClient(Protocol):
    """Anything that can turn a request into issued native artifacts."""

    def issue(self, request: CertificateRequest) -> CaIssueResult: ...


# =========================================================================
# Output interpretation
# =========================================================================


def classify_failure(output: Optional[str]) -> FailureCategory:
    """
    Map enrollment tool output to a failure category.

    Connectivity keywords are checked before authorization keywords, and
    anything unrecognized (including empty output) is a CA rejection.

    Args:
        output: Combined stdout and stderr of a failed invocation

    Returns:
        The failure category
    """
    if not output:
        return FailureCategory.CARequestError

    lowered = output.lower()

    if any(keyword in lowered for keyword in CONNECTIVITY_KEYWORDS):
        return FailureCategory.ConnectivityError

    if any(keyword in lowered for keyword in AUTHORIZATION_KEYWORDS):
        return FailureCategory.AuthorizationError

    return FailureCategory.CARequestError


def first_message_line(output: Optional[str]) -> Optional[str]:
    """
    Return the first meaningful line of tool output.

    Blank lines and ``CertReq:`` / ``CertUtil:`` banner lines are skipped.
    """
    for line in (output or "").splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.lower().startswith(TOOL_BANNER_PREFIXES):
            continue
        return stripped

    return None


def build_san_entries(sans: Optional[List[str]]) -> List[str]:
    """
    Normalize SAN strings to typed entries.

    ``dns:`` and ``ip:`` prefixes are matched case-insensitively and
    lowercased; an entry without a recognized prefix is treated as a DNS name.

    Example:
        >>> build_san_entries(["DNS:a.example.com", "ip:10.0.0.1", "b.example.com"])
        ['dns:a.example.com', 'ip:10.0.0.1', 'dns:b.example.com']
    """
    entries: List[str] = []

    for san in sans or []:
        value = san.strip()
        if not value:
            continue

        lowered = value.lower()
        if lowered.startswith(SAN_DNS_PREFIX):
            entries.append(SAN_DNS_PREFIX + value[len(SAN_DNS_PREFIX) :])
        elif lowered.startswith(SAN_IP_PREFIX):
            entries.append(SAN_IP_PREFIX + value[len(SAN_IP_PREFIX) :])
        else:
            entries.append(SAN_DNS_PREFIX + value)

    return entries


def build_inf(request: CertificateRequest) -> str:
    """
    Render the certreq INF descriptor for a new keypair request.

    Args:
        request: The certificate request

    Returns:
        INF file contents
    """
    lines = ["[Version]", 'Signature="$Windows NT$"', "", "[NewRequest]"]

    subject = request.subject
    if subject is not None and has_text(subject.subject_dn):
        lines.append(f'Subject="{subject.subject_dn}"')
    elif subject is not None and has_text(subject.common_name):
        lines.append(f'Subject="CN={subject.common_name}"')

    crypto = request.crypto
    key_size = crypto.key_size if crypto is not None and crypto.key_size > 0 else 0
    lines.append("KeySpec=AT_KEYEXCHANGE")
    lines.append(f"KeyLength={key_size or DEFAULT_KEY_SIZE}")
    lines.append(f"Exportable={'TRUE' if request.key_exportable() else 'FALSE'}")
    if crypto is not None and has_text(crypto.hash_algorithm):
        lines.append(f"HashAlgorithm={crypto.hash_algorithm}")

    entries = build_san_entries(subject.subject_alternative_names if subject else [])
    if entries:
        lines.append("")
        lines.append("[Extensions]")
        lines.append(f'{SAN_EXTENSION_OID} = "{{text}}"')
        for entry in entries:
            prefix, value = entry.split(":", 1)
            lines.append(f'_continue_ = "{INF_SAN_KEYS[prefix + ":"]}={value}&"')

    return "\r\n".join(lines) + "\r\n"


# =========================================================================
# Client
# =========================================================================


class _StepResult:
    """Outcome of one certreq invocation."""

    def __init__(
        self,
        success: bool,
        message: Optional[str] = None,
        failure_category: Optional[FailureCategory] = None,
        output: str = "",
    ) -> None:
        self.success = success
        self.message = message
        self.failure_category = failure_category
        self.output = output


class CertReqClient:
    """
    Issues certificates by driving certreq.exe.

    Each run gets its own working directory under the system temp directory
    named after the request id. Every invocation is bounded by ``timeout``.
    """

    def __init__(
        self,
        work_dir: Optional[str] = None,
        timeout: float = ENROLLMENT_TIMEOUT,
        tools: Optional[str] = None,
    ) -> None:
        """
        Args:
            work_dir: Parent directory for per-run working directories
            timeout: Seconds to wait for each certreq invocation
            tools: Directory holding certreq.exe instead of System32
        """
        self.work_dir = work_dir or os.path.join(tempfile.gettempdir(), WORK_DIR_NAME)
        self.timeout = timeout
        self.tools = tools

    def issue(self, request: CertificateRequest) -> CaIssueResult:
        """
        Issue a certificate for a request.

        Returns:
            The issuance result; never raises for tool or CA failures
        """
        if request is None:
            return CaIssueResult.failed(
                FailureCategory.ConfigurationError, "Request cannot be None"
            )

        certreq_path = locate_tool(CERTREQ, self.tools)
        if certreq_path is None:
            return CaIssueResult.failed(
                FailureCategory.EnvironmentError,
                "certreq.exe not found. Expected location: "
                "SystemRoot\\System32\\certreq.exe",
            )

        if has_text(request.request_id) and not is_directory_name(request.request_id):
            return CaIssueResult.failed(
                FailureCategory.ConfigurationError,
                f"Request id cannot be used as a directory name: {request.request_id}",
            )

        try:
            run_dir = self._prepare_run_dir(request)

            if request.mode == RequestMode.NewKeypair:
                return self._issue_new_keypair(certreq_path, run_dir, request)
            if request.mode == RequestMode.SignExistingCsr:
                return self._issue_from_csr(certreq_path, run_dir, request)

            return CaIssueResult.failed(
                FailureCategory.ConfigurationError,
                f"Unsupported request mode: {request.mode}",
            )
        except Exception as e:
            logging.error(f"Unexpected error during certificate issuance: {e}")
            handle_error()
            return CaIssueResult.failed(
                FailureCategory.EnvironmentError,
                f"Unexpected error during certificate issuance: {e}",
            )

    def _prepare_run_dir(self, request: CertificateRequest) -> str:
        request_id = request.request_id if has_text(request.request_id) else None
        run_dir = os.path.join(self.work_dir, request_id or uuid.uuid4().hex)
        os.makedirs(run_dir, exist_ok=True)

        # certreq prompts before overwriting, so clear what a previous run left
        for name in (INF_FILE, REQ_FILE, CER_FILE, PFX_FILE, CHAIN_FILE):
            path = os.path.join(run_dir, name)
            if os.path.exists(path):
                os.remove(path)

        logging.debug(f"Using working directory {run_dir!r}")
        return run_dir

    def _submit_args(self, request: CertificateRequest) -> Optional[List[str]]:
        config = request.ca_config_string()
        if not config:
            return None

        args = ["-config", config]
        if request.ca is not None and has_text(request.ca.template):
            args += ["-attrib", f"CertificateTemplate:{request.ca.template}"]
        return args

    def _issue_new_keypair(
        self, certreq_path: str, run_dir: str, request: CertificateRequest
    ) -> CaIssueResult:
        submit_args = self._submit_args(request)
        if submit_args is None:
            return CaIssueResult.failed(
                FailureCategory.ConfigurationError,
                "CA configuration is required (CaServer or ConfigString)",
            )

        inf_path = os.path.join(run_dir, INF_FILE)
        req_path = os.path.join(run_dir, REQ_FILE)
        cer_path = os.path.join(run_dir, CER_FILE)
        chain_path = os.path.join(run_dir, CHAIN_FILE)

        with open(inf_path, "w", encoding="utf-8", newline="") as f:
            f.write(build_inf(request))

        logging.info("Generating certificate request")
        step = self._run(certreq_path, run_dir, ["-new", inf_path, req_path])
        if not step.success:
            return self._step_failed("Failed to generate certificate request", step)

        logging.info(f"Submitting certificate request to {submit_args[1]!r}")
        step = self._run(
            certreq_path,
            run_dir,
            submit_args + ["-submit", req_path, cer_path, chain_path],
        )
        if not step.success:
            return self._step_failed("Failed to submit certificate request", step)

        logging.info("Accepting issued certificate")
        step = self._run(certreq_path, run_dir, ["-accept", cer_path])
        if not step.success:
            return self._step_failed("Failed to accept certificate", step)

        pfx_path: Optional[str] = None
        if request.key_exportable():
            export = self._export_pfx(os.path.join(run_dir, PFX_FILE))
            if export.success:
                pfx_path = os.path.join(run_dir, PFX_FILE)
            else:
                logging.warning(f"Skipping PFX artifact: {export.message}")

        return CaIssueResult(
            True,
            message="Certificate issued successfully",
            cer_path=_existing(cer_path),
            pfx_path=_existing(pfx_path),
            chain_path=_existing(chain_path),
        )

    def _issue_from_csr(
        self, certreq_path: str, run_dir: str, request: CertificateRequest
    ) -> CaIssueResult:
        csr_path = request.csr_path
        if not has_text(csr_path) or not os.path.isfile(csr_path):  # type: ignore
            return CaIssueResult.failed(
                FailureCategory.ConfigurationError, f"CSR file not found: {csr_path}"
            )

        submit_args = self._submit_args(request)
        if submit_args is None:
            return CaIssueResult.failed(
                FailureCategory.ConfigurationError,
                "CA configuration is required (CaServer or ConfigString)",
            )

        cer_path = os.path.join(run_dir, CER_FILE)
        chain_path = os.path.join(run_dir, CHAIN_FILE)

        logging.info(f"Submitting CSR {csr_path!r} to {submit_args[1]!r}")
        step = self._run(
            certreq_path,
            run_dir,
            submit_args + ["-submit", csr_path, cer_path, chain_path],  # type: ignore
        )
        if not step.success:
            return self._step_failed("Failed to submit CSR", step)

        return CaIssueResult(
            True,
            message="Certificate issued successfully from CSR",
            cer_path=_existing(cer_path),
            chain_path=_existing(chain_path),
        )

    def _export_pfx(self, pfx_path: str) -> _StepResult:
        # Exporting the key needs explicit password handling; until then the
        # PFX artifact is never produced and issuance continues with the CER
        return _StepResult(
            False,
            message="PFX export not yet implemented",
            failure_category=FailureCategory.ExportError,
        )

    def _run(self, certreq_path: str, run_dir: str, args: List[str]) -> _StepResult:
        try:
            output = run_tool([certreq_path] + args, self.timeout, cwd=run_dir)
        except subprocess.TimeoutExpired:
            return _StepResult(
                False,
                message=f"certreq.exe timed out after {self.timeout} seconds",
                failure_category=FailureCategory.ConnectivityError,
            )
        except OSError as e:
            return _StepResult(
                False,
                message=f"Failed to execute certreq.exe: {e}",
                failure_category=FailureCategory.EnvironmentError,
            )

        if output.ok:
            return _StepResult(True, message="Command executed successfully")

        combined = output.combined
        for code in find_error_codes(combined):
            logging.warning(f"certreq.exe reported {translate_error_code(code)}")

        message = first_message_line(combined) or (
            f"certreq.exe exited with code {output.returncode}"
        )
        return _StepResult(
            False,
            message=message,
            failure_category=classify_failure(combined),
            output=combined,
        )

    @staticmethod
    def _step_failed(prefix: str, step: _StepResult) -> CaIssueResult:
        logging.error(f"{prefix}: {step.message}")
        return CaIssueResult.failed(
            step.failure_category or FailureCategory.CARequestError,
            f"{prefix}: {step.message}",
        )


def _existing(path: Optional[str]) -> Optional[str]:
    if path is None or not os.path.isfile(path):
        return None
    return os.path.abspath(path)


def is_directory_name(name: str) -> bool:
    """Return True when name is a single path component below the work dir."""
    if name in (".", "..") or os.path.isabs(name) or os.path.splitdrive(name)[0]:
        return False
    return "/" not in name and "\\" not in name
