"""
Concrete doctor checks.

Environment checks come first, then request-shape validation, then the
optional CA connectivity probes, then export-destination safety. Every
check returns a result for expected failures and never raises for them.
"""

import os
import platform
import sys
from typing import Callable, Dict, List, Optional, Tuple

from certpilot.lib.constants import (
    CA_BUNDLE_PEM,
    KEY_PEM,
    LEAF_PEM,
    REQUIRED_TOOLS,
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARN,
    TCP_PROBE_TIMEOUT,
)
from certpilot.lib.contracts import (
    DoctorCheckResult,
    ExportTarget,
    FailureCategory,
    RequestMode,
    has_text,
)
from certpilot.lib.doctor import DoctorContext
from certpilot.lib.files import probe_writable, resolve_path
from certpilot.lib.logger import logging
from certpilot.lib.target import DnsResolver, probe_tcp
from certpilot.lib.tools import tool_directory

CA_SERVER_REMEDIATION = "Set caConfig.caServer in the request."

# =========================================================================
# Environment
# =========================================================================


class WindowsOsCheck:
    id = "env.windows"

    def __init__(self, platform_name: Optional[str] = None) -> None:
        self.platform_name = platform_name

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        platform_name = self.platform_name or sys.platform
        evidence = {
            "platform": platform_name,
            "osVersion": platform.platform(),
        }

        if not platform_name.startswith("win"):
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_FAIL,
                category=FailureCategory.EnvironmentError,
                summary="Unsupported operating system",
                evidence=evidence,
                remediation="Run certpilot on Windows.",
            )

        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="Windows operating system detected",
            evidence=evidence,
        )


class RuntimeInfoCheck:
    """Evidence only, never fails."""

    id = "env.runtime"

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="Runtime information collected",
            evidence={
                "pythonVersion": platform.python_version(),
                "implementation": platform.python_implementation(),
                "is64BitProcess": sys.maxsize > 2**32,
                "machine": platform.machine(),
            },
        )


def is_process_elevated() -> bool:
    """
    Check whether the process runs with administrative privileges.

    Uses the shell32 IsUserAnAdmin call on Windows and the effective user id
    elsewhere. Anything that cannot be determined counts as not elevated.
    """
    try:
        if sys.platform.startswith("win"):
            import ctypes

            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore
        return os.geteuid() == 0
    except (AttributeError, OSError) as e:
        logging.debug(f"Could not determine elevation: {e}")
        return False


class ElevationCheck:
    id = "env.elevation"

    def __init__(self, is_elevated: Callable[[], bool] = is_process_elevated) -> None:
        self.is_elevated = is_elevated

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        elevated = self.is_elevated()
        evidence = {"isElevated": elevated}

        if not elevated:
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_FAIL,
                category=FailureCategory.EnvironmentError,
                summary="Administrative privileges required",
                evidence=evidence,
                remediation="Re-run the command in an elevated Administrator shell.",
            )

        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="Process running with administrative privileges",
            evidence=evidence,
        )


class ToolingPresenceCheck:
    id = "env.tooling"

    def __init__(self, directory: Optional[str] = None) -> None:
        self.directory = directory

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        directory = self.directory or tool_directory()

        tools = []
        missing = []
        for name in REQUIRED_TOOLS:
            expected_path = os.path.join(directory, name)
            exists = os.path.isfile(expected_path)
            tools.append({"name": name, "expectedPath": expected_path, "exists": exists})
            if not exists:
                missing.append(name)

        evidence = {"tools": tools}

        if missing:
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_FAIL,
                category=FailureCategory.EnvironmentError,
                summary="Required Windows certificate tooling not found",
                detail=", ".join(missing),
                evidence=evidence,
                remediation="Ensure certreq.exe and certutil.exe are present "
                "(Windows Certificate Services tools).",
            )

        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="Required Windows certificate tooling found",
            evidence=evidence,
        )


# =========================================================================
# Request shape
# =========================================================================


class ConfigRequiredFieldsCheck:
    id = "config.required"

    def _fail(self, missing_fields: List[str]) -> DoctorCheckResult:
        return DoctorCheckResult(
            id=self.id,
            status=STATUS_FAIL,
            category=FailureCategory.ConfigurationError,
            summary="Missing required request fields",
            evidence={"missingFields": missing_fields},
            remediation="Provide the missing fields in the request JSON.",
        )

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        request = context.request
        if request is None:
            return self._fail(["Request"])

        missing_fields: List[str] = []

        if request.ca is None:
            missing_fields.append("Ca")
        else:
            if not has_text(request.ca.template):
                missing_fields.append("Ca.Template")

            cfg = request.ca.ca_config
            if cfg is None:
                missing_fields.append("Ca.CaConfig")
            elif not has_text(cfg.config_string) and not (
                has_text(cfg.ca_server) and has_text(cfg.ca_name)
            ):
                missing_fields.append(
                    "Ca.CaConfig.ConfigString or "
                    "(Ca.CaConfig.CaServer and Ca.CaConfig.CaName)"
                )

        if request.subject is None:
            missing_fields.append("Subject")

        if request.mode == RequestMode.NewKeypair:
            subject = request.subject
            if (
                subject is not None
                and not has_text(subject.common_name)
                and not has_text(subject.subject_dn)
            ):
                missing_fields.append(
                    "Subject.CommonName (required for NewKeypair mode)"
                )
        elif request.mode == RequestMode.SignExistingCsr:
            if not has_text(request.csr_path):
                missing_fields.append("CsrPath (required for SignExistingCsr mode)")

        if not has_text(request.auth_mode):
            missing_fields.append("AuthMode")

        if missing_fields:
            return self._fail(missing_fields)

        # Ca and CaConfig are guaranteed present past this point
        cfg = request.ca.ca_config  # type: ignore
        evidence: Dict[str, object] = {"template": request.ca.template}  # type: ignore
        if has_text(cfg.config_string):
            evidence["caTargetForm"] = "configString"
            evidence["configString"] = cfg.config_string
        else:
            evidence["caTargetForm"] = "server+name"
            evidence["caServer"] = cfg.ca_server
            evidence["caName"] = cfg.ca_name

        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="Required request fields present",
            evidence=evidence,
        )


RULE_CSR_PATH = "CsrPath must be non-empty when Mode is SignExistingCsr"
RULE_EXPORTABLE_KEY = "ExportablePrivateKey must be true when KeyPem export is enabled"


class ModeLegalityCheck:
    id = "config.mode.legal"

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        request = context.request
        if request is None:
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_FAIL,
                category=FailureCategory.ConfigurationError,
                summary="No request to validate",
                remediation="Provide a request file.",
            )

        violated_rules: List[str] = []

        if request.mode == RequestMode.SignExistingCsr and not has_text(
            request.csr_path
        ):
            violated_rules.append(RULE_CSR_PATH)

        if request.export_enabled(KEY_PEM) and not request.key_exportable():
            violated_rules.append(RULE_EXPORTABLE_KEY)

        if violated_rules:
            if violated_rules == [RULE_EXPORTABLE_KEY]:
                remediation = (
                    "Set crypto.exportablePrivateKey to true, "
                    "or disable exports.keyPem.enabled."
                )
            elif violated_rules == [RULE_CSR_PATH]:
                remediation = "Provide a valid CsrPath when using SignExistingCsr mode."
            else:
                remediation = (
                    "Fix the configuration to satisfy all mode legality rules "
                    "(CsrPath, ExportablePrivateKey)."
                )

            return DoctorCheckResult(
                id=self.id,
                status=STATUS_FAIL,
                category=FailureCategory.ConfigurationError,
                summary="Illegal request configuration",
                evidence={"violatedRules": violated_rules},
                remediation=remediation,
            )

        evidence: Dict[str, object] = {
            "mode": str(request.mode),
            "overwrite": request.overwrite,
        }
        if request.exports is not None:
            exports = {}
            for key, target in (
                ("keyPemEnabled", request.exports.key_pem),
                ("leafPemEnabled", request.exports.leaf_pem),
                ("caBundlePemEnabled", request.exports.ca_bundle_pem),
            ):
                if target is not None:
                    exports[key] = target.enabled
            evidence["exports"] = exports

        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="Request mode and options are legal",
            evidence=evidence,
        )


# =========================================================================
# CA connectivity (opt-in)
# =========================================================================


def _ca_server(context: DoctorContext) -> Optional[str]:
    request = context.request
    if request is None or request.ca is None or request.ca.ca_config is None:
        return None
    server = request.ca.ca_config.ca_server
    return server if has_text(server) else None


def _missing_ca_server(check_id: str) -> DoctorCheckResult:
    return DoctorCheckResult(
        id=check_id,
        status=STATUS_FAIL,
        category=FailureCategory.ConfigurationError,
        summary="CA server not specified",
        remediation=CA_SERVER_REMEDIATION,
    )


class CaDnsResolutionCheck:
    id = "ca.dns"

    def __init__(
        self,
        resolver: Optional[DnsResolver] = None,
        ns: Optional[str] = None,
        dns_tcp: bool = False,
    ) -> None:
        self.resolver = resolver
        self.ns = ns
        self.dns_tcp = dns_tcp

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        ca_server = _ca_server(context)
        if ca_server is None:
            return _missing_ca_server(self.id)

        resolver = self.resolver or DnsResolver.create(self.ns, self.dns_tcp)
        address = resolver.resolve(ca_server)

        if address is None:
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_FAIL,
                category=FailureCategory.ConnectivityError,
                summary="Unable to resolve CA host",
                evidence={"caServer": ca_server},
                remediation="Fix DNS or use a resolvable CA hostname.",
            )

        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="CA host DNS resolution successful",
            evidence={"caServer": ca_server, "addresses": [address]},
        )


class CaTransportReachabilityCheck:
    id = "ca.transport"

    def __init__(
        self,
        timeout: float = TCP_PROBE_TIMEOUT,
        probe: Callable[[str, int, float], Tuple[bool, Optional[str]]] = probe_tcp,
    ) -> None:
        self.timeout = timeout
        self.probe = probe

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        ca_server = _ca_server(context)
        if ca_server is None:
            return _missing_ca_server(self.id)

        port = context.request.ca.ca_config.port  # type: ignore
        if port is None:
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_WARN,
                category=FailureCategory.ConnectivityError,
                summary="CA transport reachability not verified",
                detail="No CA port was provided; the transport check is skipped.",
                evidence={"caServer": ca_server, "port": None},
                remediation="Set caConfig.port in the request to enable "
                "a TCP reachability check.",
            )

        connected, error_type = self.probe(ca_server, port, self.timeout)
        if not connected:
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_FAIL,
                category=FailureCategory.ConnectivityError,
                summary="Unable to reach CA service",
                evidence={
                    "caServer": ca_server,
                    "port": port,
                    "connected": False,
                    "errorType": error_type,
                },
                remediation="Verify routing/firewall and that the CA service "
                "is reachable on the specified port.",
            )

        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="CA service transport reachable",
            evidence={"caServer": ca_server, "port": port, "connected": True},
        )


# =========================================================================
# Export destinations
# =========================================================================


class ExportDestinationReadinessCheck:
    """
    Proves every enabled export target can be written.

    An existing file with overwrite disabled fails without probing; only
    targets that could actually be written get a writability probe, and the
    probe never touches the final path.
    """

    id = "export.destinations.ready"

    def __init__(
        self, probe: Callable[[str], Tuple[bool, Optional[str]]] = probe_writable
    ) -> None:
        self.probe = probe

    def run(self, context: DoctorContext) -> DoctorCheckResult:
        request = context.request
        if request is None or request.exports is None:
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_PASS,
                summary="No exports requested",
                evidence={},
            )

        targets: List[Dict[str, object]] = []
        failures: List[str] = []

        for name, target in (
            (LEAF_PEM, request.exports.leaf_pem),
            (KEY_PEM, request.exports.key_pem),
            (CA_BUNDLE_PEM, request.exports.ca_bundle_pem),
        ):
            info, failure = self._check_target(name, target, request.overwrite)
            targets.append(info)
            if failure is not None:
                failures.append(failure)

        evidence = {"targets": targets}

        if failures:
            return DoctorCheckResult(
                id=self.id,
                status=STATUS_FAIL,
                category=FailureCategory.ExportError,
                summary="Export destinations not ready",
                detail="; ".join(failures),
                evidence=evidence,
                remediation="Choose writable paths and set overwrite=true "
                "only if intentional.",
            )

        return DoctorCheckResult(
            id=self.id,
            status=STATUS_PASS,
            summary="All export destinations are ready",
            evidence=evidence,
        )

    def _check_target(
        self, name: str, target: Optional[ExportTarget], overwrite: bool
    ) -> Tuple[Dict[str, object], Optional[str]]:
        info: Dict[str, object] = {"name": name}

        if target is None or not target.enabled:
            info["enabled"] = False
            return info, None

        info["enabled"] = True
        info["inputPath"] = target.path

        resolved = resolve_path(target.path)
        if resolved is None:
            info.update(
                {
                    "resolvedPath": None,
                    "parentDir": None,
                    "parentExists": False,
                    "exists": False,
                    "writable": False,
                    "overwriteAllowed": overwrite,
                }
            )
            if not has_text(target.path):
                return info, f"{name}: path is empty"
            return info, f"{name}: cannot resolve path {target.path!r}"

        info["resolvedPath"] = resolved

        parent_dir = os.path.dirname(resolved)
        parent_exists = bool(parent_dir) and os.path.isdir(parent_dir)
        info["parentDir"] = parent_dir
        info["parentExists"] = parent_exists

        if not parent_exists:
            info.update({"exists": False, "writable": False, "overwriteAllowed": overwrite})
            return info, f"{name}: parent directory does not exist: {parent_dir}"

        exists = os.path.exists(resolved)
        info["exists"] = exists
        info["overwriteAllowed"] = overwrite

        if exists and not overwrite:
            # Overwrite is the blocking condition; no probe on this path
            info["writable"] = False
            return info, f"{name}: file exists and overwrite=false"

        writable, error = self.probe(parent_dir)
        info["writable"] = writable

        if not writable:
            logging.debug(f"Probe failed for {name}: {error}")
            return info, f"{name}: parent directory is not writable: {parent_dir}"

        return info, None
