"""
Certificate-to-PEM encoders used by the export stage.

An encoder reads a native certificate artifact and writes PEM text to a
destination path. The export stage always hands an encoder a temporary
path, never the final one.
"""

import os
import subprocess
from typing import List, Optional, Protocol

from cryptography import x509

from certpilot.lib.certificate import cert_to_pem, load_certificates
from certpilot.lib.certreq import first_message_line
from certpilot.lib.constants import CERTUTIL, ENCODE_TIMEOUT
from certpilot.lib.logger import logging
from certpilot.lib.tools import locate_tool, run_tool


class EncodeError(Exception):
    """Raised when an artifact cannot be converted to PEM."""


class Encoder(Protocol):
    name: str

    def ensure_available(self) -> None: ...

    def encode(self, source_path: str, dest_path: str) -> None: ...


class CertUtilEncoder:
    """
    Encodes with ``certutil -encode``.

    certutil wraps its input in base64 with certificate markers. The input
    must be a single DER certificate for the output to be a usable PEM file.
    """

    name = "certutil"

    def __init__(
        self, timeout: float = ENCODE_TIMEOUT, tools: Optional[str] = None
    ) -> None:
        self.timeout = timeout
        self.tools = tools

    def _locate(self) -> str:
        path = locate_tool(CERTUTIL, self.tools)
        if path is None:
            raise EncodeError(
                "certutil.exe not found. Expected location: "
                "SystemRoot\\System32\\certutil.exe"
            )
        return path

    def ensure_available(self) -> None:
        self._locate()

    def encode(self, source_path: str, dest_path: str) -> None:
        certutil_path = self._locate()

        try:
            output = run_tool(
                [certutil_path, "-encode", source_path, dest_path], self.timeout
            )
        except subprocess.TimeoutExpired:
            raise EncodeError(f"certutil.exe timed out after {self.timeout} seconds")
        except OSError as e:
            raise EncodeError(f"Failed to execute certutil.exe: {e}")

        if not output.ok:
            message = first_message_line(output.combined)
            raise EncodeError(
                message or f"certutil.exe exited with code {output.returncode}"
            )

        if not os.path.isfile(dest_path):
            raise EncodeError(f"certutil.exe produced no output file: {dest_path}")


class NativeEncoder:
    """
    Encodes in-process with cryptography.

    Accepts a DER or PEM certificate, or a PKCS#7 certificate container, and
    writes every certificate it holds as consecutive PEM blocks, except those
    listed in ``exclude``.
    """

    name = "native"

    def __init__(self, exclude: Optional[List[x509.Certificate]] = None) -> None:
        self.exclude = list(exclude or [])

    def ensure_available(self) -> None:
        pass

    def encode(self, source_path: str, dest_path: str) -> None:
        try:
            with open(source_path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise EncodeError(f"Failed to read {source_path!r}: {e}")

        try:
            certificates = load_certificates(data)
        except ValueError as e:
            raise EncodeError(f"No certificate could be loaded from {source_path!r}: {e}")

        certificates = [c for c in certificates if c not in self.exclude]
        if not certificates:
            raise EncodeError(f"{source_path!r} holds only excluded certificates")

        logging.debug(f"Encoding {len(certificates)} certificate(s) from {source_path!r}")

        try:
            with open(dest_path, "wb") as f:
                for certificate in certificates:
                    f.write(cert_to_pem(certificate))
        except OSError as e:
            raise EncodeError(f"Failed to write {dest_path!r}: {e}")


def create_encoder(name: str, timeout: float = ENCODE_TIMEOUT) -> Encoder:
    """
    Build an encoder by name.

    Args:
        name: "certutil" or "native"
        timeout: Subprocess timeout for the certutil encoder

    Raises:
        ValueError: If the name is unknown
    """
    if name == CertUtilEncoder.name:
        return CertUtilEncoder(timeout=timeout)
    if name == NativeEncoder.name:
        return NativeEncoder()
    raise ValueError(f"Unknown encoder: {name!r}")
