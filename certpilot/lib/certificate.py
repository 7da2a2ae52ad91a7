"""
Certificate handling utilities for certpilot.

This module provides functions for:
- Converting certificates between DER and PEM
- Loading single certificates and certificate bundles (PEM, DER, PKCS#7)
- Counting and extracting PEM certificate blocks from text
- Reading subject alternative names and public key information
"""

import base64
import re
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7
from cryptography.x509 import SubjectAlternativeName
from cryptography.x509.oid import ExtensionOID

from certpilot.lib.constants import (
    PEM_BEGIN_CERTIFICATE,
    PEM_END_CERTIFICATE,
    SAN_DNS_PREFIX,
    SAN_IP_PREFIX,
)
from certpilot.lib.logger import logging

PEM_CERTIFICATE_BLOCK = re.compile(
    re.escape(PEM_BEGIN_CERTIFICATE) + r".+?" + re.escape(PEM_END_CERTIFICATE),
    re.DOTALL,
)

# Textual SAN forms, longest first so "IP Address:" wins over "IP:"
SAN_TEXT_PREFIXES: List[Tuple[str, str]] = [
    ("ip address:", SAN_IP_PREFIX),
    ("ip address=", SAN_IP_PREFIX),
    ("dns name=", SAN_DNS_PREFIX),
    ("ip:", SAN_IP_PREFIX),
    ("dns:", SAN_DNS_PREFIX),
]

# =========================================================================
# Format conversion
# =========================================================================


def cert_to_pem(cert: x509.Certificate) -> bytes:
    """Convert certificate to PEM format."""
    return cert.public_bytes(Encoding.PEM)


def cert_to_der(cert: x509.Certificate) -> bytes:
    """Convert certificate to DER format."""
    return cert.public_bytes(Encoding.DER)


def der_to_pem(der: bytes, pem_type: str) -> str:
    """
    Convert DER-encoded data to PEM format.

    Args:
        der: DER-encoded binary data
        pem_type: PEM header/footer type (e.g., "CERTIFICATE")

    Returns:
        PEM-encoded data as string
    """
    pem_type = pem_type.upper()
    b64_data = base64.b64encode(der).decode()
    return "-----BEGIN %s-----\n%s\n-----END %s-----\n" % (
        pem_type,
        "\n".join([b64_data[i : i + 64] for i in range(0, len(b64_data), 64)]),
        pem_type,
    )


def der_to_cert(certificate: bytes) -> x509.Certificate:
    """Convert DER-encoded certificate to object."""
    return x509.load_der_x509_certificate(certificate)


def pem_to_cert(certificate: bytes) -> x509.Certificate:
    """Convert PEM-encoded certificate to object."""
    return x509.load_pem_x509_certificate(certificate)


def is_pem(data: bytes) -> bool:
    """Return True when data looks like PEM text rather than DER."""
    return data.lstrip().startswith(b"-----BEGIN")


def load_certificate(data: bytes) -> x509.Certificate:
    """
    Load a single certificate from DER or PEM bytes.

    Raises:
        ValueError: If the data is not a certificate
    """
    if is_pem(data):
        return pem_to_cert(data)
    return der_to_cert(data)


def load_certificates(data: bytes) -> List[x509.Certificate]:
    """
    Load every certificate from a file's contents.

    Accepts a PEM bundle, a single DER certificate, or a PKCS#7
    certificate container in DER or PEM form.

    Args:
        data: Raw file contents

    Returns:
        Certificates in file order

    Raises:
        ValueError: If no certificate can be loaded
    """
    if is_pem(data):
        if b"-----BEGIN PKCS7-----" in data:
            return list(pkcs7.load_pem_pkcs7_certificates(data))
        return list(x509.load_pem_x509_certificates(data))

    try:
        return [der_to_cert(data)]
    except ValueError:
        logging.debug("Data is not a DER certificate, trying PKCS#7")

    certificates = list(pkcs7.load_der_pkcs7_certificates(data))
    if not certificates:
        raise ValueError("PKCS#7 container holds no certificates")
    return certificates


# =========================================================================
# PEM text helpers
# =========================================================================


def count_pem_certificates(text: str) -> int:
    """Count the PEM certificate begin markers in text."""
    return text.count(PEM_BEGIN_CERTIFICATE)


def first_pem_certificate(text: str) -> Optional[str]:
    """
    Return the first complete PEM certificate block in text.

    Returns:
        The block including its markers, or None when there is none
    """
    match = PEM_CERTIFICATE_BLOCK.search(text)
    if match is None:
        return None
    return match.group(0)


# =========================================================================
# Certificate inspection
# =========================================================================


def normalize_san_entry(text: str) -> Optional[str]:
    """
    Convert a textual SAN entry into its typed ``dns:``/``ip:`` form.

    Recognizes "DNS:", "DNS Name=", "IP:", "IP Address:" and "IP Address="
    case-insensitively.

    Returns:
        The typed entry, or None when the prefix is not recognized
    """
    stripped = text.strip()
    lowered = stripped.lower()

    for prefix, typed in SAN_TEXT_PREFIXES:
        if lowered.startswith(prefix):
            return typed + stripped[len(prefix) :].strip()

    return None


def get_subject_alternative_names(certificate: x509.Certificate) -> List[str]:
    """
    Extract DNS and IP subject alternative names.

    Args:
        certificate: X.509 certificate to analyze

    Returns:
        Entries such as ``dns:host.example.com`` and ``ip:10.0.0.1``
    """
    try:
        san = certificate.extensions.get_extension_for_oid(
            ExtensionOID.SUBJECT_ALTERNATIVE_NAME
        )
    except x509.ExtensionNotFound:
        return []

    if not isinstance(san.value, SubjectAlternativeName):
        return []

    names: List[str] = []
    for general_name in san.value:
        if isinstance(general_name, x509.DNSName):
            names.append(SAN_DNS_PREFIX + general_name.value)
        elif isinstance(general_name, x509.IPAddress):
            names.append(SAN_IP_PREFIX + str(general_name.value))
        else:
            entry = normalize_san_entry(str(general_name.value))
            if entry is not None:
                names.append(entry)

    return names


def get_public_key_info(
    certificate: x509.Certificate,
) -> Tuple[Optional[str], Optional[int]]:
    """
    Describe the certificate's public key.

    Returns:
        Tuple of (algorithm name, key size); the key size is None for
        algorithms that do not expose one
    """
    try:
        public_key = certificate.public_key()
    except (ValueError, TypeError) as e:
        logging.debug(f"Failed to load public key: {e}")
        return None, None

    if isinstance(public_key, rsa.RSAPublicKey):
        return "RSA", public_key.key_size
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return "EC", public_key.curve.key_size
    if isinstance(public_key, dsa.DSAPublicKey):
        return "DSA", public_key.key_size
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return "Ed25519", None
    if isinstance(public_key, ed448.Ed448PublicKey):
        return "Ed448", None

    return type(public_key).__name__, None
