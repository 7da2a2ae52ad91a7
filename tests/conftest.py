"""Shared fixtures: a throwaway CA, an issued leaf and request builders."""

import datetime
import ipaddress
import os
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7
from cryptography.x509.oid import NameOID

from certpilot.lib.contracts import (
    CaConfig,
    CaIssueResult,
    CaTarget,
    CertificateRequest,
    CryptoProfile,
    ExportPlan,
    ExportTarget,
    RequestMode,
    SubjectIdentity,
)

LEAF_COMMON_NAME = "web01.corp.example"
LEAF_DNS_NAME = "web01.corp.example"
LEAF_IP_ADDRESS = "10.0.0.5"


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


@pytest.fixture(scope="session")
def pki() -> SimpleNamespace:
    """Generate a CA certificate and a leaf issued by it."""
    now = datetime.datetime.now(datetime.timezone.utc)

    ca_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("Test Issuing CA"))
        .issuer_name(_name("Test Issuing CA"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(ca_key, hashes.SHA256())
    )

    leaf_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    leaf_cert = (
        x509.CertificateBuilder()
        .subject_name(_name(LEAF_COMMON_NAME))
        .issuer_name(ca_cert.subject)
        .public_key(leaf_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName(LEAF_DNS_NAME),
                    x509.IPAddress(ipaddress.ip_address(LEAF_IP_ADDRESS)),
                ]
            ),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    return SimpleNamespace(ca_cert=ca_cert, leaf_cert=leaf_cert)


@pytest.fixture
def native_dir(tmp_path) -> str:
    """Directory standing in for the certreq working directory."""
    path = tmp_path / "native"
    path.mkdir()
    return str(path)


@pytest.fixture
def out_dir(tmp_path) -> str:
    """Existing, writable export directory."""
    path = tmp_path / "out"
    path.mkdir()
    return str(path)


@pytest.fixture
def cer_file(pki, native_dir) -> str:
    """DER encoded leaf, as certreq writes it."""
    path = os.path.join(native_dir, "certificate.cer")
    with open(path, "wb") as f:
        f.write(pki.leaf_cert.public_bytes(Encoding.DER))
    return path


@pytest.fixture
def chain_file(pki, native_dir) -> str:
    """DER PKCS#7 chain holding the leaf and the CA."""
    path = os.path.join(native_dir, "chain.p7b")
    with open(path, "wb") as f:
        f.write(
            pkcs7.serialize_certificates([pki.leaf_cert, pki.ca_cert], Encoding.DER)
        )
    return path


@pytest.fixture
def issued(cer_file, chain_file) -> CaIssueResult:
    """Successful issuance with a certificate and a chain but no PFX."""
    return CaIssueResult(
        True,
        message="Certificate issued successfully",
        cer_path=cer_file,
        chain_path=chain_file,
    )


@pytest.fixture
def make_request() -> Callable[..., CertificateRequest]:
    """Factory for a complete, legal NewKeypair request."""

    def factory(
        leaf_path: Optional[str] = None,
        key_path: Optional[str] = None,
        bundle_path: Optional[str] = None,
        exportable: bool = False,
        overwrite: bool = False,
        sans: Optional[List[str]] = None,
        mode: RequestMode = RequestMode.NewKeypair,
        csr_path: Optional[str] = None,
        port: Optional[int] = None,
    ) -> CertificateRequest:
        exports = None
        if leaf_path or key_path or bundle_path:
            exports = ExportPlan(
                leaf_pem=ExportTarget(True, leaf_path) if leaf_path else None,
                key_pem=ExportTarget(True, key_path) if key_path else None,
                ca_bundle_pem=ExportTarget(True, bundle_path) if bundle_path else None,
            )

        return CertificateRequest(
            request_id="req-001",
            subject=SubjectIdentity(
                common_name=LEAF_COMMON_NAME,
                subject_alternative_names=(
                    sans if sans is not None else [f"dns:{LEAF_DNS_NAME}"]
                ),
            ),
            mode=mode,
            csr_path=csr_path,
            ca=CaTarget(
                ca_config=CaConfig(
                    ca_server="ca01.corp.example", ca_name="Corp Issuing CA", port=port
                ),
                template="WebServer",
            ),
            crypto=CryptoProfile(
                key_algorithm="RSA",
                key_size=2048,
                hash_algorithm="SHA256",
                exportable_private_key=exportable,
            ),
            auth_mode="kerberos",
            exports=exports,
            overwrite=overwrite,
        )

    return factory


@pytest.fixture
def request_document() -> dict:
    """A request file as the CLI reads it."""
    return {
        "requestId": "req-001",
        "mode": "newKeypair",
        "commonName": LEAF_COMMON_NAME,
        "subjectAlternativeNames": [f"dns:{LEAF_DNS_NAME}", f"ip:{LEAF_IP_ADDRESS}"],
        "caConfig": {
            "caServer": "ca01.corp.example",
            "caName": "Corp Issuing CA",
            "port": 135,
        },
        "template": "WebServer",
        "keyAlgorithm": "RSA",
        "keySize": 2048,
        "hashAlgorithm": "SHA256",
        "exportablePrivateKey": False,
        "authMode": "kerberos",
        "exports": {"leafPem": {"enabled": True, "path": "leaf.pem"}},
        "overwrite": False,
    }
