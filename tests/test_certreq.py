import os
import subprocess
from types import SimpleNamespace

import pytest
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7

from certpilot.lib.certreq import (
    CertReqClient,
    build_inf,
    build_san_entries,
    classify_failure,
    first_message_line,
    is_directory_name,
)
from certpilot.lib.contracts import FailureCategory, RequestMode


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "output,category",
        [
            ("The RPC server is unavailable. Network path not found", "ConnectivityError"),
            ("DNS name does not exist", "ConnectivityError"),
            ("Access denied", "AuthorizationError"),
            ("The user does not have enrollment rights", "AuthorizationError"),
            ("The request was denied by the policy module", "CARequestError"),
            ("", "CARequestError"),
            (None, "CARequestError"),
        ],
    )
    def test_keywords(self, output, category):
        assert str(classify_failure(output)) == category

    def test_connectivity_wins_over_authorization(self):
        output = "Access denied while opening the connection"
        assert classify_failure(output) == FailureCategory.ConnectivityError


def test_first_message_line_skips_banners():
    output = "\r\nCertReq: Request denied\r\n  Template not supported  \r\nmore"
    assert first_message_line(output) == "Template not supported"
    assert first_message_line("CertUtil: -encode command FAILED") is None
    assert first_message_line(None) is None


def test_build_san_entries():
    entries = build_san_entries(
        ["DNS:a.example.com", "IP:10.0.0.1", "b.example.com", "  ", "dns:c"]
    )
    assert entries == [
        "dns:a.example.com",
        "ip:10.0.0.1",
        "dns:b.example.com",
        "dns:c",
    ]


class TestBuildInf:
    def test_new_request_section(self, make_request):
        inf = build_inf(make_request(sans=[]))
        lines = inf.split("\r\n")

        assert lines[:4] == ["[Version]", 'Signature="$Windows NT$"', "", "[NewRequest]"]
        assert 'Subject="CN=web01.corp.example"' in lines
        assert "KeyLength=2048" in lines
        assert "Exportable=FALSE" in lines
        assert "HashAlgorithm=SHA256" in lines
        assert "[Extensions]" not in lines
        assert inf.endswith("\r\n")

    def test_san_extension(self, make_request):
        inf = build_inf(make_request(sans=["dns:a.example.com", "IP:10.0.0.1"]))
        lines = inf.split("\r\n")

        start = lines.index("[Extensions]")
        assert lines[start + 1 : start + 4] == [
            '2.5.29.17 = "{text}"',
            '_continue_ = "dns=a.example.com&"',
            '_continue_ = "ipaddress=10.0.0.1&"',
        ]

    def test_subject_dn_and_defaults(self, make_request):
        request = make_request(exportable=True)
        request.subject.subject_dn = "CN=web01,O=Corp"
        request.crypto.key_size = 0

        lines = build_inf(request).split("\r\n")

        assert 'Subject="CN=web01,O=Corp"' in lines
        assert "KeyLength=2048" in lines
        assert "Exportable=TRUE" in lines


@pytest.fixture
def tools_dir(tmp_path):
    path = tmp_path / "System32"
    path.mkdir()
    (path / "certreq.exe").write_bytes(b"")
    return str(path)


@pytest.fixture
def work_dir(tmp_path):
    return str(tmp_path / "work")


class FakeCertReq:
    """Stands in for certreq.exe, writing the files it would write."""

    def __init__(self, pki, fail_on=None, output="", returncode=1):
        self.pki = pki
        self.fail_on = fail_on
        self.output = output if isinstance(output, bytes) else output.encode()
        self.returncode = returncode
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append((list(args), kwargs))
        verb = next(a for a in args[1:] if a.startswith("-") and a != "-config")
        if verb == "-attrib":
            verb = "-submit"

        if verb == self.fail_on:
            return SimpleNamespace(
                returncode=self.returncode, stdout=self.output, stderr=b""
            )

        if verb == "-new":
            with open(args[-1], "wb") as f:
                f.write(b"request")
        elif verb == "-submit":
            with open(args[-2], "wb") as f:
                f.write(self.pki.leaf_cert.public_bytes(Encoding.DER))
            with open(args[-1], "wb") as f:
                f.write(
                    pkcs7.serialize_certificates(
                        [self.pki.leaf_cert, self.pki.ca_cert], Encoding.DER
                    )
                )

        return SimpleNamespace(returncode=0, stdout=b"CertReq: OK", stderr=b"")


class TestCertReqClient:
    def test_new_keypair_flow(self, monkeypatch, pki, make_request, tools_dir, work_dir):
        fake_run = FakeCertReq(pki)
        monkeypatch.setattr(subprocess, "run", fake_run)

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(make_request())

        assert result.success
        assert result.message == "Certificate issued successfully"
        assert result.pfx_path is None
        assert os.path.isfile(result.cer_path)
        assert os.path.isfile(result.chain_path)

        verbs = [args[1] for args, _ in fake_run.calls]
        assert verbs == ["-new", "-config", "-accept"]

        submit_args, kwargs = fake_run.calls[1]
        assert submit_args[1:5] == [
            "-config",
            "ca01.corp.example\\Corp Issuing CA",
            "-attrib",
            "CertificateTemplate:WebServer",
        ]
        assert submit_args[5] == "-submit"
        assert kwargs["cwd"] == os.path.join(work_dir, "req-001")
        assert kwargs["timeout"] == 60

    def test_exportable_key_still_has_no_pfx(
        self, monkeypatch, pki, make_request, tools_dir, work_dir
    ):
        monkeypatch.setattr(subprocess, "run", FakeCertReq(pki))

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(
            make_request(exportable=True)
        )

        assert result.success
        assert result.pfx_path is None

    def test_submit_rejected(self, monkeypatch, pki, make_request, tools_dir, work_dir):
        fake_run = FakeCertReq(
            pki,
            fail_on="-submit",
            output="CertReq: Request denied\r\nThe request was denied 0x80094012",
        )
        monkeypatch.setattr(subprocess, "run", fake_run)

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(make_request())

        assert not result.success
        assert result.failure_category == FailureCategory.CARequestError
        assert result.message == (
            "Failed to submit certificate request: The request was denied 0x80094012"
        )
        assert len(fake_run.calls) == 2

    def test_access_denied(self, monkeypatch, pki, make_request, tools_dir, work_dir):
        monkeypatch.setattr(
            subprocess, "run", FakeCertReq(pki, fail_on="-submit", output="Access denied.")
        )

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(make_request())

        assert result.failure_category == FailureCategory.AuthorizationError

    def test_output_outside_the_code_page(
        self, monkeypatch, pki, make_request, tools_dir, work_dir
    ):
        fake_run = FakeCertReq(
            pki, fail_on="-submit", output=b"Access denied. Zugriff verweigert \x81"
        )
        monkeypatch.setattr(subprocess, "run", fake_run)

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(make_request())

        assert result.failure_category == FailureCategory.AuthorizationError
        assert result.message.startswith(
            "Failed to submit certificate request: Access denied."
        )

    def test_silent_failure_reports_exit_code(
        self, monkeypatch, pki, make_request, tools_dir, work_dir
    ):
        monkeypatch.setattr(
            subprocess, "run", FakeCertReq(pki, fail_on="-new", returncode=5)
        )

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(make_request())

        assert result.message == (
            "Failed to generate certificate request: certreq.exe exited with code 5"
        )

    def test_timeout(self, monkeypatch, make_request, tools_dir, work_dir):
        def fake_run(args, **kwargs):
            raise subprocess.TimeoutExpired(args, kwargs["timeout"])

        monkeypatch.setattr(subprocess, "run", fake_run)

        result = CertReqClient(work_dir=work_dir, timeout=5, tools=tools_dir).issue(
            make_request()
        )

        assert result.failure_category == FailureCategory.ConnectivityError
        assert result.message == (
            "Failed to generate certificate request: "
            "certreq.exe timed out after 5 seconds"
        )

    def test_process_start_failure(self, monkeypatch, make_request, tools_dir, work_dir):
        def fake_run(args, **kwargs):
            raise PermissionError("denied")

        monkeypatch.setattr(subprocess, "run", fake_run)

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(make_request())

        assert result.failure_category == FailureCategory.EnvironmentError

    def test_missing_tool(self, tmp_path, make_request, work_dir):
        result = CertReqClient(work_dir=work_dir, tools=str(tmp_path)).issue(
            make_request()
        )

        assert result.failure_category == FailureCategory.EnvironmentError
        assert "certreq.exe not found" in result.message

    def test_missing_ca_config(self, make_request, tools_dir, work_dir):
        request = make_request()
        request.ca = None

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(request)

        assert result.failure_category == FailureCategory.ConfigurationError

    @pytest.mark.parametrize("request_id", ["..", "../outside", "/etc", "a\\..\\b"])
    def test_request_id_must_stay_below_work_dir(
        self, monkeypatch, pki, make_request, tools_dir, work_dir, request_id
    ):
        fake_run = FakeCertReq(pki)
        monkeypatch.setattr(subprocess, "run", fake_run)
        request = make_request()
        request.request_id = request_id

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(request)

        assert result.failure_category == FailureCategory.ConfigurationError
        assert result.message == (
            f"Request id cannot be used as a directory name: {request_id}"
        )
        assert fake_run.calls == []
        assert not os.path.exists(work_dir)

    def test_stale_files_are_removed(
        self, monkeypatch, pki, make_request, tools_dir, work_dir
    ):
        run_dir = os.path.join(work_dir, "req-001")
        os.makedirs(run_dir)
        stale = os.path.join(run_dir, "certificate.cer")
        with open(stale, "wb") as f:
            f.write(b"stale")
        monkeypatch.setattr(subprocess, "run", FakeCertReq(pki, fail_on="-new"))

        CertReqClient(work_dir=work_dir, tools=tools_dir).issue(make_request())

        assert not os.path.exists(stale)

    def test_csr_flow(self, monkeypatch, pki, make_request, tools_dir, work_dir, tmp_path):
        csr = tmp_path / "request.csr"
        csr.write_bytes(b"csr")
        fake_run = FakeCertReq(pki)
        monkeypatch.setattr(subprocess, "run", fake_run)

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(
            make_request(mode=RequestMode.SignExistingCsr, csr_path=str(csr))
        )

        assert result.success
        assert result.message == "Certificate issued successfully from CSR"
        assert len(fake_run.calls) == 1
        assert fake_run.calls[0][0][6] == str(csr)

    def test_csr_missing(self, make_request, tools_dir, work_dir, tmp_path):
        csr = str(tmp_path / "missing.csr")

        result = CertReqClient(work_dir=work_dir, tools=tools_dir).issue(
            make_request(mode=RequestMode.SignExistingCsr, csr_path=csr)
        )

        assert result.failure_category == FailureCategory.ConfigurationError
        assert result.message == f"CSR file not found: {csr}"


@pytest.mark.parametrize(
    "name,expected",
    [("req-001", True), ("web01.corp.example", True), ("..", False), ("a/b", False)],
)
def test_is_directory_name(name, expected):
    assert is_directory_name(name) is expected
