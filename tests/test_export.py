import os
import subprocess
from types import SimpleNamespace

import pytest
from cryptography.hazmat.primitives.serialization import Encoding

from certpilot.lib.certificate import load_certificate
from certpilot.lib.contracts import CaIssueResult, FailureCategory
from certpilot.lib.encoders import CertUtilEncoder, EncodeError, NativeEncoder
from certpilot.lib.export import (
    KEY_NOT_EXPORTABLE,
    KEY_NOT_IMPLEMENTED,
    MISSING_CHAIN,
    MISSING_PFX,
    ExportService,
)
from certpilot.lib.files import sha256_file


class GarbageEncoder:
    name = "garbage"

    def ensure_available(self):
        pass

    def encode(self, source_path, dest_path):
        with open(dest_path, "w") as f:
            f.write("not pem")


class FailingEncoder:
    name = "failing"

    def ensure_available(self):
        pass

    def encode(self, source_path, dest_path):
        with open(dest_path, "w") as f:
            f.write("-----BEGIN CERT")
        raise EncodeError("disk full")


class UnavailableEncoder(FailingEncoder):
    def ensure_available(self):
        raise EncodeError("certutil.exe not found")


class CrashingEncoder:
    name = "crashing"

    def ensure_available(self):
        pass

    def encode(self, source_path, dest_path):
        NativeEncoder().encode(source_path, dest_path)
        raise RuntimeError("encoder crashed")


@pytest.fixture
def service():
    return ExportService(encoder=NativeEncoder())


class TestExportService:
    def test_leaf_export(self, service, make_request, issued, out_dir, pki):
        leaf_path = os.path.join(out_dir, "leaf.pem")

        result = service.export(make_request(leaf_path=leaf_path), issued)

        assert result.success
        assert result.message == "All exports completed successfully"
        [artifact] = result.exported
        assert artifact.name == "leaf.pem"
        assert artifact.written
        assert artifact.path == leaf_path
        assert artifact.size_bytes == os.path.getsize(leaf_path)
        assert artifact.sha256 == sha256_file(leaf_path)
        assert artifact.certificate_count is None
        with open(leaf_path, "rb") as f:
            assert load_certificate(f.read()) == pki.leaf_cert
        assert os.listdir(out_dir) == ["leaf.pem"]

    def test_bundle_leaves_out_the_leaf(self, service, make_request, issued, out_dir, pki):
        bundle_path = os.path.join(out_dir, "ca-bundle.pem")

        result = service.export(make_request(bundle_path=bundle_path), issued)

        assert result.success
        assert result.exported[0].certificate_count == 1
        with open(bundle_path, "rb") as f:
            bundle = f.read()
        assert pki.ca_cert.public_bytes(Encoding.PEM) in bundle
        assert pki.leaf_cert.public_bytes(Encoding.PEM) not in bundle

    def test_bundle_of_only_the_leaf(self, service, make_request, cer_file, out_dir):
        issued = CaIssueResult(True, cer_path=cer_file, chain_path=cer_file)

        result = service.export(
            make_request(bundle_path=os.path.join(out_dir, "ca-bundle.pem")), issued
        )

        assert result.failure_category == FailureCategory.ExportError
        assert result.message.startswith("CaBundlePem export failed: ")
        assert os.listdir(out_dir) == []

    def test_artifacts_follow_processing_order(self, service, make_request, issued, out_dir):
        request = make_request(
            leaf_path=os.path.join(out_dir, "leaf.pem"),
            bundle_path=os.path.join(out_dir, "ca-bundle.pem"),
        )

        result = service.export(request, issued)

        assert [a.name for a in result.exported] == ["leaf.pem", "ca-bundle.pem"]

    def test_no_exports(self, service, make_request, issued):
        result = service.export(make_request(), issued)
        assert result.success
        assert result.exported == []

    def test_failed_issuance(self, service, make_request):
        issued = CaIssueResult.failed(FailureCategory.AuthorizationError, "denied")

        result = service.export(make_request(leaf_path="leaf.pem"), issued)

        assert not result.success
        assert result.message == "denied"
        assert result.failure_category == FailureCategory.AuthorizationError

    def test_existing_target_without_overwrite(self, service, make_request, issued, out_dir):
        leaf_path = os.path.join(out_dir, "leaf.pem")
        with open(leaf_path, "w") as f:
            f.write("old")

        result = service.export(make_request(leaf_path=leaf_path), issued)

        assert not result.success
        assert result.failure_category == FailureCategory.ExportError
        assert result.message == (
            f"LeafPem export target already exists and overwrite is false: {leaf_path}"
        )
        assert result.exported == []
        with open(leaf_path) as f:
            assert f.read() == "old"

    def test_preconditions_run_before_any_write(
        self, service, make_request, issued, out_dir
    ):
        leaf_path = os.path.join(out_dir, "leaf.pem")
        bundle_path = os.path.join(out_dir, "ca-bundle.pem")
        with open(bundle_path, "w") as f:
            f.write("old")

        result = service.export(
            make_request(leaf_path=leaf_path, bundle_path=bundle_path), issued
        )

        assert not result.success
        assert "CaBundlePem" in result.message
        assert not os.path.exists(leaf_path)

    def test_empty_path(self, service, make_request, issued):
        request = make_request(leaf_path="placeholder")
        request.exports.leaf_pem.path = "  "

        result = service.export(request, issued)

        assert result.message == "LeafPem export is enabled but Path is empty"

    def test_overwrite_replaces_file(self, service, make_request, issued, out_dir):
        leaf_path = os.path.join(out_dir, "leaf.pem")
        with open(leaf_path, "w") as f:
            f.write("old")

        result = service.export(make_request(leaf_path=leaf_path, overwrite=True), issued)

        assert result.success
        with open(leaf_path) as f:
            assert "BEGIN CERTIFICATE" in f.read()

    @pytest.mark.parametrize("encoder", [GarbageEncoder(), FailingEncoder()])
    def test_unverified_output_never_reaches_target(
        self, encoder, make_request, issued, out_dir
    ):
        leaf_path = os.path.join(out_dir, "leaf.pem")
        with open(leaf_path, "w") as f:
            f.write("old")

        result = ExportService(encoder=encoder).export(
            make_request(leaf_path=leaf_path, overwrite=True), issued
        )

        assert not result.success
        assert result.failure_category == FailureCategory.ExportError
        assert result.message.startswith("LeafPem export failed: ")
        assert not result.exported[0].written
        assert os.listdir(out_dir) == ["leaf.pem"]
        with open(leaf_path) as f:
            assert f.read() == "old"

    def test_unavailable_encoder(self, make_request, issued, out_dir):
        result = ExportService(encoder=UnavailableEncoder()).export(
            make_request(leaf_path=os.path.join(out_dir, "leaf.pem")), issued
        )

        assert result.failure_category == FailureCategory.EnvironmentError
        assert result.message == "certutil.exe not found"

    def test_unexpected_encoder_error_removes_temp_file(
        self, make_request, issued, out_dir
    ):
        with pytest.raises(RuntimeError):
            ExportService(encoder=CrashingEncoder()).export(
                make_request(leaf_path=os.path.join(out_dir, "leaf.pem")), issued
            )

        assert os.listdir(out_dir) == []

    def test_certutil_console_output_in_oem_code_page(
        self, monkeypatch, make_request, issued, out_dir, tmp_path, pki
    ):
        tools = tmp_path / "System32"
        tools.mkdir()
        (tools / "certutil.exe").write_bytes(b"")

        def fake_run(args, **kwargs):
            with open(args[3], "wb") as f:
                f.write(pki.leaf_cert.public_bytes(Encoding.PEM))
            return SimpleNamespace(returncode=0, stdout=b"\x81ndern\r\n", stderr=b"")

        monkeypatch.setattr(subprocess, "run", fake_run)
        leaf_path = os.path.join(out_dir, "leaf.pem")

        result = ExportService(encoder=CertUtilEncoder(tools=str(tools))).export(
            make_request(leaf_path=leaf_path), issued
        )

        assert result.success
        assert os.listdir(out_dir) == ["leaf.pem"]

    def test_missing_chain_is_a_format_error(self, service, make_request, cer_file, out_dir):
        issued = CaIssueResult(True, cer_path=cer_file)

        result = service.export(
            make_request(bundle_path=os.path.join(out_dir, "ca-bundle.pem")), issued
        )

        assert result.failure_category == FailureCategory.FormatError
        assert result.message == MISSING_CHAIN

    def test_one_failure_does_not_stop_other_targets(
        self, service, make_request, cer_file, out_dir
    ):
        issued = CaIssueResult(True, cer_path=cer_file)
        request = make_request(
            leaf_path=os.path.join(out_dir, "leaf.pem"),
            bundle_path=os.path.join(out_dir, "ca-bundle.pem"),
        )

        result = service.export(request, issued)

        assert not result.success
        written = {a.name: a.written for a in result.exported}
        assert written == {"leaf.pem": True, "ca-bundle.pem": False}


class TestKeyExport:
    def test_not_exportable(self, service, make_request, issued, out_dir):
        request = make_request(key_path=os.path.join(out_dir, "leaf.key.pem"))

        result = service.export(request, issued)

        assert result.message == KEY_NOT_EXPORTABLE
        assert result.failure_category == FailureCategory.ExportError
        assert not result.exported[0].written

    def test_missing_pfx(self, service, make_request, issued, out_dir):
        request = make_request(
            key_path=os.path.join(out_dir, "leaf.key.pem"), exportable=True
        )

        result = service.export(request, issued)

        assert result.message == MISSING_PFX
        assert result.failure_category == FailureCategory.FormatError

    def test_pfx_present_is_still_not_written(
        self, service, make_request, cer_file, native_dir, out_dir
    ):
        pfx_path = os.path.join(native_dir, "certificate.pfx")
        with open(pfx_path, "wb") as f:
            f.write(b"pfx")
        issued = CaIssueResult(True, cer_path=cer_file, pfx_path=pfx_path)
        key_path = os.path.join(out_dir, "leaf.key.pem")

        result = service.export(make_request(key_path=key_path, exportable=True), issued)

        assert result.message == KEY_NOT_IMPLEMENTED
        assert result.failure_category == FailureCategory.ExportError
        assert not result.exported[0].written
        assert not os.path.exists(key_path)
