import json
import sys

import pytest

from certpilot import entry
from certpilot.commands.doctor import Doctor
from certpilot.commands.request import Request, exit_code_for
from certpilot.lib.contracts import (
    CaIssueResult,
    CertificateResult,
    DoctorCheckResult,
    FailureCategory,
)
from certpilot.lib.doctor import DEFAULT_CHECK_IDS
from certpilot.lib.encoders import NativeEncoder
from certpilot.lib.export import ExportService


def run_main(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["certpilot", *args])
    with pytest.raises(SystemExit) as exc_info:
        entry.main()
    return exc_info.value.code


@pytest.fixture
def request_file(tmp_path, request_document, out_dir):
    request_document["exports"]["leafPem"]["path"] = f"{out_dir}/leaf.pem"
    path = tmp_path / "request.json"
    path.write_text(json.dumps(request_document))
    return str(path)


class TestDoctorCommand:
    def test_missing_file_json(self, monkeypatch, capsys, tmp_path):
        missing = str(tmp_path / "missing.json")

        code = run_main(monkeypatch, "doctor", "-request", missing, "-format", "json")

        assert code == 2
        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "fail"
        [check] = data["checks"]
        assert check["id"] == "cli.file.read"
        assert check["category"] == "ConfigurationError"
        assert check["summary"] == "Request file not found"
        assert check["evidence"] == {"path": missing}

    def test_missing_file_text(self, capsys, tmp_path):
        missing = str(tmp_path / "missing.json")

        assert Doctor(missing).run() == 2

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "ConfigurationError: Request file not found"
        assert lines[1] == f"  Path: {missing}"
        assert lines[2].startswith("  Remediation: ")

    def test_unparsable_file(self, capsys, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{")

        assert Doctor(str(path), output_format="json").run() == 2

        [check] = json.loads(capsys.readouterr().out)["checks"]
        assert check["summary"] == "Failed to read or parse request file"
        assert set(check["evidence"]) == {"path", "error"}

    def test_double_dash_and_case_insensitive_format(self, monkeypatch, capsys, tmp_path):
        missing = str(tmp_path / "missing.json")

        code = run_main(monkeypatch, "doctor", "--request", missing, "--format", "JSON")

        assert code == 2
        assert json.loads(capsys.readouterr().out)["checks"][0]["id"] == "cli.file.read"

    def test_nameserver_options(self, monkeypatch, capsys, tmp_path):
        missing = str(tmp_path / "missing.json")

        code = run_main(
            monkeypatch,
            "doctor",
            "-request",
            missing,
            "-connectivity",
            "-ns",
            "192.0.2.53",
            "-dns-tcp",
        )

        assert code == 2
        assert capsys.readouterr().out.startswith("ConfigurationError: ")

    def test_invalid_format(self, monkeypatch, tmp_path):
        code = run_main(monkeypatch, "doctor", "-request", "r.json", "-format", "xml")
        assert code == 1

    def test_missing_request_option(self, monkeypatch):
        assert run_main(monkeypatch, "doctor") == 2

    def test_no_arguments(self, monkeypatch):
        assert run_main(monkeypatch) == 1

    def test_default_checks(self, capsys, request_file):
        Doctor(request_file, output_format="json").run()

        data = json.loads(capsys.readouterr().out)
        assert [c["id"] for c in data["checks"]] == list(DEFAULT_CHECK_IDS)

    def test_json_output_is_repeatable(self, capsys, request_file):
        Doctor(request_file, output_format="json").run()
        first = capsys.readouterr().out
        Doctor(request_file, output_format="json").run()
        second = capsys.readouterr().out

        assert first == second

    def test_exit_code_follows_status(self, capsys, request_file):
        class WarningCheck:
            id = "test.warn"

            def run(self, context):
                return DoctorCheckResult(self.id, "warn", summary="careful")

        assert Doctor(request_file, checks=[WarningCheck()]).run() == 0

        out = capsys.readouterr().out
        assert out.splitlines()[0] == "Doctor Status: PASS"
        assert "WARN test.warn - careful" in out


class FakeCa:
    def __init__(self, result):
        self.result = result

    def issue(self, request):
        return self.result


class TestRequestCommand:
    def test_missing_file(self, monkeypatch, capsys, tmp_path):
        missing = str(tmp_path / "missing.json")

        code = run_main(monkeypatch, "request", "-request", missing, "-format", "json")

        assert code == 2
        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "failed"
        assert data["failureCategory"] == "ConfigurationError"
        assert data["message"] == f"Request file not found: {missing}"

    def test_success(self, capsys, request_file, issued):
        request = Request(
            request_file,
            output_format="json",
            ca=FakeCa(issued),
            export=ExportService(encoder=NativeEncoder()),
        )

        assert request.run() == 0

        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "success"
        assert data["artifacts"]["exported"][0]["written"] is True
        assert data["certificate"]["subjectAlternativeNames"] == [
            "dns:web01.corp.example",
            "ip:10.0.0.5",
        ]

    def test_issuance_failure_text(self, capsys, request_file):
        failed = CaIssueResult.failed(FailureCategory.CARequestError, "denied")

        assert Request(request_file, ca=FakeCa(failed)).run() == 1

        assert capsys.readouterr().out.splitlines()[0] == "CARequestError: denied"


@pytest.mark.parametrize(
    "status,category,code",
    [
        ("success", None, 0),
        ("failed", FailureCategory.ConfigurationError, 2),
        ("failed", FailureCategory.ExportError, 1),
        ("failed", FailureCategory.EnvironmentError, 1),
    ],
)
def test_exit_code_for(status, category, code):
    assert exit_code_for(CertificateResult(status, failure_category=category)) == code
