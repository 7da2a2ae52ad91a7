from certpilot.lib.errors import find_error_codes, translate_error_code


def test_translate_known_code():
    message = translate_error_code(0x80070005)
    assert message.startswith("code: 0x80070005 - E_ACCESSDENIED")


def test_translate_signed_code():
    assert translate_error_code(-2147024891) == translate_error_code(0x80070005)


def test_translate_unknown_code():
    assert translate_error_code(0x8BADF00D) == "unknown error code: 0x8badf00d"


def test_find_error_codes():
    output = "CertReq: 0x80094012\nagain 0x80094012 and 0X1 and 0x80070005"
    assert find_error_codes(output) == [0x80094012, 0x80070005]
    assert find_error_codes(None) == []
