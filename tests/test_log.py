import json

from app.log import configure_logging, get_logger
from app.services.signature import verify_signature


def test_import_time_logger_follows_later_configuration(capsys):
    configure_logging("WARNING")
    verify_signature(b"{}", "garbage", "secret")

    line = capsys.readouterr().out.strip().splitlines()[-1]
    entry = json.loads(line)
    assert entry["event"] == "signature_header_malformed"
    assert entry["component"] == "signature_verifier"
    assert entry["level"] == "warning"


def test_level_filter_applies(capsys):
    configure_logging("ERROR")
    try:
        verify_signature(b"{}", "garbage", "secret")
        get_logger("test").info("ignored")
        assert capsys.readouterr().out == ""
    finally:
        configure_logging("INFO")
