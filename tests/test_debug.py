import pytest

from gptboot import debug as dbg


@pytest.fixture(autouse=True)
def _reset():
    dbg.set_debug(False)
    dbg.set_syslog(False)
    yield
    dbg.set_debug(False)
    dbg.set_syslog(False)


def test_set_and_get_debug():
    dbg.set_debug(1)
    assert dbg.get_debug() is True
    dbg.set_debug(0)
    assert dbg.get_debug() is False


def test_debug_silent_when_disabled(capsys):
    dbg.debug("hidden %d\n", 1)
    out = capsys.readouterr()
    assert out.out == ""
    assert out.err == ""


def test_debug_prints_to_stdout_when_enabled(capsys):
    dbg.set_debug(True)
    dbg.debug("value=%d\n", 7)
    assert capsys.readouterr().out == "value=7\n"


def test_error_goes_to_stderr(capsys):
    dbg.error("bad %s", "thing")
    out = capsys.readouterr()
    assert out.err == "bad thing"
    assert out.out == ""


def test_info_goes_to_stderr_without_debug(capsys):
    dbg.info("note")
    assert capsys.readouterr().err == "note"


def test_message_without_args_is_literal(capsys):
    dbg.error("100%")
    assert capsys.readouterr().err == "100%"