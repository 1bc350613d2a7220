import datetime
import io

import pytest

from brokerhub.logs import (
    StderrLogger,
    get_logger,
    log_action,
    log_error,
    log_target,
    set_logger,
)


@pytest.fixture
def buffer():
    stream = io.StringIO()
    previous = set_logger(StderrLogger(stream, timestamps=False))
    yield stream
    set_logger(previous)


def test_log_action(buffer):
    log_action("a", "b")
    assert buffer.getvalue() == "[a] b\n"


def test_log_error(buffer):
    log_error("a", "b", RuntimeError("err"))
    assert buffer.getvalue() == "[a] error during b (err)\n"


def test_log_target(buffer):
    log_target("a", "b", 123)
    assert buffer.getvalue() == "[a] b (123)\n"


def test_stderr_logger_name_and_configure():
    logger = StderrLogger()
    assert logger.configure(None) is None
    assert logger.name() == "stderr"


def test_timestamps_prefix_lines():
    stream = io.StringIO()
    before = datetime.datetime.now().replace(microsecond=0)
    StderrLogger(stream).printf("[%s] %s", "a", "b")
    after = datetime.datetime.now()
    line = stream.getvalue()
    stamp = datetime.datetime.strptime(line[:19], "%Y/%m/%d %H:%M:%S")
    assert before - datetime.timedelta(seconds=1) <= stamp <= after
    assert line[19:] == " [a] b\n"


def test_default_stream_is_stderr(capsys):
    StderrLogger(timestamps=False).printf("[%s] %s", "x", "y")
    assert capsys.readouterr().err == "[x] y\n"


def test_set_logger_returns_previous():
    first = StderrLogger(io.StringIO())
    original = set_logger(first)
    try:
        second = StderrLogger(io.StringIO())
        assert set_logger(second) is first
        assert get_logger() is second
    finally:
        set_logger(original)
    assert get_logger() is original