"""Tests for the rank-tagged print logger."""

import io

import pytest

from plasticnet.utils import configure, detach_output, get_logger


@pytest.fixture(autouse=True)
def restore_level():
    yield
    configure(level="INFO")
    detach_output()


def test_header_and_formatting(capsys):
    log = get_logger("unit", rank=3)
    log.info("Built %d synapses", 12)
    out = capsys.readouterr().out
    assert "plasticnet:unit[3] INFO" in out
    assert "Built 12 synapses" in out


def test_mirrors_to_stream(capsys):
    stream = io.StringIO()
    get_logger("unit", out=stream).warning("careful")
    assert "careful" in stream.getvalue()
    assert "WARNING" in stream.getvalue()
    assert "careful" in capsys.readouterr().out


def test_configured_output(capsys):
    stream = io.StringIO()
    configure(out=stream)
    get_logger("unit").error("bad %s", "thing")
    detach_output()
    get_logger("unit").error("after")
    assert "bad thing" in stream.getvalue()
    assert "after" not in stream.getvalue()


def test_level_filter(capsys):
    configure(level="WARNING")
    log = get_logger("unit")
    log.info("hidden")
    log.debug("hidden too")
    log.warning("shown")
    out = capsys.readouterr().out
    assert "hidden" not in out
    assert "shown" in out


def test_unknown_level():
    with pytest.raises(ValueError):
        configure(level="LOUD")
