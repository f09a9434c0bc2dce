"""
Test that per-request HTTP client logs are suppressed.

Every relayed segment is an upstream request, so httpx/httpcore INFO lines
would flood the log.
"""

import logging
import io

from relay.utils.logging import setup


def test_http_client_logger_levels():
    """httpx and httpcore loggers are raised to WARNING."""
    setup()

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING


def test_httpx_info_not_logged():
    """httpx INFO messages are dropped while WARNING still gets through."""
    setup()

    log_stream = io.StringIO()
    handler = logging.StreamHandler(log_stream)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    httpx_logger = logging.getLogger("httpx")
    httpx_logger.addHandler(handler)
    try:
        httpx_logger.info('HTTP Request: GET https://video-edge.example.net/v1/segment/abc.ts "HTTP/1.1 200 OK"')
        httpx_logger.warning("This is a test WARNING message from httpx")
    finally:
        httpx_logger.removeHandler(handler)

    log_output = log_stream.getvalue()
    assert "HTTP Request" not in log_output
    assert "test WARNING message" in log_output


def test_httpcore_debug_silenced_at_debug_level():
    """Connection-level httpcore DEBUG lines stay quiet even when the relay logs at DEBUG."""
    setup(logging.DEBUG)

    assert not logging.getLogger("httpcore").isEnabledFor(logging.DEBUG)
    assert not logging.getLogger("httpcore.connection").isEnabledFor(logging.DEBUG)
