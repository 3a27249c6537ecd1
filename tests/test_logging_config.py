import logging

import pytest
import structlog

from siweauth.config import Settings
from siweauth.logging_config import redact_secrets, service_context, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_nonce_and_signature_are_shortened():
    event = redact_secrets(
        None,
        "info",
        {"event": "siwe_verification_rejected", "nonce": "abcdef0123456789", "signature": "0x" + "11" * 65, "address": "0xabc"},
    )

    assert event["nonce"] == "abcdef01..."
    assert event["signature"] == "0x111111..."
    assert event["address"] == "0xabc"


def test_short_values_are_left_alone():
    event = redact_secrets(None, "info", {"event": "x", "nonce": "abc"})

    assert event["nonce"] == "abc"


def test_service_context_stamps_domain_and_chain():
    config = Settings(_env_file=None, siwe_domain="app.example", siwe_chain_id=137)

    event = service_context(config)(None, "info", {"event": "siwe_message_built"})

    assert event["siwe_domain"] == "app.example"
    assert event["siwe_chain_id"] == 137


def test_setup_logging_uses_configured_format_and_quiet_loggers(restore_logging):
    config = Settings(_env_file=None, log_format="console", log_quiet_loggers=["siweauth.tests.noisy"])

    setup_logging("INFO", config=config)

    root = logging.getLogger()
    assert root.level == logging.INFO
    assert isinstance(root.handlers[0].formatter.processors[-1], structlog.dev.ConsoleRenderer)
    assert logging.getLogger("siweauth.tests.noisy").level == logging.WARNING
