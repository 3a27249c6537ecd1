from datetime import datetime, timedelta, timezone

import pytest

from siweauth.auth.message import (
    MessageBuilder,
    create_message,
    format_message,
    generate_nonce,
    parse_message,
)
from siweauth.auth.models import InvalidFieldError, MalformedMessageError
from siweauth.auth.nonce_store import InMemoryNonceStore


ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
ISSUED_AT = datetime(2026, 1, 21, 0, 0, 0, tzinfo=timezone.utc)


def _fields(**overrides):
    fields = {
        "domain": "app.example",
        "address": ADDRESS,
        "uri": "https://app.example/login",
        "chain_id": 1,
        "statement": "Sign in with Ethereum to the app.",
        "nonce": "32891756abcdef01",
        "issued_at": ISSUED_AT,
    }
    fields.update(overrides)
    return fields


class RecordingNonceStore(InMemoryNonceStore):
    def __init__(self):
        super().__init__()
        self.issued = []

    async def issue(self, nonce, ttl_seconds):
        self.issued.append((nonce, ttl_seconds))
        await super().issue(nonce, ttl_seconds)


def test_format_message_matches_canonical_layout() -> None:
    message = create_message(**_fields())

    assert format_message(message) == (
        "app.example wants you to sign in with your Ethereum account:\n"
        f"{ADDRESS}\n"
        "\n"
        "Sign in with Ethereum to the app.\n"
        "\n"
        "URI: https://app.example/login\n"
        "Version: 1\n"
        "Chain ID: 1\n"
        "Nonce: 32891756abcdef01\n"
        "Issued At: 2026-01-21T00:00:00Z"
    )


def test_format_message_without_statement_keeps_both_blank_lines() -> None:
    message = create_message(**_fields(statement=None))

    text = format_message(message)

    assert f"{ADDRESS}\n\n\nURI: https://app.example/login" in text


def test_optional_fields_are_appended_in_order() -> None:
    message = create_message(
        **_fields(
            expiration_time=ISSUED_AT + timedelta(minutes=10),
            not_before=ISSUED_AT,
            request_id="req-7",
            resources=["ipfs://bafybeiemxf5abjwjbikoz4mc3a3dla6ual3jsgpdr4cjr3oz3evfyavhwq", "https://app.example/tos"],
        )
    )

    tail = format_message(message).split("\n")[-7:]

    assert tail == [
        "Issued At: 2026-01-21T00:00:00Z",
        "Expiration Time: 2026-01-21T00:10:00Z",
        "Not Before: 2026-01-21T00:00:00Z",
        "Request ID: req-7",
        "Resources:",
        "- ipfs://bafybeiemxf5abjwjbikoz4mc3a3dla6ual3jsgpdr4cjr3oz3evfyavhwq",
        "- https://app.example/tos",
    ]


@pytest.mark.parametrize(
    "overrides",
    [
        {},
        {"statement": None},
        {
            "expiration_time": ISSUED_AT + timedelta(hours=1),
            "not_before": ISSUED_AT + timedelta(minutes=1),
            "request_id": "8f2c",
            "resources": ["https://app.example/a"],
        },
        {"request_id": ""},
    ],
)
def test_parse_inverts_format(overrides) -> None:
    message = create_message(**_fields(**overrides))

    assert parse_message(format_message(message)) == message


def test_formatting_is_byte_stable() -> None:
    first = format_message(create_message(**_fields()))
    second = format_message(create_message(**_fields()))

    assert first.encode("utf-8") == second.encode("utf-8")


def test_create_message_checksums_lowercase_address() -> None:
    message = create_message(**_fields(address=ADDRESS.lower()))

    assert message.address == ADDRESS


def test_create_message_truncates_to_seconds_in_utc() -> None:
    plus_two = timezone(timedelta(hours=2))
    issued = datetime(2026, 1, 21, 2, 0, 0, 987654, tzinfo=plus_two)

    message = create_message(**_fields(issued_at=issued))

    assert message.issued_at == ISSUED_AT


def test_parse_accepts_compact_form_without_statement() -> None:
    text = (
        "app.example wants you to sign in with your Ethereum account:\n"
        f"{ADDRESS}\n"
        "\n"
        "URI: https://app.example\n"
        "Version: 1\n"
        "Chain ID: 137\n"
        "Nonce: abcdef0123\n"
        "Issued At: 2026-01-21T00:00:00.000Z"
    )

    parsed = parse_message(text)

    assert parsed.statement is None
    assert parsed.chain_id == 137
    assert parsed.issued_at == ISSUED_AT


@pytest.mark.parametrize(
    "mutate",
    [
        lambda text: "",
        lambda text: text.replace("wants you to sign in", "wants you to log in"),
        lambda text: text.replace(ADDRESS, ADDRESS.lower()),
        lambda text: text.replace("Version: 1", "Version: 2"),
        lambda text: text.replace("Chain ID: 1", "Chain ID: one"),
        lambda text: text.replace("Chain ID: 1", "Chain ID: 0"),
        lambda text: text.replace("Chain ID: 1", "Chain ID: " + "1" * 5000),
        lambda text: text.replace("Nonce: 32891756abcdef01", "Nonce: short"),
        lambda text: text.replace("Issued At: 2026-01-21T00:00:00Z", "Issued At: yesterday"),
        lambda text: text.replace("Issued At: 2026-01-21T00:00:00Z", "Issued At: 2026-01-21T00:00:00"),
        lambda text: text.replace("2026-01-21T00:00:00Z", "0001-01-01T00:00:00+01:00"),
        lambda text: text.replace("2026-01-21T00:00:00Z", "9999-12-31T23:59:59-01:00"),
        lambda text: text.replace("URI: https://app.example/login\n", ""),
        lambda text: text + "\n",
        lambda text: text + "\nSurprise: field",
        lambda text: text.replace("\n", "\r\n"),
    ],
)
def test_parse_rejects_malformed_text(mutate) -> None:
    text = format_message(create_message(**_fields()))

    with pytest.raises(MalformedMessageError):
        parse_message(mutate(text))


@pytest.mark.parametrize(
    "overrides, field_name",
    [
        ({"domain": ""}, "domain"),
        ({"domain": "app.example/login"}, "domain"),
        ({"uri": ""}, "uri"),
        ({"uri": "not a uri"}, "uri"),
        ({"address": ""}, "address"),
        ({"address": "0x1234"}, "address"),
        ({"version": "2"}, "version"),
        ({"chain_id": 0}, "chain_id"),
        ({"nonce": "abc"}, "nonce"),
        ({"nonce": "not-alpha-numeric"}, "nonce"),
        ({"statement": "two\nlines"}, "statement"),
        ({"request_id": "req\r7"}, "request_id"),
        ({"issued_at": datetime(2026, 1, 21)}, "issued_at"),
        ({"resources": ["relative/path"]}, "resources"),
        (
            {
                "expiration_time": ISSUED_AT + timedelta(minutes=5),
                "not_before": ISSUED_AT + timedelta(minutes=6),
            },
            "not_before",
        ),
    ],
)
def test_create_message_rejects_invalid_fields(overrides, field_name) -> None:
    with pytest.raises(InvalidFieldError) as exc_info:
        create_message(**_fields(**overrides))

    assert exc_info.value.field_name == field_name


def test_generate_nonce_is_long_and_unique() -> None:
    nonces = {generate_nonce() for _ in range(100)}

    assert len(nonces) == 100
    assert all(len(nonce) == 32 and nonce.isalnum() for nonce in nonces)


@pytest.mark.asyncio
async def test_builder_registers_nonce_with_default_ttl() -> None:
    store = RecordingNonceStore()
    builder = MessageBuilder(store, default_ttl_seconds=600)

    text, message = await builder.build(
        domain="app.example",
        address=ADDRESS,
        uri="https://app.example",
        chain_id=1,
    )

    assert store.issued == [(message.nonce, 600)]
    assert parse_message(text) == message
    assert len(message.nonce) == 32


@pytest.mark.asyncio
async def test_builder_ttl_follows_expiration_time() -> None:
    store = RecordingNonceStore()
    builder = MessageBuilder(store, clock=lambda: ISSUED_AT)

    _, message = await builder.build(**_fields(expiration_time=ISSUED_AT + timedelta(seconds=90)))

    assert store.issued == [(message.nonce, 90)]


@pytest.mark.asyncio
async def test_builder_rejects_expiration_in_the_past() -> None:
    store = RecordingNonceStore()
    builder = MessageBuilder(store, clock=lambda: ISSUED_AT + timedelta(hours=1))

    with pytest.raises(InvalidFieldError):
        await builder.build(**_fields(expiration_time=ISSUED_AT + timedelta(minutes=1)))

    assert store.issued == []


@pytest.mark.asyncio
async def test_builder_rejects_reused_nonce() -> None:
    builder = MessageBuilder(InMemoryNonceStore())
    await builder.build(**_fields(issued_at=None))

    with pytest.raises(InvalidFieldError):
        await builder.build(**_fields(issued_at=None))


@pytest.mark.asyncio
async def test_builder_rejects_not_before_beyond_nonce_lifetime() -> None:
    store = RecordingNonceStore()
    builder = MessageBuilder(store, default_ttl_seconds=600, clock=lambda: ISSUED_AT)

    with pytest.raises(InvalidFieldError) as exc_info:
        await builder.build(**_fields(not_before=ISSUED_AT + timedelta(hours=1)))

    assert exc_info.value.field_name == "not_before"
    assert store.issued == []


@pytest.mark.asyncio
async def test_builder_accepts_not_before_inside_nonce_lifetime() -> None:
    store = RecordingNonceStore()
    builder = MessageBuilder(store, default_ttl_seconds=600, clock=lambda: ISSUED_AT)

    _, message = await builder.build(**_fields(not_before=ISSUED_AT + timedelta(minutes=5)))

    assert store.issued == [(message.nonce, 600)]
