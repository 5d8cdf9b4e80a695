"""Tests pour l'extraction de l'identifiant créé depuis un reçu."""

import pytest

from anchor_backend.domain.entities import LogEntry, Receipt
from anchor_backend.domain.errors import ParseError
from anchor_backend.domain.receipt_parser import (
    ZERO_ADDRESS,
    CreationEventSchema,
    parse_created_id,
)

OWNER = "0x" + "ab" * 20
OTHER = "0x" + "cd" * 20
TX = "0x" + "01" * 32


def _receipt(*logs: LogEntry) -> Receipt:
    return Receipt(tx_hash=TX, block_number=10, status=1, logs=logs)


def _mint(token_id) -> LogEntry:
    return LogEntry("Transfer", {"from": ZERO_ADDRESS, "to": OWNER, "tokenId": token_id})


def test_parse_created_id_single_event():
    assert parse_created_id(_receipt(_mint(7))) == 7


def test_parse_created_id_ignores_event_position():
    approval = LogEntry("Approval", {"owner": OWNER, "approved": OTHER, "tokenId": 3})
    custom = LogEntry("MetadataUpdate", {"_tokenId": 9})
    assert parse_created_id(_receipt(approval, custom, _mint(12))) == 12


def test_parse_created_id_skips_plain_transfers():
    transfer = LogEntry("Transfer", {"from": OTHER, "to": OWNER, "tokenId": 4})
    assert parse_created_id(_receipt(transfer, _mint(5))) == 5


def test_parse_created_id_accepts_string_ids():
    assert parse_created_id(_receipt(_mint("42"))) == 42


def test_parse_created_id_missing_event_is_parse_error():
    with pytest.raises(ParseError) as exc_info:
        parse_created_id(_receipt(LogEntry("Approval", {"tokenId": 1})))
    assert exc_info.value.tx_hash == TX
    assert "Transfer" in exc_info.value.message


def test_parse_created_id_non_integer_id():
    with pytest.raises(ParseError):
        parse_created_id(_receipt(_mint("not-a-number")))


def test_parse_created_id_custom_schema_without_origin():
    schema = CreationEventSchema(name="Anchored", id_field="recordId", origin_field=None)
    receipt = _receipt(LogEntry("Anchored", {"recordId": 99, "uri": "ipfs://x"}))
    assert parse_created_id(receipt, schema) == 99
