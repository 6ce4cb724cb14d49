import sys
import os
import uuid
from datetime import datetime, timedelta, UTC

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import sanction_db
from sanction_db import init_db, store_sanction, upsert_vote
from sanctions.models import NOT_A_SANCTION, Sanction, SanctionStatus, VoteChoice
from sanctions.services.identity import parse_sanction_id, resolve


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    db_file = tmp_path / "sanctions_test.db"
    monkeypatch.setattr(sanction_db, "DB_PATH", str(db_file))
    init_db()
    yield str(db_file)


def test_parse_alphadecimal_topic_id():
    assert parse_sanction_id("vz5xkz4jr8t6x1u0") == "vz5xkz4jr8t6x1u0"
    # Title text is case-insensitive and leading zeros are not significant
    assert parse_sanction_id("VZ5XKZ4JR8T6X1U0") == "vz5xkz4jr8t6x1u0"
    assert parse_sanction_id("00abc") == "abc"


def test_parse_hex_and_dashed_forms():
    hex_id = "0123456789abcdef012345"
    parsed = parse_sanction_id(hex_id)
    assert parsed is not None
    assert int(parsed, 36) == int(hex_id, 16)
    assert parse_sanction_id(hex_id.upper()) == parsed
    assert parse_sanction_id(str(uuid.UUID(int=12345))) == "9ix"


@pytest.mark.parametrize("text", [
    None,
    "",
    "   ",
    42,
    b"vz5xkz4jr8t6x1u0",
    "제재안",
    "Topic:vz5xkz4jr8t6x1u0",
    "not a topic",
    "vz5xkz4jr8t6x1u0!",
    "z" * 25,
    "a" * 40,
    "12345678-1234-1234-1234-12345678zzzz",
    "----",
])
def test_malformed_titles_are_not_sanctions(text):
    assert parse_sanction_id(text) is None
    assert resolve(text) is NOT_A_SANCTION


def test_well_formed_id_without_record(temp_db):
    result = resolve("vz5xkz4jr8t6x1u0")
    assert result is NOT_A_SANCTION
    assert not result


def test_resolve_stored_sanction_with_votes(temp_db):
    proposed = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
    deadline = proposed + timedelta(days=5)
    row_id = store_sanction("vz5xkz4jr8t6x1u0", "Target", 7, proposed.timestamp(), deadline.timestamp())
    upsert_vote(row_id, "Alice", 11, "agree", 3, (proposed + timedelta(hours=1)).timestamp())

    sanction = resolve("VZ5XKZ4JR8T6X1U0".lower())

    assert isinstance(sanction, Sanction)
    assert sanction.id == "vz5xkz4jr8t6x1u0"
    assert sanction.row_id == row_id
    assert sanction.target.name == "Target"
    assert sanction.status == SanctionStatus.PROPOSED
    assert sanction.voting_deadline == deadline
    assert len(sanction.votes) == 1
    assert sanction.votes[0].choice == VoteChoice.AGREE
    assert sanction.votes[0].period == 3


def test_resolve_survives_store_failure(tmp_path, monkeypatch):
    # A directory is not a database; the lookup fails and is treated as "not found"
    monkeypatch.setattr(sanction_db, "DB_PATH", str(tmp_path))
    assert resolve("vz5xkz4jr8t6x1u0") is NOT_A_SANCTION
