from __future__ import annotations

import logging
import string
import uuid
from datetime import datetime, UTC
from typing import Dict, List, Optional, Union

from sanctions.models import (
    NOT_A_SANCTION,
    Sanction,
    SanctionStatus,
    UserRef,
    Vote,
    VoteChoice,
    _NotASanction,
)
from sanction_db import get_sanction_by_uuid, get_votes

logger = logging.getLogger(__name__)

_MAX_ID = 1 << 128
_HEX_DIGITS = set(string.hexdigits.lower())
_ALPHADECIMAL_DIGITS = string.digits + string.ascii_lowercase
# Flow stores topic ids as 88 bits, written as 22 hex digits
_FLOW_HEX_LENGTH = 22
_MAX_ALPHADECIMAL_LENGTH = 25


def _to_alphadecimal(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHADECIMAL_DIGITS[rem])
    return "".join(reversed(digits))


def parse_sanction_id(text) -> Optional[str]:
    """
    Parse topic title text into a canonical sanction id.

    Accepts Flow's hex form, its alphadecimal (base 36) title form, or a dashed
    UUID. Returns the lower-case alphadecimal form, or None if `text` is not an id.
    """
    if not isinstance(text, str):
        return None
    text = text.strip().lower()
    if not text or not text.isascii():
        return None

    try:
        if len(text) == 36 and text.count("-") == 4:
            value = uuid.UUID(text).int
        elif len(text) == _FLOW_HEX_LENGTH and set(text) <= _HEX_DIGITS:
            value = int(text, 16)
        elif text.isalnum() and len(text) <= _MAX_ALPHADECIMAL_LENGTH:
            value = int(text, 36)
        else:
            return None
    except ValueError:
        return None

    if value >= _MAX_ID:
        return None
    return _to_alphadecimal(value)


def _from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, UTC)


def build_sanction(row: Dict, vote_rows: List[Dict]) -> Sanction:
    """Turn store rows into a Sanction."""
    votes = [
        Vote(
            voter=UserRef(name=v["voter_name"], id=v["voter_id"]),
            choice=VoteChoice(v["choice"]),
            cast_at=_from_timestamp(v["cast_at"]),
            period=v["period"],
        )
        for v in vote_rows
    ]
    return Sanction(
        id=row["topic_uuid"],
        target=UserRef(name=row["target_name"], id=row["target_id"]),
        proposed_at=_from_timestamp(row["proposed_at"]),
        voting_deadline=_from_timestamp(row["voting_deadline"]),
        status=SanctionStatus(row["status"]),
        votes=votes,
        row_id=row["id"],
    )


def load_sanction(sanction_id: str) -> Union[Sanction, _NotASanction]:
    row = get_sanction_by_uuid(sanction_id)
    if row is None:
        return NOT_A_SANCTION
    return build_sanction(row, get_votes(row["id"]))


def resolve(topic_title_text) -> Union[Sanction, _NotASanction]:
    """
    Map a topic title to the sanction it holds.

    Most topics are ordinary discussions; for those, and for any text that
    does not parse as an id, NOT_A_SANCTION is returned.
    """
    sanction_id = parse_sanction_id(topic_title_text)
    if sanction_id is None:
        return NOT_A_SANCTION

    sanction = load_sanction(sanction_id)
    if not sanction:
        logger.debug(f"Topic {sanction_id} is not a sanction")
    return sanction
