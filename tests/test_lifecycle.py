import asyncio
import sys
import os
from datetime import datetime, timedelta, UTC

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import sanction_db
from config import AGREE_TEMPLATE_TITLE, DISAGREE_TEMPLATE_TITLE, SANCTIONS_BOT_NAME, VOTING_PERIOD_DAYS
from sanction_db import get_db_connection, init_db
from sanctions.models import SanctionStatus, Tally, TopicPost, UserRef, VoteChoice
from sanctions.services import lifecycle, notifications, tally as tally_service
from sanctions.services.identity import resolve
from sanctions.services.lifecycle import (
    check_new_votes,
    expire_overdue,
    is_expired,
    mark_enacted,
    mark_expired,
    propose,
)
from sanctions.services.metrics import reset_stats, stats
from sanctions.services.tally import tally

TOPIC = "vz5xkz4jr8t6x1u0"
T0 = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

AGREE = "{{%s}}" % AGREE_TEMPLATE_TITLE
DISAGREE = "{{%s}}" % DISAGREE_TEMPLATE_TITLE


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    db_file = tmp_path / "sanctions_test.db"
    monkeypatch.setattr(sanction_db, "DB_PATH", str(db_file))
    init_db()
    yield str(db_file)


@pytest.fixture(autouse=True)
def isolated_state():
    delivered = []
    tally_service.set_vote_right_predicate(lambda user: True)
    notifications.set_deliver(delivered.append)
    lifecycle._sanction_locks.clear()
    reset_stats()
    yield delivered
    tally_service.set_vote_right_predicate(None)
    notifications.set_deliver(None)
    lifecycle._sanction_locks.clear()


def post(author, content, minutes, post_id=None):
    return TopicPost(
        post_id=post_id or f"{author}-{minutes}",
        author=UserRef(name=author, id=abs(hash(author)) % 10000),
        timestamp=T0 + timedelta(minutes=minutes),
        content=content,
    )


def count_vote_rows():
    conn = get_db_connection()
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM sanction_votes")
    count = cur.fetchone()[0]
    conn.close()
    return count


def test_propose_stores_and_notifies_target(temp_db, isolated_state):
    target = UserRef(name="Target", id=7)
    sanction = propose(TOPIC, target, now=T0)

    assert sanction is not None
    assert sanction.voting_deadline == T0 + timedelta(days=VOTING_PERIOD_DAYS)
    assert resolve(TOPIC).row_id == sanction.row_id

    assert len(isolated_state) == 1
    event = isolated_state[0]
    assert event.type == notifications.EVENT_PROPOSED
    assert event.extra["target-id"] == 7
    assert stats["sanctions_proposed"] == 1


def test_propose_rejects_bad_topic_id(temp_db, isolated_state):
    assert propose("not a topic", UserRef(name="Target")) is None
    assert isolated_state == []


def test_propose_by_bot_sends_no_notification(temp_db, isolated_state):
    propose(TOPIC, UserRef(name="Target", id=7), now=T0, agent=UserRef(name=SANCTIONS_BOT_NAME))
    assert isolated_state == []
    assert stats["notifications_suppressed"] == 1


def test_proposing_same_topic_twice_keeps_first_sanction(temp_db, isolated_state):
    first = propose(TOPIC, UserRef(name="Target", id=7), now=T0)
    again = propose(TOPIC, UserRef(name="Someone", id=9), now=T0 + timedelta(days=3))

    assert again.row_id == first.row_id
    assert again.target.name == "Target"
    assert again.voting_deadline == first.voting_deadline
    assert [e.extra["target-id"] for e in isolated_state] == [7]
    assert stats["sanctions_proposed"] == 1


def test_is_expired_at_deadline(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    deadline = sanction.voting_deadline

    assert not is_expired(sanction, deadline - timedelta(seconds=1))
    assert is_expired(sanction, deadline)


def test_is_expired_is_monotonic(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    deadline = sanction.voting_deadline

    checks = [is_expired(sanction, deadline + timedelta(seconds=s)) for s in range(-5, 50, 5)]
    first_true = checks.index(True)
    assert all(checks[first_true:])


def test_decided_sanction_is_expired_before_deadline(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    assert mark_enacted(sanction)
    assert is_expired(sanction, T0)


@pytest.mark.asyncio
async def test_later_vote_supersedes_earlier_one(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    posts = [
        post("A", f"{AGREE} proposal is fair", 1),
        post("B", AGREE, 2),
        post("A", f"changed my mind {DISAGREE}", 3),
    ]

    recorded = await check_new_votes(sanction, posts)

    assert {(v.voter.name, v.choice) for v in recorded} == {
        ("A", VoteChoice.DISAGREE),
        ("B", VoteChoice.AGREE),
    }
    assert tally(sanction) == Tally(agree=1, disagree=1)
    assert tally(resolve(TOPIC)) == Tally(agree=1, disagree=1)


@pytest.mark.asyncio
async def test_rescan_records_nothing_new(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    posts = [post("A", AGREE, 1), post("B", DISAGREE, 2)]

    assert len(await check_new_votes(sanction, posts)) == 2
    assert await check_new_votes(sanction, posts) == []

    posts.append(post("B", AGREE, 10))
    changed = await check_new_votes(sanction, posts)
    assert [(v.voter.name, v.choice) for v in changed] == [("B", VoteChoice.AGREE)]
    assert count_vote_rows() == 2
    assert tally(sanction) == Tally(agree=2, disagree=0)


@pytest.mark.asyncio
async def test_ignored_posts(temp_db):
    tally_service.set_vote_right_predicate(lambda user: user.name != "Newbie")
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    posts = [
        post("Target", DISAGREE, 1),
        post(SANCTIONS_BOT_NAME, AGREE, 2),
        post("Newbie", AGREE, 3),
        post("C", "{{%s" % AGREE_TEMPLATE_TITLE, 4),
        post("D", f"{AGREE} {DISAGREE}", 5),
        post("E", "no vote here", 6),
        post("F", AGREE, 7),
    ]

    recorded = await check_new_votes(sanction, posts)

    assert [v.voter.name for v in recorded] == ["F"]
    assert tally(sanction) == Tally(agree=1, disagree=0)


@pytest.mark.asyncio
async def test_posts_are_read_in_time_order(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    # Thread order differs from time order: the disagree was posted later
    posts = [post("A", DISAGREE, 20), post("A", AGREE, 5)]

    await check_new_votes(sanction, posts)
    assert tally(sanction) == Tally(agree=0, disagree=1)


@pytest.mark.asyncio
async def test_concurrent_viewers_never_lose_or_duplicate_votes(temp_db):
    sanction_a = propose(TOPIC, UserRef(name="Target"), now=T0)
    posts = [
        post("A", AGREE, 1),
        post("B", DISAGREE, 2),
        post("C", AGREE, 3),
        post("D", "{{%s|7}}" % AGREE_TEMPLATE_TITLE, 4),
    ]

    viewers = [resolve(TOPIC) for _ in range(6)]
    results = await asyncio.gather(*(check_new_votes(s, posts) for s in viewers))

    assert sum(len(r) for r in results) == 4
    assert count_vote_rows() == 4
    fresh = resolve(TOPIC)
    assert tally(fresh) == Tally(agree=3, disagree=1)
    assert {v.voter.name for v in fresh.votes} == {"A", "B", "C", "D"}
    assert sanction_a.row_id == fresh.row_id


@pytest.mark.asyncio
async def test_store_keeps_one_vote_per_voter_across_workers(temp_db, monkeypatch):
    propose(TOPIC, UserRef(name="Target"), now=T0)
    posts = [
        post("A", AGREE, 1),
        post("B", DISAGREE, 2),
        post("C", AGREE, 3),
    ]
    newer = posts + [post("B", AGREE, 10)]

    # Each worker read the sanction before any vote was written and holds its own lock
    workers = [resolve(TOPIC) for _ in range(4)]
    monkeypatch.setattr(lifecycle, "_reload_votes", lambda sanction: None)

    recorded = []
    recorded += await check_new_votes(workers[0], newer)
    for worker in workers[1:]:
        lifecycle._sanction_locks.clear()
        recorded += await check_new_votes(worker, posts)

    assert len(recorded) == 3
    assert count_vote_rows() == 3
    fresh = resolve(TOPIC)
    assert tally(fresh) == Tally(agree=3, disagree=0)
    assert {v.voter.name for v in fresh.votes} == {"A", "B", "C"}


@pytest.mark.asyncio
async def test_lock_is_dropped_when_sanction_leaves_proposed(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    stale = resolve(TOPIC)

    await check_new_votes(sanction, [post("A", AGREE, 1)])
    assert TOPIC in lifecycle._sanction_locks

    assert mark_expired(sanction)
    assert TOPIC not in lifecycle._sanction_locks

    assert await check_new_votes(stale, [post("B", AGREE, 2)]) == []
    assert TOPIC not in lifecycle._sanction_locks


@pytest.mark.asyncio
async def test_expiry_sweep_drops_locks(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    await check_new_votes(sanction, [post("A", AGREE, 1)])

    assert expire_overdue(now=T0 + timedelta(days=VOTING_PERIOD_DAYS)) == 1
    assert lifecycle._sanction_locks == {}


@pytest.mark.asyncio
async def test_frozen_sanction_takes_no_votes(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    assert mark_expired(sanction)

    assert await check_new_votes(sanction, [post("A", AGREE, 1)]) == []
    assert count_vote_rows() == 0


@pytest.mark.asyncio
async def test_stale_copy_sees_status_change(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)
    stale = resolve(TOPIC)
    assert mark_expired(sanction)

    assert await check_new_votes(stale, [post("A", AGREE, 1)]) == []
    assert stale.status == SanctionStatus.EXPIRED


def test_status_only_leaves_proposed_once(temp_db):
    sanction = propose(TOPIC, UserRef(name="Target"), now=T0)

    assert mark_expired(sanction)
    assert not mark_enacted(sanction)
    assert not mark_expired(sanction)
    assert resolve(TOPIC).status == SanctionStatus.EXPIRED

    # A stale copy cannot move it either
    stale = resolve(TOPIC)
    stale.status = SanctionStatus.PROPOSED
    assert not mark_enacted(stale)
    assert resolve(TOPIC).status == SanctionStatus.EXPIRED


def test_expire_overdue(temp_db):
    propose(TOPIC, UserRef(name="Old"), now=T0)
    propose("abc123", UserRef(name="Recent"), now=T0 + timedelta(days=10))

    assert expire_overdue(now=T0 + timedelta(days=VOTING_PERIOD_DAYS)) == 1
    assert resolve(TOPIC).status == SanctionStatus.EXPIRED
    assert resolve("abc123").status == SanctionStatus.PROPOSED
    assert expire_overdue(now=T0 + timedelta(days=VOTING_PERIOD_DAYS)) == 0
