import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError

from election_core import db
from election_core.database.models import Ballot, Election, VoteReceipt, Voter
from election_core.errors import (
    AlreadyVotedError,
    ElectionNotActiveError,
    InvalidSelectionError,
    StorageConflictError,
    VoterNotFoundError,
)
from election_core.tabulation.results import position_results
from election_core.voting import casting
from election_core.voting.casting import cast_ballot, validate_voter
from election_core.voting.receipts import receipt_digest, verify_receipt

MID_MORNING = datetime(2025, 3, 14, 10, 15, tzinfo=timezone.utc)


def voter(voter_id="VOTER12345"):
    return Voter.query.filter_by(voter_id=voter_id).one()


def test_validate_voter_returns_summary(seeded):
    summary = validate_voter("voter12345")
    assert summary["voterId"] == "VOTER12345"
    assert summary["name"] == "Jordan Lee"
    assert summary["house"] == "red"
    assert summary["hasVoted"] is False


@pytest.mark.parametrize("bad_id", ["VOTER99999", "12345", "", None, "VOTER1234X"])
def test_validate_voter_unknown(seeded, bad_id):
    with pytest.raises(VoterNotFoundError):
        validate_voter(bad_id)


def test_single_selection_scenario(seeded, clock):
    receipt = cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])

    results = position_results("President")
    alice = next(c for c in results["candidates"] if c["name"] == "Alice")
    bob = next(c for c in results["candidates"] if c["name"] == "Bob")
    assert alice["voteCount"] == 1
    assert alice["percentage"] == 100
    assert bob["voteCount"] == 0
    assert results["totalVotes"] == 1

    jordan = voter()
    assert jordan.has_voted is True
    assert jordan.voted_at.replace(tzinfo=timezone.utc) == clock.now()
    assert receipt.voted_at == clock.now()
    assert db.session.get(Election, seeded.election_id).voted_count == 1
    assert Ballot.query.count() == 1


def test_receipt_is_unlinked_and_verifiable(seeded):
    receipt = cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])

    assert "VOTER12345" not in receipt.token
    stored = VoteReceipt.query.one()
    assert stored.token_hash != receipt.token
    assert not hasattr(stored, "voter_id")
    assert verify_receipt(receipt.token) is True
    assert verify_receipt("not-a-real-token") is False


def test_receipt_order_does_not_follow_ballot_order(seeded, monkeypatch):
    # Issue tokens whose digests sort opposite to the order they are cast in
    first_token, second_token = sorted(["receipt-one", "receipt-two"], key=receipt_digest, reverse=True)
    tokens = iter([first_token, second_token])
    monkeypatch.setattr(casting, "new_receipt_token", lambda: next(tokens))

    cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])
    cast_ballot("VOTER23456", [("President", seeded.bob_id)], [])

    assert [c.name for c in VoteReceipt.__table__.columns] == ["token_hash", "election_id"]
    stored = [r.token_hash for r in VoteReceipt.query.order_by(VoteReceipt.token_hash).all()]
    assert stored == [receipt_digest(second_token), receipt_digest(first_token)]

    # Lining receipts up against ballots by position points at the wrong voter
    ballots = Ballot.query.order_by(Ballot.id).all()
    rank = stored.index(receipt_digest(first_token))
    assert ballots[rank].voter.voter_id == "VOTER23456"

    if db.engine.dialect.name == "sqlite":
        with pytest.raises(OperationalError):
            db.session.execute(text("SELECT rowid FROM vote_receipts"))
        db.session.rollback()


def test_second_ballot_reports_prior_vote(seeded, clock):
    cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])
    first_vote = clock.now()

    clock.set(datetime(2025, 3, 14, 11, 0, tzinfo=timezone.utc))
    with pytest.raises(AlreadyVotedError) as excinfo:
        cast_ballot("VOTER12345", [("President", seeded.bob_id)], [])

    err = excinfo.value
    assert err.voter_id == "VOTER12345"
    assert err.name == "Jordan Lee"
    assert err.voted_at == first_vote
    assert err.to_dict()["voter"]["votedAt"] == first_vote.isoformat()
    assert Ballot.query.count() == 1

    with pytest.raises(AlreadyVotedError):
        validate_voter("VOTER12345")


@pytest.mark.parametrize("moment", [
    datetime(2025, 3, 14, 7, 59, tzinfo=timezone.utc),
    datetime(2025, 3, 14, 16, 0, tzinfo=timezone.utc),
])
def test_voting_closed_outside_window(seeded, clock, moment):
    clock.set(moment)
    with pytest.raises(ElectionNotActiveError):
        cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])
    assert voter().has_voted is False
    assert Ballot.query.count() == 0


def test_no_current_election_means_not_active(seeded):
    election = db.session.get(Election, seeded.election_id)
    election.is_current = False
    db.session.commit()

    with pytest.raises(ElectionNotActiveError) as excinfo:
        cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])
    assert excinfo.value.payload["phase"] == "config-error"


def test_unknown_voter_is_rejected(seeded):
    with pytest.raises(VoterNotFoundError):
        cast_ballot("VOTER00000", [("President", seeded.alice_id)], [])


def test_voter_from_another_election_is_unknown(seeded):
    other = Election(title="Old", start_date="2024-03-14", start_time="08:00", end_time="16:00")
    db.session.add(other)
    db.session.flush()
    db.session.add(Voter(voter_id="VOTER55555", name="Old Voter", election_id=other.id))
    db.session.commit()

    with pytest.raises(VoterNotFoundError):
        cast_ballot("VOTER55555", [("President", seeded.alice_id)], [])


def _invalid_cases(s):
    return [
        ([], []),
        ([("Treasurer", s.alice_id)], []),
        ([("President", s.carol_id)], []),
        ([("President", 9999)], []),
        ([("President", s.alice_id)], ["President"]),
        ([("President", s.alice_id), (str(s.president_id), s.bob_id)], []),
        # Dan is for Blue house only; Jordan is in Red
        ([("House Prefect", s.dan_id)], []),
    ]


def test_invalid_selections_write_nothing(seeded):
    for selections, abstentions in _invalid_cases(seeded):
        with pytest.raises(InvalidSelectionError):
            cast_ballot("VOTER12345", selections, abstentions)

    assert voter().has_voted is False
    assert Ballot.query.count() == 0
    assert VoteReceipt.query.count() == 0
    assert db.session.get(Election, seeded.election_id).voted_count == 0


def test_inactive_candidate_and_position_are_rejected(seeded):
    from election_core.database.models import Candidate, Position

    db.session.get(Candidate, seeded.bob_id).is_active = False
    db.session.commit()
    with pytest.raises(InvalidSelectionError):
        cast_ballot("VOTER12345", [("President", seeded.bob_id)], [])

    db.session.get(Position, seeded.prefect_id).is_active = False
    db.session.commit()
    with pytest.raises(InvalidSelectionError):
        cast_ballot("VOTER12345", [], ["House Prefect"])


def test_abstention_and_partial_ballots(seeded):
    cast_ballot("VOTER12345", [], ["House Prefect"])
    cast_ballot("VOTER23456", [("president", seeded.bob_id)], [])

    ballots = Ballot.query.order_by(Ballot.id).all()
    assert len(ballots) == 2
    assert ballots[0].is_abstention is True
    assert ballots[0].candidate_id is None
    assert ballots[1].candidate_id == seeded.bob_id

    prefect = position_results("House Prefect")
    assert prefect["abstentions"] == {"count": 1, "percentage": 100}
    assert prefect["totalVotes"] == 1

    # Sam skipped the prefect race entirely: no row at all
    sam = voter("VOTER23456")
    assert [b.position_id for b in sam.ballots] == [seeded.president_id]


def test_full_ballot_by_position_id(seeded):
    receipt = cast_ballot(
        "VOTER23456",
        [(seeded.president_id, seeded.alice_id), (str(seeded.prefect_id), seeded.dan_id)],
        [],
    )
    assert receipt.positions == 2
    assert Ballot.query.count() == 2


def test_ballot_cast_is_logged_without_choices(seeded, audit_log):
    receipt = cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])

    with open(audit_log.log_file) as f:
        entries = [json.loads(line) for line in f if line.strip()]
    cast = [e for e in entries if e["action"] == "ballot_cast"]
    assert len(cast) == 1
    assert cast[0]["actor"] == "VOTER12345"
    assert receipt.token not in json.dumps(cast[0])
    assert "Alice" not in json.dumps(cast[0])


def test_audit_failure_does_not_fail_the_vote(seeded, audit_log, monkeypatch):
    class BrokenKey:
        def sign(self, data):
            raise OSError("HSM offline")

    monkeypatch.setattr(audit_log, "signing_key", BrokenKey())
    receipt = cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])
    assert receipt.token
    assert voter().has_voted is True


def test_lost_race_is_retried_and_reports_winner(seeded, monkeypatch):
    winner_time = datetime(2025, 3, 14, 10, 14, 59, tzinfo=timezone.utc)
    real_token = casting.new_receipt_token

    def token_after_concurrent_win():
        # Another station flips the flag between our read and our write
        db.session.execute(
            update(Voter)
            .where(Voter.voter_id == "VOTER12345")
            .values(has_voted=True, voted_at=winner_time)
        )
        db.session.commit()
        monkeypatch.setattr(casting, "new_receipt_token", real_token)
        return real_token()

    monkeypatch.setattr(casting, "new_receipt_token", token_after_concurrent_win)

    with pytest.raises(AlreadyVotedError) as excinfo:
        cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])
    assert excinfo.value.voted_at == winner_time
    assert Ballot.query.count() == 0


def test_existing_ballot_row_blocks_a_bypassed_flag(seeded):
    jordan = voter()
    db.session.add(Ballot(
        voter_id=jordan.id, election_id=seeded.election_id, position_id=seeded.president_id,
        candidate_id=seeded.bob_id, cast_at=MID_MORNING,
    ))
    db.session.commit()

    with pytest.raises(StorageConflictError):
        cast_ballot("VOTER12345", [("President", seeded.alice_id)], [])

    # Rolled back as a unit: flag, counter and receipt untouched
    assert voter().has_voted is False
    assert voter().voted_at is None
    assert db.session.get(Election, seeded.election_id).voted_count == 0
    assert VoteReceipt.query.count() == 0
    assert Ballot.query.count() == 1
