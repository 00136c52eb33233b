from datetime import datetime, timezone

import pytest

from election_core import db
from election_core.database.models import Ballot, Candidate, Election
from election_core.errors import PositionNotFoundError
from election_core.tabulation.analytics import (
    detailed_vote_analysis,
    election_stats,
    empty_patterns,
    hourly_timeline,
    voting_patterns,
    voting_timeline,
)
from election_core.voting.casting import cast_ballot


def at(hour, minute=0, day=14):
    return datetime(2025, 3, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def voted(seeded, clock):
    clock.set(at(9, 5))
    cast_ballot("VOTER12345", [("President", seeded.alice_id), ("House Prefect", seeded.carol_id)], [])
    clock.set(at(11, 40))
    cast_ballot("VOTER23456", [("President", seeded.bob_id)], ["House Prefect"])
    clock.set(at(12, 10))
    cast_ballot("VOTER34567", [("President", seeded.alice_id)], [])
    return seeded


def test_zero_ballots_gives_zeroes(seeded):
    patterns = voting_patterns()
    assert patterns == empty_patterns()
    assert patterns["totalVotes"] == 0
    assert patterns["turnoutPercentage"] == 0
    assert patterns["byClass"] == [] and patterns["byHouse"] == [] and patterns["byYear"] == []


def test_no_current_election(app):
    assert voting_patterns() == empty_patterns()
    assert voting_timeline() == []
    assert election_stats()["totalVoters"] == 0


def test_totals(voted):
    patterns = voting_patterns()
    assert patterns["totalVotes"] == 5
    assert patterns["totalEligibleVoters"] == 3
    assert patterns["turnoutPercentage"] == 167
    assert patterns["averageVotesPerPosition"] == 2.5


def test_demographic_completeness(voted):
    patterns = voting_patterns()
    for key in ("byClass", "byHouse", "byYear", "byGender"):
        assert sum(entry["count"] for entry in patterns[key]) == patterns["totalVotes"]


def test_blank_demographics_bucket_as_unknown(voted):
    houses = {entry["house"]: entry for entry in voting_patterns()["byHouse"]}
    assert set(houses) == {"Blue", "red", "Unknown"}
    assert houses["Unknown"] == {"house": "Unknown", "voters": 1, "count": 1, "percentage": 100}
    assert houses["red"]["count"] == 2
    assert houses["red"]["percentage"] == 200
    # Unknown sorts last
    assert list(houses)[-1] == "Unknown"

    classes = {entry["class"]: entry for entry in voting_patterns()["byClass"]}
    assert classes["10A"]["voters"] == 2
    assert classes["10A"]["count"] == 3


def test_patterns_are_idempotent(voted):
    assert voting_patterns() == voting_patterns()
    assert voting_patterns(position_id="President") == voting_patterns(position_id="President")


def test_position_filter(voted):
    patterns = voting_patterns(position_id=str(voted.prefect_id))
    assert patterns["totalVotes"] == 2
    assert [p["position"] for p in patterns["positions"]] == ["House Prefect"]
    prefect = patterns["positions"][0]
    assert prefect["abstentions"] == 1
    assert {c["name"]: c["voteCount"] for c in prefect["candidates"]} == {"Carol": 1, "Dan": 0}

    with pytest.raises(PositionNotFoundError):
        voting_patterns(position_id="Treasurer")


def test_date_range_uses_local_days(voted):
    ballots = Ballot.query.filter(Ballot.candidate_id == voted.alice_id).all()
    for ballot in ballots:
        ballot.cast_at = at(23, 30, day=13)
    db.session.commit()

    assert voting_patterns(date_from="2025-03-14", date_to="2025-03-14")["totalVotes"] == 3
    assert voting_patterns(date_from="2025-03-13", date_to="2025-03-13")["totalVotes"] == 2
    assert voting_patterns(date_to="2025-03-12") == empty_patterns()

    with pytest.raises(ValueError):
        voting_patterns(date_from="yesterday")


def test_date_range_in_election_timezone(voted):
    election = db.session.get(Election, voted.election_id)
    election.timezone = "Asia/Tokyo"
    db.session.commit()

    # 09:05-12:10 UTC is already 18:05-21:10 on the 14th in Tokyo
    assert voting_patterns(date_from="2025-03-14", date_to="2025-03-14")["totalVotes"] == 5
    assert voting_patterns(date_from="2025-03-15")["totalVotes"] == 0


def test_timeline_is_contiguous_hour_of_day(voted):
    assert voting_timeline() == [
        {"hour": 9, "count": 2},
        {"hour": 10, "count": 0},
        {"hour": 11, "count": 2},
        {"hour": 12, "count": 1},
    ]
    assert voting_patterns()["votingTimeline"] == voting_timeline()


def test_timeline_in_local_hours(voted):
    election = db.session.get(Election, voted.election_id)
    election.timezone = "Asia/Kolkata"
    db.session.commit()

    hours = [bucket["hour"] for bucket in voting_timeline()]
    # UTC+05:30 moves 09:05 to 14:35 and 12:10 to 17:40
    assert hours == [14, 15, 16, 17]


def test_unknown_timezone_falls_back_to_utc(voted, caplog):
    election = db.session.get(Election, voted.election_id)
    election.timezone = "Atlantis/Capital"
    db.session.commit()

    assert [bucket["hour"] for bucket in voting_timeline()] == [9, 10, 11, 12]
    assert "Unknown election timezone" in caplog.text


def test_hourly_timeline_accepts_naive_and_missing_values():
    rows = [datetime(2025, 3, 14, 9, 5), None, at(11, 0)]
    assert hourly_timeline(rows, timezone.utc) == [
        {"hour": 9, "count": 1}, {"hour": 10, "count": 0}, {"hour": 11, "count": 1},
    ]
    assert hourly_timeline([], timezone.utc) == []


def test_election_stats(voted):
    stats = election_stats()
    assert stats["totalVoters"] == 3
    assert stats["votedCount"] == 3
    assert stats["remainingVoters"] == 0
    assert stats["completionPercentage"] == 100
    assert [v["voterId"] for v in stats["recentVoters"]] == ["VOTER34567", "VOTER23456", "VOTER12345"]
    assert stats["votingActivity"]["year"] == {"labels": ["10", "11"], "data": [2, 1]}
    assert stats["votingActivity"]["house"] == {"labels": ["Blue", "red", "Unknown"], "data": [1, 1, 1]}


def test_detailed_vote_analysis_lists_each_voter(voted):
    rows = detailed_vote_analysis()
    assert [r["voterId"] for r in rows] == ["VOTER12345", "VOTER23456", "VOTER34567"]

    jordan, sam, riley = rows
    assert jordan["votedFor"] == {"President": "Alice", "House Prefect": "Carol"}
    assert list(jordan["votedFor"]) == ["President", "House Prefect"]
    assert jordan["votedAt"] == at(9, 5).isoformat()
    assert (jordan["class"], jordan["house"], jordan["year"], jordan["gender"]) == ("10A", "red", "10", "F")

    assert sam["votedFor"] == {"President": "Bob", "House Prefect": "Abstained"}
    assert riley["votedFor"] == {"President": "Alice"}
    assert riley["house"] == "Unknown" and riley["gender"] == "Unknown"


def test_detailed_vote_analysis_date_range(voted):
    assert len(detailed_vote_analysis("2025-03-14", "2025-03-14")) == 3
    assert detailed_vote_analysis(date_from="2025-03-15") == []
    assert detailed_vote_analysis(date_to="2025-03-13") == []
    with pytest.raises(ValueError):
        detailed_vote_analysis(date_from="14/03/2025")


def test_detailed_vote_analysis_names_withdrawn_candidates(voted):
    db.session.get(Candidate, voted.alice_id).is_active = False
    db.session.commit()
    assert detailed_vote_analysis()[0]["votedFor"]["President"] == "Alice"


def test_detailed_vote_analysis_without_votes(seeded):
    assert detailed_vote_analysis() == []


def test_detailed_vote_analysis_without_election(app):
    assert detailed_vote_analysis() == []
