import logging
from itertools import combinations

import pytest

from open_play_scheduler.scheduler import (
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    InsufficientPlayers,
    Match,
    NumberingError,
    PlayerQuota,
    RotationPolicy,
    TeammateHistory,
    TooManyPlayers,
    analyze_rotation,
    build_initial_schedule,
    build_remaining_schedule,
    completed_to_matches,
    next_match_number,
    regenerate_schedule,
    rotation_frame,
    schedule_from_records,
    seed_quota,
    split_by_status,
    teammate_frame,
)
from open_play_scheduler.records import sanitize_completed_matches


def roster(n: int) -> list:
    return [f"p{i}" for i in range(1, n + 1)]


def completed(number, players, **extra) -> dict:
    record = {"matchNumber": number, "players": players, "status": "completed"}
    record.update(extra)
    return record


def assert_structure(m: Match) -> None:
    assert len(m.players) == 4
    assert len(set(m.players)) == 4
    assert len(m.team1) == 2 and len(m.team2) == 2
    assert not set(m.team1) & set(m.team2)
    assert set(m.team1) | set(m.team2) == set(m.players)


# -----------------------------------------------------------------------------
# Policy
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("n, expected", [(4, 2), (5, 2), (6, 3), (7, 3), (8, 4), (9, 4), (11, 5), (12, 6)])
def test_total_matches_two_per_player(n, expected):
    assert RotationPolicy().total_matches(n) == expected


def test_total_matches_fractional_target_spreads_surplus():
    policy = RotationPolicy(target_matches_per_player=1.5)
    assert policy.per_player_cap == 2
    assert policy.total_matches(6) == 3
    assert policy.total_matches(5) == 2


def test_total_matches_capped_by_per_player_limit():
    assert RotationPolicy(target_matches_per_player=1).total_matches(5) == 1
    assert RotationPolicy().total_matches(3) == 0


@pytest.mark.parametrize("kwargs", [
    {"target_matches_per_player": 0},
    {"target_matches_per_player": -1},
    {"court": 0},
    {"max_players": 3},
])
def test_policy_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        RotationPolicy(**kwargs)


# -----------------------------------------------------------------------------
# History / quota
# -----------------------------------------------------------------------------

def test_teammate_history_is_symmetric():
    history = TeammateHistory.from_matches([["a", "b", "c", "d"]])
    assert len(history) == 6
    assert history.has_paired("a", "d") and history.has_paired("d", "a")
    assert not history.has_paired("a", "e")
    assert history.pairings_against("e", ["a", "b"]) == 0
    assert history.pairings_against("c", ["a", "b", "e"]) == 2


def test_player_quota_floors_at_zero_and_orders_by_remaining():
    quota = PlayerQuota(["a", "b", "c"], 2, {"a": 3, "b": 1})
    assert quota.as_dict() == {"a": 0, "b": 1, "c": 2}
    assert quota.owed() == ["b", "c"]
    assert quota.by_priority(["a", "b", "c"]) == ["c", "b", "a"]


# -----------------------------------------------------------------------------
# Initial schedule
# -----------------------------------------------------------------------------

def test_initial_schedule_six_players():
    matches = build_initial_schedule(roster(6))

    assert [m.match_number for m in matches] == [1, 2, 3]
    assert [m.players for m in matches] == [
        ["p1", "p2", "p3", "p4"],
        ["p5", "p6", "p1", "p2"],
        ["p3", "p5", "p4", "p6"],
    ]
    assert matches[2].team1 == ["p3", "p5"]
    assert matches[2].team2 == ["p4", "p6"]
    assert all(m.status == STATUS_SCHEDULED and m.court == 1 for m in matches)


def test_initial_schedule_uses_configured_court():
    matches = build_initial_schedule(roster(8), RotationPolicy(court=3))
    assert {m.court for m in matches} == {3}


@pytest.mark.parametrize("n", range(4, 17))
def test_initial_schedule_coverage_structure_and_quota(n):
    players = roster(n)
    matches = build_initial_schedule(players)
    stats = analyze_rotation(players, matches)

    for m in matches:
        assert_structure(m)
    assert all(1 <= s.match_count <= 2 for s in stats.values())
    assert [m.match_number for m in matches] == list(range(1, len(matches) + 1))


def test_minimum_roster_repeats_the_same_four():
    matches = build_initial_schedule(roster(4))

    assert len(matches) == 2
    assert all(set(m.players) == set(roster(4)) for m in matches)
    assert analyze_rotation(roster(4), matches)["p1"].match_count == 2


@pytest.mark.parametrize("players", [roster(3), ["a", "a", "b", "c"], ["a", None, "b", "c", ""], []])
def test_insufficient_players(players):
    with pytest.raises(InsufficientPlayers):
        build_initial_schedule(players)


def test_too_many_players_when_capped():
    with pytest.raises(TooManyPlayers):
        build_initial_schedule(roster(13), RotationPolicy(max_players=12))
    assert len(build_initial_schedule(roster(12), RotationPolicy(max_players=12))) == 6


# -----------------------------------------------------------------------------
# Remaining schedule
# -----------------------------------------------------------------------------

def test_remaining_without_history_matches_initial():
    players = roster(6)
    remaining = build_remaining_schedule(players, [], 1)
    assert remaining == build_initial_schedule(players)

    stats = analyze_rotation(players, remaining)
    assert all(len(set(m.players) & set(players)) == 4 for m in remaining)
    assert all(s.match_count <= 2 for s in stats.values())


def test_remaining_after_one_completed_match():
    players = roster(6)
    done = [completed(1, ["p1", "p2", "p3", "p4"])]

    quota = seed_quota(players, done)
    assert all(quota[p] < quota[q] for p in ("p1", "p2", "p3", "p4") for q in ("p5", "p6"))

    matches = build_remaining_schedule(players, done, 2)
    assert [m.match_number for m in matches] == [2, 3]
    assert [m.players for m in matches] == [
        ["p5", "p6", "p1", "p2"],
        ["p3", "p5", "p4", "p6"],
    ]

    merged = completed_to_matches(sanitize_completed_matches(done)) + matches
    assert all(s.match_count == 2 for s in analyze_rotation(players, merged).values())


def test_remaining_avoids_completed_pairings_when_possible():
    players = roster(8)
    done = [completed(1, ["p1", "p2", "p3", "p4"])]
    matches = build_remaining_schedule(players, done, 2)
    history = TeammateHistory.from_matches([["p1", "p2", "p3", "p4"]])

    first = matches[0]
    assert not any(history.has_paired(a, b) for a, b in combinations(first.players, 2))


@pytest.mark.parametrize("start", [1, 2, 5, 42])
def test_remaining_numbering_is_contiguous(start):
    matches = build_remaining_schedule(roster(10), [completed(1, ["p1", "p2", "p3", "p4"])], start)
    assert [m.match_number for m in matches] == list(range(start, start + len(matches)))
    assert all(isinstance(m.match_number, int) and m.match_number > 0 for m in matches)


@pytest.mark.parametrize("bad", [0, -3, 1.5, None, "2", True])
def test_remaining_rejects_bad_match_number(bad):
    with pytest.raises(NumberingError):
        build_remaining_schedule(roster(6), [], bad)


def test_remaining_is_idempotent():
    players = roster(9)
    done = [completed(1, ["p1", "p2", "p3", "p4"]), completed(2, ["p5", "p6", "p7", "p8"])]
    assert build_remaining_schedule(players, done, 3) == build_remaining_schedule(players, done, 3)


@pytest.mark.parametrize("raw", [
    {"matchNumber": 1, "players": None, "status": "completed"},
    {"matchNumber": 1, "status": "completed"},
    {"matchNumber": 1, "players": "p1,p2,p3,p4", "status": "completed"},
    {"matchNumber": 1, "players": 42, "status": "completed"},
    {"matchNumber": 1, "players": {"p1": 1}, "status": "completed"},
    {"matchNumber": 1, "players": ["p1", None, "p2", None], "status": "completed"},
    None,
    "garbage",
])
def test_remaining_tolerates_malformed_history(raw):
    players = roster(6)
    matches = build_remaining_schedule(players, [raw], 2)

    assert [m.match_number for m in matches] == [2, 3, 4]
    assert [m.players for m in matches] == [m.players for m in build_initial_schedule(players)]


def test_remaining_tolerates_missing_completed_list():
    assert len(build_remaining_schedule(roster(6), None, 1)) == 3


def test_remaining_accepts_populated_player_refs():
    players = roster(6)
    refs = [{"_id": "p1", "name": "One"}, {"_id": "p2"}, {"id": "p3"}, {"_id": "p4"}]
    by_refs = build_remaining_schedule(players, [completed(1, refs)], 2)
    by_ids = build_remaining_schedule(players, [completed(1, ["p1", "p2", "p3", "p4"])], 2)
    assert by_refs == by_ids


def test_remaining_is_empty_when_schedule_is_complete():
    players = roster(6)
    done = [m.to_dict() for m in build_initial_schedule(players)]
    assert build_remaining_schedule(players, done, 4) == []


def test_remaining_falls_back_to_full_roster_past_quota(caplog):
    # Only p4, p5, p6 are still owed; the fourth seat goes to a player already at quota.
    players = roster(6)
    done = [completed(1, ["p1", "p2", "p3", "p4"]), completed(2, ["p1", "p2", "p3", "p5"])]

    with caplog.at_level(logging.WARNING, logger="open_play_scheduler.scheduler"):
        matches = build_remaining_schedule(players, done, 3)

    assert [m.players for m in matches] == [["p6", "p4", "p5", "p1"]]
    assert "p1 placed beyond their match quota" in caplog.text
    merged = completed_to_matches(sanitize_completed_matches(done)) + matches
    assert analyze_rotation(players, merged)["p1"].match_count == 3


def test_integer_target_of_one_can_leave_players_out():
    stats = analyze_rotation(roster(5), build_initial_schedule(roster(5), RotationPolicy(target_matches_per_player=1)))
    assert [s.match_count for s in stats.values()] == [1, 1, 1, 1, 0]


def test_remaining_is_empty_when_quotas_are_met():
    players = roster(5)
    done = [completed(1, ["p1", "p2", "p3", "p4"]), completed(2, ["p1", "p2", "p3", "p5"])]
    assert build_remaining_schedule(players, done, 3) == []


# -----------------------------------------------------------------------------
# Regeneration workflow
# -----------------------------------------------------------------------------

def test_split_by_status_is_case_insensitive():
    records = [{"status": "Completed"}, {"status": "scheduled"}, {"status": None}, "junk"]
    done, pending = split_by_status(records)
    assert done == [{"status": "Completed"}]
    assert len(pending) == 3


def test_next_match_number_skips_past_renumbered_records():
    done = sanitize_completed_matches([
        {"players": ["a", "b", "c", "d"]},
        completed(3, ["a", "b", "e", "f"]),
    ])
    assert [m.match_number for m in completed_to_matches(done)] == [3, 4]
    assert next_match_number(done) == 5
    assert next_match_number([]) == 1


def test_regenerate_keeps_completed_and_replaces_pending():
    players = roster(6)
    records = [m.to_dict() for m in build_initial_schedule(players)]
    records[0]["status"] = "Completed"
    records[0]["players"] = [{"_id": p} for p in records[0]["players"]]
    records[0]["score"] = "21-15"
    records[0]["winningTeam"] = 1
    records[1]["players"] = None

    matches = regenerate_schedule(players, records)

    assert [m.match_number for m in matches] == [1, 2, 3]
    assert matches[0].status == STATUS_COMPLETED
    assert matches[0].team1 == ["p1", "p2"]
    assert matches[0].score == "21-15"
    assert matches[0].winning_team == 1
    assert [m.status for m in matches[1:]] == [STATUS_SCHEDULED, STATUS_SCHEDULED]
    assert matches[1].players == ["p5", "p6", "p1", "p2"]
    assert all(s.match_count <= 2 for s in analyze_rotation(players, matches).values())


def test_regenerate_keeps_court_of_completed_matches():
    players = roster(8)
    records = [m.to_dict() for m in build_initial_schedule(players)]
    records[0]["status"] = "completed"
    records[0]["court"] = 3
    records[1]["status"] = "completed"
    records[1]["court"] = None

    matches = regenerate_schedule(players, records, RotationPolicy(court=2))

    assert [m.court for m in matches[:2]] == [3, 2]
    assert all(m.court == 2 for m in matches[2:])
    assert schedule_from_records(records)[0].court == 3


def test_schedule_from_records_keeps_statuses_and_skips_bad_rows():
    records = [
        completed(1, ["a", "b", "c", "d"]),
        {"matchNumber": 2, "players": ["a", "b", None, None], "status": "scheduled"},
        {"matchNumber": 3, "players": ["a", "c", "b", "d"]},
    ]
    matches = schedule_from_records(records)
    assert [(m.match_number, m.status) for m in matches] == [(1, STATUS_COMPLETED), (3, STATUS_SCHEDULED)]


# -----------------------------------------------------------------------------
# Analysis
# -----------------------------------------------------------------------------

def test_analyze_rotation_counts_and_ignores_strangers():
    matches = [
        Match(1, 1, ["a", "b", "c", "d"], ["a", "b"], ["c", "d"]),
        Match(2, 1, ["a", "e", "x", "d"], ["a", "e"], ["x", "d"]),
    ]
    stats = analyze_rotation(["a", "b", "c", "d", "e", "f"], matches)
    assert stats["a"].match_count == 2
    assert stats["a"].match_numbers == [1, 2]
    assert stats["f"].match_count == 0
    assert "x" not in stats


def test_analyze_rotation_normalizes_roster_ids():
    matches = [Match(1, 1, ["1", "2", "3", "4"], ["1", "2"], ["3", "4"])]
    stats = analyze_rotation([1, 2, " 3 ", 4, None, 1], matches)
    assert list(stats) == ["1", "2", "3", "4"]
    assert all(s.match_count == 1 for s in stats.values())


def test_rotation_and_teammate_frames():
    matches = [
        Match(1, 1, ["a", "b", "c", "d"], ["a", "b"], ["c", "d"]),
        Match(2, 1, ["a", "b", "c", "d"], ["a", "b"], ["d", "c"]),
    ]
    df = rotation_frame(["a", "b", "c", "d"], matches)
    row = df[df["Player"] == "a"].iloc[0]
    assert row["Matches"] == 2
    assert row["Match numbers"] == "1, 2"
    assert row["Distinct teammates"] == 1
    assert row["Repeated teammates"] == 1

    pairs = teammate_frame(matches)
    assert list(pairs["Times together"]) == [2, 2]
    assert list(pairs["Player A"]) == ["a", "c"]


def test_match_to_dict_uses_collaborator_keys():
    m = build_initial_schedule(roster(4))[0]
    assert m.to_dict() == {
        "matchNumber": 1,
        "court": 1,
        "players": ["p1", "p2", "p3", "p4"],
        "team1": ["p1", "p2"],
        "team2": ["p3", "p4"],
        "status": "scheduled",
        "score": None,
        "winningTeam": None,
    }
