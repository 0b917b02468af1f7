from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from open_play_scheduler.records import NormalizedMatch, sanitize_completed_matches, sanitize_match_record


logger = logging.getLogger(__name__)


PLAYERS_PER_MATCH = 4
MIN_PLAYERS = PLAYERS_PER_MATCH

# Matches each player should ideally play in one Open Play event.
DEFAULT_TARGET_MATCHES_PER_PLAYER = 2
DEFAULT_COURT = 1

STATUS_SCHEDULED = "scheduled"
STATUS_COMPLETED = "completed"
MATCH_STATUSES = (STATUS_SCHEDULED, STATUS_COMPLETED)


class SchedulingError(ValueError):
    """Base class for errors the caller must surface instead of ignoring."""


class InsufficientPlayers(SchedulingError):
    pass


class TooManyPlayers(SchedulingError):
    pass


class NumberingError(SchedulingError):
    """Raised instead of ever emitting a match without a valid match number."""


@dataclass
class RotationPolicy:
    target_matches_per_player: float = DEFAULT_TARGET_MATCHES_PER_PLAYER
    court: int = DEFAULT_COURT
    max_players: Optional[int] = None

    def __post_init__(self) -> None:
        target = self.target_matches_per_player
        if isinstance(target, bool) or not isinstance(target, (int, float)) or not target > 0:
            raise ValueError(f"target_matches_per_player must be positive, got {target!r}")
        if isinstance(self.court, bool) or not isinstance(self.court, int) or self.court < 1:
            raise ValueError(f"court must be an integer >= 1, got {self.court!r}")
        if self.max_players is not None and self.max_players < MIN_PLAYERS:
            raise ValueError(f"max_players must be at least {MIN_PLAYERS}, got {self.max_players!r}")

    @property
    def per_player_cap(self) -> int:
        return math.ceil(self.target_matches_per_player)

    def total_matches(self, num_players: int) -> int:
        """Number of matches a full schedule holds for ``num_players``.

        ceil(n*T/4) slots are wanted; the count is capped at floor(n*ceil(T)/4)
        so the surplus can always be spread without anyone exceeding ceil(T).
        For integer T this is simply floor(n*T/4).
        """

        if num_players < MIN_PLAYERS:
            return 0
        wanted = math.ceil(num_players * self.target_matches_per_player / PLAYERS_PER_MATCH)
        capacity = (num_players * self.per_player_cap) // PLAYERS_PER_MATCH
        return min(wanted, capacity)


@dataclass
class Match:
    match_number: int
    court: int
    players: List[str]
    team1: List[str]
    team2: List[str]
    status: str = STATUS_SCHEDULED
    score: Optional[str] = None
    winning_team: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matchNumber": self.match_number,
            "court": self.court,
            "players": list(self.players),
            "team1": list(self.team1),
            "team2": list(self.team2),
            "status": self.status,
            "score": self.score,
            "winningTeam": self.winning_team,
        }


@dataclass
class PlayerRotation:
    match_count: int = 0
    match_numbers: List[int] = field(default_factory=list)


class TeammateHistory:
    """Symmetric "already shared a match" relation over player pairs."""

    def __init__(self) -> None:
        self._pairs: Counter = Counter()

    @classmethod
    def from_matches(cls, foursomes: Iterable[Sequence[str]]) -> "TeammateHistory":
        history = cls()
        for players in foursomes:
            history.record(players)
        return history

    def record(self, players: Sequence[str]) -> None:
        for a, b in combinations(players, 2):
            if a != b:
                self._pairs[frozenset((a, b))] += 1

    def count(self, a: str, b: str) -> int:
        return self._pairs.get(frozenset((a, b)), 0)

    def has_paired(self, a: str, b: str) -> bool:
        return self.count(a, b) > 0

    def pairings_against(self, candidate: str, placed: Sequence[str]) -> int:
        return sum(1 for other in placed if self.has_paired(candidate, other))

    def __len__(self) -> int:
        return len(self._pairs)


class PlayerQuota:
    """Remaining matches owed per confirmed player, in roster order."""

    def __init__(self, players: Sequence[str], cap: int, appearances: Optional[Mapping[str, int]] = None) -> None:
        appearances = appearances or {}
        self._order: Dict[str, int] = {p: i for i, p in enumerate(players)}
        self._remaining: Dict[str, int] = {p: max(0, cap - int(appearances.get(p, 0))) for p in players}

    @classmethod
    def from_completed(cls, players: Sequence[str], cap: int, completed: Iterable[NormalizedMatch]) -> "PlayerQuota":
        appearances: Counter = Counter()
        for record in completed:
            appearances.update(set(record.players))
        return cls(players, cap, appearances)

    def remaining(self, player: str) -> int:
        return self._remaining.get(player, 0)

    def consume(self, players: Iterable[str]) -> None:
        for p in players:
            if p not in self._remaining:
                continue
            if self._remaining[p] == 0:
                logger.warning("Player %s placed beyond their match quota", p)
            self._remaining[p] = max(0, self._remaining[p] - 1)

    def owed(self) -> List[str]:
        return [p for p in self._order if self._remaining[p] > 0]

    def by_priority(self, players: Iterable[str]) -> List[str]:
        return sorted(players, key=lambda p: (-self.remaining(p), self._order.get(p, len(self._order))))

    def total_owed(self) -> int:
        return sum(self._remaining.values())

    def as_dict(self) -> Dict[str, int]:
        return dict(self._remaining)


def _confirmed_roster(players: Iterable[Any], policy: RotationPolicy) -> List[str]:
    roster: List[str] = []
    seen: set[str] = set()
    for p in players or []:
        if p is None:
            continue
        pid = str(p).strip()
        if not pid:
            continue
        if pid in seen:
            logger.warning("Duplicate confirmed player %s ignored", pid)
            continue
        seen.add(pid)
        roster.append(pid)
    if len(roster) < MIN_PLAYERS:
        raise InsufficientPlayers(f"Need at least {MIN_PLAYERS} players to generate matches, got {len(roster)}")
    if policy.max_players is not None and len(roster) > policy.max_players:
        raise TooManyPlayers(f"Maximum {policy.max_players} players allowed, got {len(roster)}")
    return roster


def _check_match_number(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise NumberingError(f"next match number must be a positive integer, got {value!r}")
    return value


def _choose_foursome(roster: List[str], history: TeammateHistory, quota: PlayerQuota) -> List[str]:
    order = {p: i for i, p in enumerate(roster)}
    pool = quota.owed()
    if len(pool) < PLAYERS_PER_MATCH:
        logger.debug("Only %d players still owed a match; using the full roster", len(pool))
        pool = quota.by_priority(roster)

    anchor = min(pool, key=lambda p: (-quota.remaining(p), order[p]))
    chosen = [anchor]
    while len(chosen) < PLAYERS_PER_MATCH:
        rest = [p for p in pool if p not in chosen]
        nxt = min(
            rest,
            key=lambda p: (history.pairings_against(p, chosen), -quota.remaining(p), order[p]),
        )
        chosen.append(nxt)
    return chosen


def _place_matches(
    roster: List[str],
    history: TeammateHistory,
    quota: PlayerQuota,
    count: int,
    first_number: int,
    court: int,
) -> List[Match]:
    matches: List[Match] = []
    for offset in range(count):
        chosen = _choose_foursome(roster, history, quota)
        history.record(chosen)
        quota.consume(chosen)
        matches.append(
            Match(
                match_number=first_number + offset,
                court=court,
                players=list(chosen),
                team1=chosen[:2],
                team2=chosen[2:],
            )
        )
    return matches


def _verify_numbering(matches: List[Match], first_number: int) -> None:
    for offset, m in enumerate(matches):
        expected = first_number + offset
        number = m.match_number
        if isinstance(number, bool) or not isinstance(number, int) or number != expected:
            raise NumberingError(f"Match numbering error: expected match {expected}, got {number!r}")


def build_initial_schedule(players: Sequence[str], policy: Optional[RotationPolicy] = None) -> List[Match]:
    policy = policy or RotationPolicy()
    roster = _confirmed_roster(players, policy)
    count = policy.total_matches(len(roster))

    history = TeammateHistory()
    quota = PlayerQuota(roster, policy.per_player_cap)
    matches = _place_matches(roster, history, quota, count, 1, policy.court)
    _verify_numbering(matches, 1)

    logger.info(
        "Generated %d doubles matches for %d players (target %s per player)",
        len(matches), len(roster), policy.target_matches_per_player,
    )
    return matches


def build_remaining_schedule(
    players: Sequence[str],
    completed_matches: Optional[Iterable[Any]],
    next_match_number: int,
    policy: Optional[RotationPolicy] = None,
) -> List[Match]:
    """Generate the matches still to be played after ``completed_matches``.

    Completed records are untrusted: each one is sanitized first and a record
    that cannot be resolved to four players counts as if it never happened.
    The result is a pure function of the inputs, so calling it twice with the
    same arguments yields the same schedule.
    """

    first_number = _check_match_number(next_match_number)
    policy = policy or RotationPolicy()
    roster = _confirmed_roster(players, policy)
    completed = sanitize_completed_matches(completed_matches)

    total = policy.total_matches(len(roster))
    history = TeammateHistory.from_matches(c.players for c in completed)
    quota = PlayerQuota.from_completed(roster, policy.per_player_cap, completed)

    remaining = max(0, total - len(completed))
    if quota.total_owed() == 0:
        remaining = 0

    logger.info(
        "Regenerating: %d players, %d completed matches, %d of %d matches remaining",
        len(roster), len(completed), remaining, total,
    )
    if remaining == 0:
        return []

    matches = _place_matches(roster, history, quota, remaining, first_number, policy.court)
    _verify_numbering(matches, first_number)
    return matches


def _record_status(raw: Any) -> str:
    status = raw.get("status") if isinstance(raw, Mapping) else getattr(raw, "status", None)
    if isinstance(status, str) and status.strip().lower() == STATUS_COMPLETED:
        return STATUS_COMPLETED
    return STATUS_SCHEDULED


def split_by_status(records: Optional[Iterable[Any]]) -> tuple[List[Any], List[Any]]:
    """Split raw schedule records into (completed, not completed) by their status field."""

    completed: List[Any] = []
    pending: List[Any] = []
    for raw in records or []:
        if _record_status(raw) == STATUS_COMPLETED:
            completed.append(raw)
        else:
            pending.append(raw)
    return completed, pending


def _completed_numbers(completed: Sequence[NormalizedMatch]) -> List[int]:
    # Missing or repeated numbers are reassigned after the highest known one.
    known = [c.match_number for c in completed if c.match_number is not None]
    spare = max(known, default=0)
    seen: set[int] = set()
    numbers: List[int] = []
    for c in completed:
        number = c.match_number
        if number is None or number in seen:
            spare += 1
            number = spare
        seen.add(number)
        numbers.append(number)
    return numbers


def next_match_number(completed: Sequence[NormalizedMatch]) -> int:
    return max(_completed_numbers(completed), default=0) + 1


def _to_matches(normalized: Sequence[NormalizedMatch], statuses: Sequence[str], court: int) -> List[Match]:
    matches: List[Match] = []
    for c, status, number in zip(normalized, statuses, _completed_numbers(normalized)):
        # Team detail is kept when it was valid, otherwise split positionally.
        team1 = list(c.team1) if c.team1 else list(c.players[:2])
        team2 = list(c.team2) if c.team2 else list(c.players[2:])
        matches.append(
            Match(
                match_number=number,
                court=c.court or court,
                players=list(c.players),
                team1=team1,
                team2=team2,
                status=status,
                score=c.score,
                winning_team=c.winning_team,
            )
        )
    return sorted(matches, key=lambda m: m.match_number)


def completed_to_matches(completed: Sequence[NormalizedMatch], court: int = DEFAULT_COURT) -> List[Match]:
    """Turn sanitized completed records back into ``completed`` matches.

    A record keeps the court it was played on; ``court`` only fills in for
    records that do not carry one. Records that lost their match number (or share one with an earlier record)
    are numbered after the highest known one, in input order.
    """

    return _to_matches(completed, [STATUS_COMPLETED] * len(completed), court)


def schedule_from_records(records: Optional[Iterable[Any]], court: int = DEFAULT_COURT) -> List[Match]:
    """Read a stored schedule (any status) for inspection; unusable records are skipped."""

    normalized: List[NormalizedMatch] = []
    statuses: List[str] = []
    for raw in records or []:
        record = sanitize_match_record(raw)
        if record is None:
            continue
        normalized.append(record)
        statuses.append(_record_status(raw))
    return _to_matches(normalized, statuses, court)


def regenerate_schedule(
    players: Sequence[str],
    records: Optional[Iterable[Any]],
    policy: Optional[RotationPolicy] = None,
) -> List[Match]:
    """Recompute an event schedule after some of its matches were played.

    Completed records are kept (sanitized), everything else is discarded and
    replaced by freshly generated matches numbered after the completed ones.
    """

    policy = policy or RotationPolicy()
    completed_raw, pending = split_by_status(records)
    completed = sanitize_completed_matches(completed_raw)
    start = next_match_number(completed)
    new_matches = build_remaining_schedule(players, completed, start, policy)
    logger.info(
        "Kept %d completed matches, replaced %d pending with %d new",
        len(completed), len(pending), len(new_matches),
    )
    return completed_to_matches(completed, policy.court) + new_matches


def seed_quota(
    players: Sequence[str],
    completed_matches: Optional[Iterable[Any]],
    policy: Optional[RotationPolicy] = None,
) -> Dict[str, int]:
    """Remaining quota per player as seen at the start of a regeneration."""

    policy = policy or RotationPolicy()
    roster = _confirmed_roster(players, policy)
    completed = sanitize_completed_matches(completed_matches)
    return PlayerQuota.from_completed(roster, policy.per_player_cap, completed).as_dict()


def analyze_rotation(players: Sequence[str], schedule: Iterable[Match]) -> Dict[str, PlayerRotation]:
    stats: Dict[str, PlayerRotation] = {}
    for p in players or []:
        pid = str(p).strip() if p is not None else ""
        if pid:
            stats.setdefault(pid, PlayerRotation())
    for m in schedule:
        for pid in m.players:
            entry = stats.get(pid)
            if entry is None:
                continue
            entry.match_count += 1
            entry.match_numbers.append(m.match_number)
    return stats


def teammate_pair_counts(schedule: Iterable[Match]) -> Dict[frozenset, int]:
    counts: Dict[frozenset, int] = defaultdict(int)
    for m in schedule:
        for team in (m.team1, m.team2):
            if len(team) == 2:
                counts[frozenset(team)] += 1
    return dict(counts)


def rotation_frame(players: Sequence[str], schedule: Sequence[Match]) -> pd.DataFrame:
    stats = analyze_rotation(players, schedule)
    pairs = teammate_pair_counts(schedule)
    rows = []
    for pid, entry in stats.items():
        partners = {other for pair in pairs for other in pair if pid in pair and other != pid}
        repeats = sum(n - 1 for pair, n in pairs.items() if pid in pair and n > 1)
        rows.append({
            "Player": pid,
            "Matches": entry.match_count,
            "Match numbers": ", ".join(str(n) for n in entry.match_numbers),
            "Distinct teammates": len(partners),
            "Repeated teammates": repeats,
        })
    return pd.DataFrame(rows, columns=["Player", "Matches", "Match numbers", "Distinct teammates", "Repeated teammates"])


def teammate_frame(schedule: Sequence[Match]) -> pd.DataFrame:
    rows = []
    for pair, n in teammate_pair_counts(schedule).items():
        a, b = sorted(pair)
        rows.append({"Player A": a, "Player B": b, "Times together": n})
    df = pd.DataFrame(rows, columns=["Player A", "Player B", "Times together"])
    if not df.empty:
        df = df.sort_values(["Times together", "Player A", "Player B"], ascending=[False, True, True]).reset_index(drop=True)
    return df
