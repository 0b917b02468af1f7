"""Sanitizing of completed-match records supplied by the persistence layer.

Records arrive loosely typed: ``players`` may hold plain ids, populated
player documents exposing ``_id``/``id``, a mix of both with ``None`` holes,
or be missing altogether. Everything that reads externally supplied match
data goes through :func:`sanitize_match_record`; the placement code only ever
sees :class:`NormalizedMatch`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple


logger = logging.getLogger(__name__)

PLAYERS_PER_RECORD = 4
ID_KEYS = ("_id", "id")


class PlayersShape(Enum):
    IDS = "ids"
    POPULATED_REFS = "populated_refs"
    ABSENT = "absent"


@dataclass(frozen=True)
class NormalizedMatch:
    players: Tuple[str, ...]
    match_number: Optional[int] = None
    team1: Optional[Tuple[str, str]] = None
    team2: Optional[Tuple[str, str]] = None
    score: Optional[str] = None
    winning_team: Optional[int] = None
    court: Optional[int] = None


def _field(raw: Any, name: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name)
    return getattr(raw, name, None)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _resolve_id(entry: Any) -> Optional[str]:
    if entry is None or isinstance(entry, bool):
        return None
    if isinstance(entry, str):
        v = entry.strip()
        return v or None
    if isinstance(entry, int):
        return str(entry)
    for key in ID_KEYS:
        value = _field(entry, key)
        if value is None or isinstance(value, (bool, Mapping)):
            continue
        v = str(value).strip()
        if v:
            return v
    return None


def classify_players(value: Any) -> Tuple[PlayersShape, List[Any]]:
    """Resolve the raw ``players`` field into one of the PlayersShape variants."""

    if value is None or not _is_sequence(value):
        return PlayersShape.ABSENT, []
    entries = [e for e in value if e is not None]
    if any(not isinstance(e, (str, int)) for e in entries):
        return PlayersShape.POPULATED_REFS, entries
    return PlayersShape.IDS, entries


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, int) and value >= 1:
        return value
    return None


def _match_number(raw: Any) -> Optional[int]:
    value = _field(raw, "matchNumber")
    if value is None:
        value = _field(raw, "match_number")
    return _positive_int(value)


def _team(raw: Any, name: str, players: Tuple[str, ...]) -> Optional[Tuple[str, str]]:
    value = _field(raw, name)
    if not _is_sequence(value):
        return None
    ids = [pid for pid in (_resolve_id(e) for e in value) if pid is not None]
    if len(ids) != 2 or ids[0] == ids[1] or not all(pid in players for pid in ids):
        return None
    return ids[0], ids[1]


def _winning_team(raw: Any) -> Optional[int]:
    value = _field(raw, "winningTeam")
    if value is None:
        value = _field(raw, "winning_team")
    if isinstance(value, str) and value.strip() in ("1", "2"):
        return int(value.strip())
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value in (1, 2):
        return int(value)
    return None


def _score(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def sanitize_match_record(raw: Any) -> Optional[NormalizedMatch]:
    """Return the normalized record, or ``None`` when it must be skipped."""

    if raw is None or not (isinstance(raw, Mapping) or hasattr(raw, "players")):
        logger.warning("Skipping completed match record of type %s", type(raw).__name__)
        return None

    number = _match_number(raw)
    shape, entries = classify_players(_field(raw, "players"))
    if shape is PlayersShape.ABSENT:
        logger.warning("Skipping match %s - players array is missing or invalid", number)
        return None

    ids: List[str] = []
    for entry in entries:
        pid = _resolve_id(entry)
        if pid is None or pid in ids:
            continue
        ids.append(pid)

    if len(ids) < PLAYERS_PER_RECORD:
        logger.warning("Skipping match %s - only %d usable player ids", number, len(ids))
        return None
    if len(ids) > PLAYERS_PER_RECORD:
        logger.warning("Match %s lists %d players; keeping the first %d", number, len(ids), PLAYERS_PER_RECORD)
        ids = ids[:PLAYERS_PER_RECORD]

    players = tuple(ids)
    team1 = _team(raw, "team1", players)
    team2 = _team(raw, "team2", players)
    if team1 is None or team2 is None or set(team1) & set(team2):
        team1 = team2 = None

    score = _field(raw, "score")
    return NormalizedMatch(
        players=players,
        match_number=number,
        team1=team1,
        team2=team2,
        score=_score(score),
        winning_team=_winning_team(raw),
        court=_positive_int(_field(raw, "court")),
    )


def sanitize_completed_matches(records: Optional[Iterable[Any]]) -> List[NormalizedMatch]:
    if records is None:
        return []
    if isinstance(records, (str, bytes, Mapping)) or not isinstance(records, Iterable):
        logger.warning("Completed matches must be a list of records, got %s", type(records).__name__)
        return []
    out: List[NormalizedMatch] = []
    for raw in records:
        record = sanitize_match_record(raw)
        if record is not None:
            out.append(record)
    return out
