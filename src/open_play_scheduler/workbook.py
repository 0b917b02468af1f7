from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence

import openpyxl
import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from open_play_scheduler.scheduler import (
    STATUS_COMPLETED,
    Match,
    rotation_frame,
    teammate_frame,
)


logger = logging.getLogger(__name__)


DEFAULT_START_TIME_HHMM = "09:00"
DEFAULT_MATCH_MINUTES = 20

PLAYER_LIST_SHEET_NAME = "Players"
PLAYER_LIST_HEADERS = [
    "Player",
    "Note",
]

MATCHES_SHEET_NAME = "Matches"
ROTATION_SHEET_NAME = "Rotation"
TEAMMATES_SHEET_NAME = "Teammates"
MATCHES_HEADERS = [
    "Match",
    "Court",
    "Start",
    "End",
    "Team 1 A",
    "Team 1 B",
    "Team 2 A",
    "Team 2 B",
    "Status",
    "Score",
    "Winner",
]

# Checked in order; "id" only as a whole word so headers like "Paid" don't match.
_PLAYER_COLUMN_PATTERNS = (
    re.compile(r"player"),
    re.compile(r"name"),
    re.compile(r"\bid\b"),
)

_HEADER_FONT = Font(bold=True)
_HEADER_FILL = PatternFill(start_color="D9D9D9", end_color="D9D9D9", fill_type="solid")
_COMPLETED_FILL = PatternFill(start_color="D9EAD3", end_color="D9EAD3", fill_type="solid")


def build_player_list_sample_rows() -> List[List[str]]:
    """Return dummy rows with clearly non-personal placeholder data."""

    return [[f"TEST_P{i}", ""] for i in range(1, 9)]


def build_player_list_sample_bytes(
    sheet_name: str = PLAYER_LIST_SHEET_NAME,
    headers: List[str] = PLAYER_LIST_HEADERS,
) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_name
    ws.append(list(headers))
    for r in build_player_list_sample_rows():
        ws.append(r)
    ws.freeze_panes = "A2"
    with BytesIO() as bio:
        wb.save(bio)
        return bio.getvalue()


def build_player_list_template_bytes(
    sheet_name: str = PLAYER_LIST_SHEET_NAME,
    headers: List[str] = PLAYER_LIST_HEADERS,
) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_name
    ws.append(list(headers))
    ws.freeze_panes = "A2"
    with BytesIO() as bio:
        wb.save(bio)
        return bio.getvalue()


def parse_hhmm(value: str) -> tuple[int, int]:
    """Parse HH:MM string."""
    try:
        parts = value.strip().split(":")
        if len(parts) != 2:
            raise ValueError
        hour = int(parts[0])
        minute = int(parts[1])
    except Exception as e:
        raise ValueError(f"Invalid time '{value}'. Use HH:MM (e.g. 09:00).") from e
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time '{value}'. Use HH:MM with 00:00..23:59.")
    return hour, minute


def match_start_times(matches: Sequence[Match], start_time_hhmm: str, match_minutes: int) -> Dict[int, datetime]:
    """Sequential start times for a single-court schedule, keyed by match number."""

    if match_minutes <= 0:
        raise ValueError("match_minutes must be positive")
    hour, minute = parse_hhmm(start_time_hhmm)
    base = datetime(2000, 1, 1, hour, minute)
    step = timedelta(minutes=int(match_minutes))
    ordered = sorted(matches, key=lambda m: m.match_number)
    return {m.match_number: base + i * step for i, m in enumerate(ordered)}


def _norm_header(v: Any) -> str:
    if v is None:
        return ""
    return str(v).strip().replace("\u3000", " ").lower()


def load_players(file_path: str) -> List[str]:
    """Read confirmed players from the first sheet of a player list workbook.

    The id column is picked by header keyword ('Player', 'Name', 'ID'); if no
    header matches, the first column is used. Blank cells are skipped and the
    original order is kept.
    """

    wb = openpyxl.load_workbook(file_path, read_only=True)
    sheet = wb.active
    data = list(sheet.values)
    wb.close()
    if not data:
        return []
    df = pd.DataFrame(data[1:], columns=data[0])

    col = None
    for pattern in _PLAYER_COLUMN_PATTERNS:
        for c in df.columns:
            if pattern.search(_norm_header(c)):
                col = c
                break
        if col is not None:
            break
    if col is None:
        if len(df.columns) == 0:
            raise ValueError("Player list has no columns")
        col = df.columns[0]
        logger.info("No 'Player' column found; using first column %r", col)

    players: List[str] = []
    seen: set[str] = set()
    for value in df[col].tolist():
        if value is None or (isinstance(value, float) and pd.isna(value)):
            continue
        pid = _cell_text(value)
        if not pid:
            continue
        if pid in seen:
            logger.warning("Duplicate player %s in %s ignored", pid, file_path)
            continue
        seen.add(pid)
        players.append(pid)
    return players


def _style_header(ws) -> None:
    for cell in ws[1]:
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center")
    ws.freeze_panes = "A2"


def _append_frame(ws, df: pd.DataFrame) -> None:
    ws.append(list(df.columns))
    for row in df.itertuples(index=False):
        ws.append(list(row))
    _style_header(ws)
    for idx, column in enumerate(df.columns, start=1):
        width = max([len(str(column))] + [len(str(v)) for v in df[column].tolist()]) + 2
        ws.column_dimensions[get_column_letter(idx)].width = min(width, 60)


def write_schedule_xlsx(
    matches: Sequence[Match],
    players: Sequence[str],
    output_path: str,
    start_time_hhmm: Optional[str] = None,
    match_minutes: int = DEFAULT_MATCH_MINUTES,
) -> None:
    starts: Dict[int, datetime] = {}
    if start_time_hhmm:
        starts = match_start_times(matches, start_time_hhmm, match_minutes)
    duration = timedelta(minutes=int(match_minutes))

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = MATCHES_SHEET_NAME
    ws.append(MATCHES_HEADERS)
    for m in matches:
        start = starts.get(m.match_number)
        ws.append([
            m.match_number,
            m.court,
            start.strftime("%H:%M") if start else None,
            (start + duration).strftime("%H:%M") if start else None,
            m.team1[0], m.team1[1],
            m.team2[0], m.team2[1],
            m.status,
            m.score,
            m.winning_team,
        ])
        if m.status == STATUS_COMPLETED:
            for cell in ws[ws.max_row]:
                cell.fill = _COMPLETED_FILL
    _style_header(ws)
    for idx, header in enumerate(MATCHES_HEADERS, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = max(10, len(header) + 4)

    _append_frame(wb.create_sheet(ROTATION_SHEET_NAME), rotation_frame(players, list(matches)))
    _append_frame(wb.create_sheet(TEAMMATES_SHEET_NAME), teammate_frame(list(matches)))

    wb.save(output_path)
    logger.info("Wrote %d matches to %s", len(matches), output_path)


def _cell_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def load_match_records(file_path: str) -> List[Dict[str, Any]]:
    """Read the Matches sheet back as loosely typed match records.

    The sheet may have been edited by hand, so nothing is validated here:
    blank cells become ``None`` and the records are expected to go through
    the completed-match sanitizer before use.
    """

    wb = openpyxl.load_workbook(file_path, data_only=True)
    if MATCHES_SHEET_NAME not in wb.sheetnames:
        raise ValueError(f"Workbook has no '{MATCHES_SHEET_NAME}' sheet")
    ws = wb[MATCHES_SHEET_NAME]
    rows = list(ws.iter_rows(values_only=True))
    wb.close()
    if not rows:
        return []

    header = [_norm_header(h) for h in rows[0]]

    def col(name: str) -> Optional[int]:
        key = name.lower()
        return header.index(key) if key in header else None

    idx = {name: col(name) for name in MATCHES_HEADERS}
    missing = [n for n in ("Match", "Team 1 A", "Team 1 B", "Team 2 A", "Team 2 B") if idx[n] is None]
    if missing:
        raise ValueError(f"'{MATCHES_SHEET_NAME}' sheet is missing columns: {', '.join(missing)}")

    def get(row: tuple, name: str) -> Any:
        i = idx[name]
        if i is None or i >= len(row):
            return None
        return row[i]

    records: List[Dict[str, Any]] = []
    for row in rows[1:]:
        if not row or all(v is None for v in row):
            continue
        team1 = [_cell_text(get(row, "Team 1 A")), _cell_text(get(row, "Team 1 B"))]
        team2 = [_cell_text(get(row, "Team 2 A")), _cell_text(get(row, "Team 2 B"))]
        status = _cell_text(get(row, "Status"))
        records.append({
            "matchNumber": get(row, "Match"),
            "court": get(row, "Court"),
            "players": team1 + team2,
            "team1": team1,
            "team2": team2,
            "status": status.lower() if status else None,
            "score": _cell_text(get(row, "Score")),
            "winningTeam": get(row, "Winner"),
        })
    return records
