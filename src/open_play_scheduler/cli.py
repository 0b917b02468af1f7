from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer

from open_play_scheduler import scheduler, workbook
from open_play_scheduler.scheduler import Match, RotationPolicy, SchedulingError


app = typer.Typer(help="Open Play doubles rotation: build and regenerate match schedules.")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )


def _policy(target: float, court: int, max_players: int) -> RotationPolicy:
    try:
        return RotationPolicy(
            target_matches_per_player=target,
            court=court,
            max_players=max_players or None,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _existing(path: str, what: str) -> Path:
    p = Path(path)
    if not p.exists():
        raise typer.BadParameter(f"{what} not found: {path}")
    return p


def _load_players(path: str) -> List[str]:
    try:
        return workbook.load_players(str(_existing(path, "Player list")))
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _check_start_time(start_time: str, match_minutes: int) -> Optional[str]:
    if match_minutes <= 0:
        raise typer.BadParameter("match_minutes must be at least 1")
    if not start_time:
        return None
    try:
        workbook.parse_hhmm(start_time)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    return start_time


def _print_rotation(players: List[str], matches: List[Match]) -> None:
    df = scheduler.rotation_frame(players, matches)
    with pd.option_context("display.max_rows", None, "display.width", 120):
        print(df.to_string(index=False))


@app.command()
def template(
    output_file: str = typer.Option("players_template.xlsx", help="Write a header-only player list workbook"),
    sheet_name: str = typer.Option(workbook.PLAYER_LIST_SHEET_NAME, help="Sheet name"),
):
    Path(output_file).write_bytes(workbook.build_player_list_template_bytes(sheet_name=sheet_name))
    print(f"Template written: {output_file} (sheet='{sheet_name}')")


@app.command()
def sample_xlsx(
    output_file: str = typer.Option("players_sample.xlsx", help="Write a player list with dummy players"),
    sheet_name: str = typer.Option(workbook.PLAYER_LIST_SHEET_NAME, help="Sheet name"),
):
    Path(output_file).write_bytes(workbook.build_player_list_sample_bytes(sheet_name=sheet_name))
    print(f"Sample written: {output_file} (sheet='{sheet_name}')")


@app.command()
def generate(
    input_file: str = typer.Option("players.xlsx", help="Player list workbook (confirmed players)"),
    output_file: str = typer.Option("schedule.xlsx", help="Schedule workbook to write"),
    target: float = typer.Option(scheduler.DEFAULT_TARGET_MATCHES_PER_PLAYER, help="Target matches per player"),
    court: int = typer.Option(scheduler.DEFAULT_COURT, help="Court number written on every match"),
    max_players: int = typer.Option(0, help="Reject rosters larger than this (0 = no limit)"),
    start_time: str = typer.Option("", help=f"First match start (HH:MM), e.g. {workbook.DEFAULT_START_TIME_HHMM}. Empty = no times"),
    match_minutes: int = typer.Option(workbook.DEFAULT_MATCH_MINUTES, help="Minutes per match"),
):
    policy = _policy(target, court, max_players)
    start = _check_start_time(start_time, match_minutes)
    players = _load_players(input_file)
    try:
        matches = scheduler.build_initial_schedule(players, policy)
    except SchedulingError as e:
        raise typer.BadParameter(str(e))

    workbook.write_schedule_xlsx(matches, players, output_file, start_time_hhmm=start, match_minutes=match_minutes)
    print(f"Schedule written: {output_file}")
    print(f"Players: {len(players)} / matches: {len(matches)} / target per player: {policy.target_matches_per_player}")
    _print_rotation(players, matches)


@app.command()
def regenerate(
    input_file: str = typer.Option("players.xlsx", help="Player list workbook (confirmed players)"),
    schedule_file: str = typer.Option(..., help="Schedule workbook with played matches marked 'completed'"),
    output_file: str = typer.Option("", help="Output workbook. Empty = schedule_file with _regenerated suffix"),
    target: float = typer.Option(scheduler.DEFAULT_TARGET_MATCHES_PER_PLAYER, help="Target matches per player"),
    court: int = typer.Option(scheduler.DEFAULT_COURT, help="Court number written on every match"),
    max_players: int = typer.Option(0, help="Reject rosters larger than this (0 = no limit)"),
    start_time: str = typer.Option("", help="First match start (HH:MM). Empty = no times"),
    match_minutes: int = typer.Option(workbook.DEFAULT_MATCH_MINUTES, help="Minutes per match"),
):
    policy = _policy(target, court, max_players)
    start = _check_start_time(start_time, match_minutes)
    players = _load_players(input_file)
    sched_path = _existing(schedule_file, "Schedule workbook")
    try:
        records = workbook.load_match_records(str(sched_path))
    except ValueError as e:
        raise typer.BadParameter(str(e))

    try:
        matches = scheduler.regenerate_schedule(players, records, policy)
    except SchedulingError as e:
        raise typer.BadParameter(str(e))

    out_path = Path(output_file) if output_file else sched_path.with_name(f"{sched_path.stem}_regenerated.xlsx")
    workbook.write_schedule_xlsx(matches, players, str(out_path), start_time_hhmm=start, match_minutes=match_minutes)
    completed = sum(1 for m in matches if m.status == scheduler.STATUS_COMPLETED)
    print(f"Schedule written: {out_path}")
    print(f"Completed kept: {completed} / new matches: {len(matches) - completed}")
    _print_rotation(players, matches)


@app.command()
def analyze(
    schedule_file: str = typer.Option(..., help="Schedule workbook to inspect"),
    input_file: str = typer.Option("", help="Player list workbook. Empty = players found in the schedule"),
):
    sched_path = _existing(schedule_file, "Schedule workbook")
    try:
        records = workbook.load_match_records(str(sched_path))
    except ValueError as e:
        raise typer.BadParameter(str(e))

    matches = scheduler.schedule_from_records(records)

    if input_file:
        players = _load_players(input_file)
    else:
        players = []
        for m in matches:
            for pid in m.players:
                if pid not in players:
                    players.append(pid)

    skipped = len(records) - len(matches)
    print(f"Matches: {len(matches)} (unreadable rows skipped: {skipped})")
    _print_rotation(players, matches)
    pairs = scheduler.teammate_frame(matches)
    repeats = pairs[pairs["Times together"] > 1]
    if repeats.empty:
        print("No repeated teammate pairs")
    else:
        print("Repeated teammate pairs:")
        print(repeats.to_string(index=False))


if __name__ == "__main__":
    app()
