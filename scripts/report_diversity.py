from __future__ import annotations

import argparse
from collections import Counter
from pathlib import Path

import openpyxl


def summarize(path: Path) -> None:
    wb = openpyxl.load_workbook(path, data_only=True)
    ws = wb["Rotation"]

    rows = list(ws.iter_rows(values_only=True))
    header = rows[0]
    data_rows = rows[1:]

    idx_name = header.index("Player")
    idx_matches = header.index("Matches")
    idx_distinct = header.index("Distinct teammates")

    by_matches = Counter()
    by_distinct = Counter()

    for row in data_rows:
        name = row[idx_name]
        if not name:
            continue
        by_matches[row[idx_matches]] += 1
        by_distinct[row[idx_distinct]] += 1

    print("Matches-per-player distribution:")
    for matches in sorted(by_matches):
        print(f"  {matches} matches: {by_matches[matches]}")

    print("\nDistinct-teammate distribution:")
    for distinct in sorted(by_distinct):
        print(f"  {distinct} teammates: {by_distinct[distinct]}")

    pairs = list(wb["Teammates"].iter_rows(min_row=2, values_only=True))
    repeated = [p for p in pairs if p and p[2] and p[2] > 1]
    print(f"\nTeammate pairs: {len(pairs)} / repeated: {len(repeated)}")
    for a, b, n in repeated:
        print(f"  {a} + {b}: {n} times")


def main() -> int:
    parser = argparse.ArgumentParser(description="Summarize teammate diversity of a generated schedule workbook")
    parser.add_argument("schedule", type=str, help="Schedule workbook written by 'open-play generate'")
    args = parser.parse_args()

    path = Path(args.schedule)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    summarize(path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
