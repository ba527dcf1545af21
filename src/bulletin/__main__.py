import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from bulletin.config.settings import settings
from bulletin.core.averages import format_score
from bulletin.core.coefficients import CoefficientTableError, load_coefficient_table
from bulletin.core.report import ClassReport, build_class_report


logger = logging.getLogger("bulletin")


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m bulletin",
        description="Compute subject averages, general averages and ranks for one class.",
    )
    parser.add_argument("grades", type=Path, help="JSON file holding a list of grade rows")
    parser.add_argument("--class", dest="class_label", required=True, help='Class label, e.g. "2nde C"')
    parser.add_argument("--semester", type=int, default=None)
    parser.add_argument("--coefficients", type=Path, default=None, help="Alternative coefficient table")
    return parser.parse_args(argv)


def render_report(report: ClassReport) -> List[str]:
    lines = [f"{report.class_label} - semester {report.semester or 'all'}"]
    for aggregate, rank in report.ranked():
        subjects = ", ".join(
            f"{stats.subject_name} {format_score(stats.avg_sem)} x{stats.coeff}" for stats in aggregate.subjects
        )
        lines.append(f"{rank.label:>7}  {aggregate.student_id}  MG {format_score(aggregate.mg)}  [{subjects}]")
    return lines


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = _parse_args(argv)

    try:
        table = load_coefficient_table(args.coefficients)
    except CoefficientTableError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    try:
        with args.grades.open(encoding="utf-8") as fh:
            rows = json.load(fh)
    except (OSError, ValueError) as exc:
        print(f"error: cannot read grades from {args.grades}: {exc}", file=sys.stderr)
        return 1
    if not isinstance(rows, list):
        print(f"error: cannot read grades from {args.grades}: expected a list of grade rows", file=sys.stderr)
        return 1

    try:
        report = build_class_report(args.class_label, rows, table, args.semester)
    except ValidationError as exc:
        print(f"error: invalid grade row in {args.grades}: {exc}", file=sys.stderr)
        return 1

    logger.debug("Rendering %d students", len(report.students))
    print("\n".join(render_report(report)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
