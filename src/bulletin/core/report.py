import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator

from bulletin.core.averages import (
    DEVOIR_FIELDS,
    INTERRO_FIELDS,
    RawScoreSet,
    SubjectStats,
    calculate_averages,
    format_score,
    parse_score,
)
from bulletin.core.coefficients import CoefficientTable, default_coefficient_table
from bulletin.core.ranking import Rank, StudentAggregate, calculate_general_average, calculate_rank, order_by_rank


logger = logging.getLogger(__name__)

EVALUATION_PREFIXES: Dict[str, Tuple[str, ...]] = {
    "interrogation": INTERRO_FIELDS,
    "devoir": DEVOIR_FIELDS,
}

EXPORT_COLUMNS: Tuple[str, ...] = (
    "Matricule",
    "Nom",
    "Prénom",
    "Interro 1",
    "Interro 2",
    "Interro 3",
    "Moy Interro",
    "Devoir 1",
    "Devoir 2",
    "Moyenne Sem",
    "Moyenne Coeff",
)


class GradeRow(BaseModel):
    student_id: Union[int, str]
    subject_name: str
    semester: int = Field(ge=1)
    evaluation_type: str
    type_index: int = Field(ge=1)
    note: Optional[float] = None

    @field_validator("note", mode="before")
    @classmethod
    def lenient_note(cls, value: Any) -> Optional[float]:
        return parse_score(value)


@dataclass(frozen=True)
class ClassReport:
    class_label: str
    semester: Optional[int]
    students: Tuple[StudentAggregate, ...]
    ranks: Mapping[Hashable, Rank] = field(default_factory=dict)

    def ranked(self) -> List[Tuple[StudentAggregate, Rank]]:
        return order_by_rank(self.students, self.ranks)


ScoreKey = Tuple[Hashable, str]


def _score_field(row: GradeRow) -> Optional[str]:
    slots = EVALUATION_PREFIXES.get(row.evaluation_type.strip().lower())
    if slots is None:
        logger.info("Skipping grade row with unknown evaluation type %r", row.evaluation_type)
        return None
    if row.type_index > len(slots):
        logger.info(
            "Skipping %s %d for student %s: only %d allowed",
            row.evaluation_type,
            row.type_index,
            row.student_id,
            len(slots),
        )
        return None
    return slots[row.type_index - 1]


def flatten_grade_rows(
    rows: Iterable[Union[GradeRow, Mapping[str, Any]]],
    semester: Optional[int] = None,
) -> Dict[ScoreKey, RawScoreSet]:
    """
    Turns stored grade rows into one RawScoreSet per (student_id, subject_name).
    A later row for the same slot overwrites an earlier one, except that a
    row without a usable note never replaces a recorded note.
    """
    slots: Dict[ScoreKey, Dict[str, Optional[float]]] = {}
    for raw_row in rows:
        row = raw_row if isinstance(raw_row, GradeRow) else GradeRow.model_validate(raw_row)
        if semester is not None and row.semester != semester:
            continue
        name = _score_field(row)
        if name is None:
            continue
        scores = slots.setdefault((row.student_id, row.subject_name), {})
        if row.note is None and scores.get(name) is not None:
            logger.debug("Keeping recorded %s for student %s: later row has no note", name, row.student_id)
            continue
        scores[name] = row.note

    return {key: RawScoreSet.from_mapping(values) for key, values in slots.items()}


def build_student_aggregate(
    student_id: Hashable,
    scores_by_subject: Mapping[str, RawScoreSet],
    class_label: str,
    table: Optional[CoefficientTable] = None,
) -> StudentAggregate:
    subjects = tuple(
        calculate_averages(scores_by_subject[name], class_label, name, table)
        for name in sorted(scores_by_subject)
    )
    return StudentAggregate(student_id, subjects, calculate_general_average(subjects))


def build_class_report(
    class_label: str,
    rows: Iterable[Union[GradeRow, Mapping[str, Any]]],
    table: Optional[CoefficientTable] = None,
    semester: Optional[int] = None,
    student_ids: Optional[Iterable[Hashable]] = None,
) -> ClassReport:
    table = table or default_coefficient_table()
    flattened = flatten_grade_rows(rows, semester)

    by_student: Dict[Hashable, Dict[str, RawScoreSet]] = {}
    if student_ids is not None:
        for student_id in student_ids:
            by_student.setdefault(student_id, {})
    for (student_id, subject_name), raw_scores in flattened.items():
        by_student.setdefault(student_id, {})[subject_name] = raw_scores

    students = tuple(
        build_student_aggregate(student_id, subjects, class_label, table)
        for student_id, subjects in by_student.items()
    )
    ranks = calculate_rank(students)
    logger.info("Built report for %s: %d students, semester %s", class_label, len(students), semester)
    return ClassReport(class_label, semester, students, ranks)


def format_grades_for_export(
    student: Mapping[str, Any],
    raw_scores: RawScoreSet,
    stats: SubjectStats,
) -> Dict[str, str]:
    def raw(value: Any) -> str:
        score = parse_score(value)
        return "" if score is None else format_score(score)

    values = (
        str(student.get("matricule", "")),
        str(student.get("nom", "")),
        str(student.get("prenom", "")),
        raw(raw_scores.interro1),
        raw(raw_scores.interro2),
        raw(raw_scores.interro3),
        format_score(stats.avg_interro),
        raw(raw_scores.devoir1),
        raw(raw_scores.devoir2),
        format_score(stats.avg_sem),
        format_score(stats.weighted_avg),
    )
    return dict(zip(EXPORT_COLUMNS, values))
