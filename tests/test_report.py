import unittest

from pydantic import ValidationError

from bulletin.core.averages import RawScoreSet, calculate_averages
from bulletin.core.coefficients import CoefficientTable
from bulletin.core.ranking import Rank
from bulletin.core.report import (
    EXPORT_COLUMNS,
    ClassReport,
    GradeRow,
    build_class_report,
    build_student_aggregate,
    flatten_grade_rows,
    format_grades_for_export,
)


def _row(student_id, subject, kind, index, note, semester=1):
    return {
        "student_id": student_id,
        "subject_name": subject,
        "semester": semester,
        "evaluation_type": kind,
        "type_index": index,
        "note": note,
    }


ROWS = [
    _row("s1", "Mathématiques", "Interrogation", 1, 15),
    _row("s1", "Mathématiques", "Interrogation", 2, 17),
    _row("s1", "Mathématiques", "Devoir", 1, 16),
    _row("s1", "Mathématiques", "Devoir", 2, 14),
    _row("s1", "Français", "Interrogation", 1, 12),
    _row("s1", "Français", "Devoir", 1, 12),
    _row("s1", "Français", "Devoir", 2, 12),
    _row("s2", "Mathématiques", "Interrogation", 1, 10),
    _row("s2", "Mathématiques", "Devoir", 1, 10),
    _row("s2", "Mathématiques", "Devoir", 2, 10),
    _row("s2", "Français", "Devoir", 1, 18, semester=2),
]


class GradeRowTests(unittest.TestCase):
    def test_unparseable_note_becomes_missing(self):
        row = GradeRow(student_id=1, subject_name="SVT", semester=1, evaluation_type="Devoir", type_index=1, note="n/a")
        self.assertIsNone(row.note)
        self.assertEqual(GradeRow.model_validate(_row(1, "SVT", "Devoir", 1, "13,5")).note, 13.5)
        self.assertIsNone(GradeRow.model_validate(_row(1, "SVT", "Devoir", 1, 10**400)).note)

    def test_structural_errors_are_rejected(self):
        with self.assertRaises(ValidationError):
            GradeRow.model_validate(_row("s1", "SVT", "Devoir", 1, 10, semester=0))
        with self.assertRaises(ValidationError):
            GradeRow.model_validate({"student_id": "s1", "note": 10})


class FlattenTests(unittest.TestCase):
    def test_rows_fill_score_slots(self):
        flattened = flatten_grade_rows(ROWS, semester=1)
        self.assertEqual(
            flattened[("s1", "Mathématiques")],
            RawScoreSet(interro1=15, interro2=17, devoir1=16, devoir2=14),
        )
        self.assertNotIn(("s2", "Français"), flattened)

    def test_all_semesters(self):
        flattened = flatten_grade_rows(ROWS)
        self.assertEqual(flattened[("s2", "Français")], RawScoreSet(devoir1=18))

    def test_unknown_rows_are_skipped(self):
        rows = [
            _row("s1", "SVT", "Interrogation", 4, 11),
            _row("s1", "SVT", "Devoir", 3, 11),
            _row("s1", "SVT", "Composition", 1, 11),
            _row("s1", "SVT", "interrogation", 2, 9),
        ]
        self.assertEqual(flatten_grade_rows(rows), {("s1", "SVT"): RawScoreSet(interro2=9)})

    def test_later_row_overwrites(self):
        rows = [_row("s1", "SVT", "Devoir", 1, 8), _row("s1", "SVT", "Devoir", 1, 13)]
        self.assertEqual(flatten_grade_rows(rows)[("s1", "SVT")].devoir1, 13)

    def test_missing_note_keeps_recorded_note(self):
        rows = [
            _row("s1", "SVT", "Devoir", 1, 13),
            _row("s1", "SVT", "Devoir", 1, "abs"),
            _row("s1", "SVT", "Devoir", 2, None),
        ]
        self.assertEqual(flatten_grade_rows(rows)[("s1", "SVT")], RawScoreSet(devoir1=13))


class ClassReportTests(unittest.TestCase):
    def test_student_aggregate(self):
        aggregate = build_student_aggregate(
            "s1",
            {"Mathématiques": RawScoreSet(15, 17, None, 16, 14), "Français": RawScoreSet(12, None, None, 12, 12)},
            "3ème M1",
        )
        self.assertEqual([s.subject_name for s in aggregate.subjects], ["Français", "Mathématiques"])
        self.assertEqual(aggregate.mg, 14.0)

    def test_class_report_ranks_students(self):
        report = build_class_report("3ème M1", ROWS, semester=1, student_ids=["s1", "s2", "s3"])
        by_id = {s.student_id: s for s in report.students}

        self.assertEqual(by_id["s1"].mg, 14.0)
        self.assertEqual(by_id["s2"].mg, 10.0)
        self.assertIsNone(by_id["s3"].mg)
        self.assertEqual(by_id["s3"].subjects, ())

        self.assertEqual(report.ranks["s1"].rank, 1)
        self.assertEqual(report.ranks["s2"].rank, 2)
        self.assertIsNone(report.ranks["s3"].rank)
        self.assertEqual(report.ranks["s1"].total, 2)
        self.assertEqual([a.student_id for a, _ in report.ranked()], ["s1", "s2", "s3"])

    def test_ranked_uses_stored_ranks(self):
        report = build_class_report("3ème M1", ROWS, semester=1)
        stored = ClassReport(
            report.class_label,
            report.semester,
            report.students,
            {"s1": Rank(2, 2), "s2": Rank(1, 2)},
        )
        self.assertEqual([(a.student_id, r.rank) for a, r in stored.ranked()], [("s2", 1), ("s1", 2)])

    def test_injected_table(self):
        table = CoefficientTable.from_mapping({"2": {"Tle_C": {"Mathématiques": 6, "Français": 2}}})
        report = build_class_report("Tle C", ROWS, table, semester=1)
        s1 = next(s for s in report.students if s.student_id == "s1")
        self.assertEqual({s.subject_name: s.coeff for s in s1.subjects}, {"Français": 2, "Mathématiques": 6})
        self.assertEqual(s1.mg, 14.5)


class ExportTests(unittest.TestCase):
    def test_export_row(self):
        raw = RawScoreSet(interro1=15, interro2=17, devoir1=16)
        stats = calculate_averages(raw, "3ème M1", "Mathématiques")
        row = format_grades_for_export({"matricule": "1001", "nom": "DUPONT", "prenom": "Jean"}, raw, stats)

        self.assertEqual(tuple(row), EXPORT_COLUMNS)
        self.assertEqual(row["Nom"], "DUPONT")
        self.assertEqual(row["Interro 1"], "15.00")
        self.assertEqual(row["Interro 3"], "")
        self.assertEqual(row["Moy Interro"], "16.00")
        self.assertEqual(row["Devoir 2"], "")
        self.assertEqual(row["Moyenne Sem"], "10.67")
        self.assertEqual(row["Moyenne Coeff"], "32.01")


if __name__ == "__main__":
    unittest.main()
