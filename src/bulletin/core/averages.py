import logging
import math
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional, Tuple, Union

from bulletin.core.coefficients import CoefficientTable, resolve_coefficient


logger = logging.getLogger(__name__)

ROUNDING_EPSILON = 1e-9
INTERRO_FIELDS: Tuple[str, ...] = ("interro1", "interro2", "interro3")
DEVOIR_FIELDS: Tuple[str, ...] = ("devoir1", "devoir2")
MISSING_DISPLAY = "-"

ScoreValue = Union[int, float, str, None]


@dataclass(frozen=True)
class RawScoreSet:
    interro1: ScoreValue = None
    interro2: ScoreValue = None
    interro3: ScoreValue = None
    devoir1: ScoreValue = None
    devoir2: ScoreValue = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RawScoreSet":
        return cls(**{f.name: data.get(f.name) for f in fields(cls)})


@dataclass(frozen=True)
class SubjectStats:
    subject_name: str
    avg_interro: float
    devoir1: float
    devoir2: float
    avg_sem: float
    coeff: int
    weighted_avg: float


def parse_score(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            logger.debug("Ignoring unparseable score %r", value)
            return None
    else:
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            logger.debug("Ignoring unparseable score %r", value)
            return None
    if not math.isfinite(number):
        return None
    return number


def round_score(value: float) -> float:
    if value < 0:
        return -round_score(-value)
    scaled = (value + ROUNDING_EPSILON) * 100 + 0.5
    # Out-of-range values pass through unrounded
    if not math.isfinite(scaled):
        return value
    return math.floor(scaled) / 100


def format_score(value: Optional[float]) -> str:
    if value is None:
        return MISSING_DISPLAY
    return f"{value:.2f}"


def missing_devoirs(raw_scores: RawScoreSet) -> Tuple[str, ...]:
    return tuple(name for name in DEVOIR_FIELDS if parse_score(getattr(raw_scores, name)) is None)


def calculate_interro_average(raw_scores: RawScoreSet) -> float:
    present = [
        score
        for score in (parse_score(getattr(raw_scores, name)) for name in INTERRO_FIELDS)
        if score is not None
    ]
    if not present:
        return 0.0
    return round_score(sum(present) / len(present))


def calculate_averages(
    raw_scores: Union[RawScoreSet, Mapping[str, Any]],
    class_label: str,
    subject_name: str,
    table: Optional[CoefficientTable] = None,
) -> SubjectStats:
    """
    Interrogations average over the ones present; missing devoirs count as 0.
    avg_sem = (avg_interro + devoir1 + devoir2) / 3
    weighted_avg = avg_sem * coeff
    """
    if not isinstance(raw_scores, RawScoreSet):
        raw_scores = RawScoreSet.from_mapping(raw_scores)

    avg_interro = calculate_interro_average(raw_scores)
    devoir1 = parse_score(raw_scores.devoir1) or 0.0
    devoir2 = parse_score(raw_scores.devoir2) or 0.0

    avg_sem = round_score((avg_interro + devoir1 + devoir2) / 3)
    coeff = resolve_coefficient(class_label, subject_name, table)

    return SubjectStats(
        subject_name=subject_name,
        avg_interro=avg_interro,
        devoir1=devoir1,
        devoir2=devoir2,
        avg_sem=avg_sem,
        coeff=coeff,
        weighted_avg=round_score(avg_sem * coeff),
    )
