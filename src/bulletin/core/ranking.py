import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

from bulletin.core.averages import MISSING_DISPLAY, SubjectStats, parse_score, round_score


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudentAggregate:
    student_id: Hashable
    subjects: Tuple[SubjectStats, ...] = field(default_factory=tuple)
    mg: Optional[float] = None


@dataclass(frozen=True)
class Rank:
    rank: Optional[int]
    total: int
    tied: bool = False

    @property
    def label(self) -> str:
        if self.rank is None:
            return MISSING_DISPLAY
        ordinal = "1er" if self.rank == 1 else f"{self.rank}ème"
        return f"{ordinal} ex" if self.tied else ordinal


def _value(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def calculate_general_average(subject_stats: Iterable[Any]) -> Optional[float]:
    """
    subject_stats: SubjectStats (or dicts) carrying avg_sem and coeff
    MG = Σ(avg_sem * coeff) / Σ(coeff), None when no subject has a valid average
    """
    weighted_sum = 0.0
    total_coeff = 0.0

    for entry in subject_stats:
        avg_sem = parse_score(_value(entry, "avg_sem"))
        coeff = parse_score(_value(entry, "coeff"))
        if avg_sem is None or coeff is None:
            logger.debug("Skipping subject %r without a valid average", _value(entry, "subject_name"))
            continue
        weighted_sum += avg_sem * coeff
        total_coeff += coeff

    if total_coeff == 0:
        return None

    return round_score(weighted_sum / total_coeff)


def calculate_rank(students: Iterable[Any]) -> Dict[Hashable, Rank]:
    """
    Standard competition ranking on mg: [15, 15, 12] -> 1, 1, 3.
    Students without an mg get no rank and are left out of the total.
    """
    ranked: List[Tuple[Hashable, float]] = []
    unranked: List[Hashable] = []
    for student in students:
        student_id = _value(student, "student_id")
        mg = parse_score(_value(student, "mg"))
        if mg is None:
            unranked.append(student_id)
        else:
            ranked.append((student_id, mg))

    ranked.sort(key=lambda item: item[1], reverse=True)
    total = len(ranked)

    positions: List[Tuple[Hashable, int]] = []
    previous_mg: Optional[float] = None
    current_rank = 0
    for position, (student_id, mg) in enumerate(ranked, start=1):
        if previous_mg is None or mg != previous_mg:
            current_rank = position
        positions.append((student_id, current_rank))
        previous_mg = mg

    shared: Dict[int, int] = {}
    for _, rank in positions:
        shared[rank] = shared.get(rank, 0) + 1

    results: Dict[Hashable, Rank] = {
        student_id: Rank(rank, total, tied=shared[rank] > 1) for student_id, rank in positions
    }
    if unranked:
        logger.info("%d student(s) without a general average left unranked", len(unranked))
    for student_id in unranked:
        results[student_id] = Rank(None, total)
    return results


def rank_students(aggregates: Iterable[StudentAggregate]) -> List[Tuple[StudentAggregate, Rank]]:
    aggregates = list(aggregates)
    return order_by_rank(aggregates, calculate_rank(aggregates))


def order_by_rank(
    aggregates: Iterable[StudentAggregate],
    ranks: Mapping[Hashable, Rank],
) -> List[Tuple[StudentAggregate, Rank]]:
    paired = [(aggregate, ranks[aggregate.student_id]) for aggregate in aggregates]
    # Unranked students go last
    paired.sort(key=lambda item: (item[1].rank is None, item[1].rank or 0))
    return paired
