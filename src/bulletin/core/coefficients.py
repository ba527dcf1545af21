import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from bulletin.config.settings import settings


logger = logging.getLogger(__name__)

DEFAULT_COEFFICIENT = 1

CYCLE_LEVELS: Dict[int, Tuple[str, ...]] = {
    1: ("6ème", "5ème", "4ème", "3ème"),
    2: ("2nde", "1ère", "Tle"),
}

MATCHED = "matched"
UNKNOWN_CYCLE = "unknown_cycle"
UNKNOWN_LEVEL = "unknown_level"
UNKNOWN_SUBJECT = "unknown_subject"


class CoefficientTableError(ValueError):
    pass


@dataclass(frozen=True)
class CoefficientTable:
    """Read-only ``cycle -> level key -> subject -> coefficient`` mapping."""

    cycles: Mapping[int, Mapping[str, Mapping[str, int]]]

    @classmethod
    def from_mapping(cls, data: Mapping[Any, Any]) -> "CoefficientTable":
        if not isinstance(data, Mapping):
            raise CoefficientTableError("Coefficient table must be a mapping of cycles")

        cycles: Dict[int, Mapping[str, Mapping[str, int]]] = {}
        for raw_cycle, levels in data.items():
            cycle = _parse_cycle(raw_cycle)
            if not isinstance(levels, Mapping):
                raise CoefficientTableError(f"Cycle {cycle} must map level keys to subjects")

            frozen_levels: Dict[str, Mapping[str, int]] = {}
            for level_key, subjects in levels.items():
                if not isinstance(subjects, Mapping):
                    raise CoefficientTableError(f"Level {level_key!r} must map subjects to coefficients")
                frozen_subjects: Dict[str, int] = {}
                for subject, value in subjects.items():
                    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                        raise CoefficientTableError(
                            f"Coefficient for {subject!r} in {level_key!r} must be a positive integer, got {value!r}"
                        )
                    frozen_subjects[str(subject)] = value
                frozen_levels[str(level_key)] = MappingProxyType(frozen_subjects)
            cycles[cycle] = MappingProxyType(frozen_levels)

        return cls(MappingProxyType(cycles))

    def levels(self, cycle: int) -> Mapping[str, Mapping[str, int]]:
        return self.cycles.get(cycle, MappingProxyType({}))

    def subjects(self, cycle: int, level_key: str) -> Optional[Mapping[str, int]]:
        return self.levels(cycle).get(level_key)


@dataclass(frozen=True)
class CoefficientResolution:
    coefficient: int
    reason: str
    cycle: Optional[int] = None
    level_key: Optional[str] = None
    subject_key: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.reason != MATCHED


def _parse_cycle(raw: Any) -> int:
    try:
        cycle = int(raw)
    except (TypeError, ValueError) as exc:
        raise CoefficientTableError(f"Invalid cycle key: {raw!r}") from exc
    if cycle not in CYCLE_LEVELS:
        raise CoefficientTableError(f"Unsupported cycle: {cycle}. Use 1 or 2.")
    return cycle


def load_coefficient_table(path: Union[str, Path, None] = None) -> CoefficientTable:
    source = Path(path) if path is not None else settings.coefficients_path
    try:
        with source.open(encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise CoefficientTableError(f"Cannot read coefficient table {source}: {exc}") from exc
    except ValueError as exc:
        # JSONDecodeError and UnicodeDecodeError
        raise CoefficientTableError(f"Malformed coefficient table {source}: {exc}") from exc

    table = CoefficientTable.from_mapping(data)
    logger.info(
        "Loaded coefficient table from %s (%d level keys)",
        source,
        sum(len(levels) for levels in table.cycles.values()),
    )
    return table


@lru_cache(maxsize=None)
def default_coefficient_table() -> CoefficientTable:
    return load_coefficient_table()


def _level_prefix(label: str, cycle: int) -> Optional[str]:
    for level in CYCLE_LEVELS[cycle]:
        if label.startswith(level):
            return level
    return None


def classify_cycle(label: str) -> Optional[int]:
    text = (label or "").strip()
    for cycle in CYCLE_LEVELS:
        if _level_prefix(text, cycle) is not None:
            return cycle
    return None


def normalize_class_label(label: str) -> str:
    return (label or "").strip().replace(" ", "_", 1)


def normalize_subject_name(name: str) -> str:
    return (name or "").replace("-", "_").replace(" ", "_")


def resolve_level_key(label: str, table: Optional[CoefficientTable] = None) -> Optional[str]:
    """
    Cycle 1: the bare level word ("3ème M1" -> "3ème").
    Cycle 2: the longest table key that prefixes the label with its first
    space turned into "_" ("2nde C1" -> "2nde_C1" -> "2nde_C").
    """
    table = table or default_coefficient_table()
    text = (label or "").strip()
    cycle = classify_cycle(text)
    if cycle is None:
        return None

    if cycle == 1:
        level = _level_prefix(text, 1)
        return level if level in table.levels(1) else None

    normalized = normalize_class_label(text)
    best: Optional[str] = None
    for key in table.levels(2):
        if normalized.startswith(key) and (best is None or len(key) > len(best)):
            best = key
    return best


def explain_coefficient(
    level_or_class_name: str,
    subject_name: str,
    table: Optional[CoefficientTable] = None,
) -> CoefficientResolution:
    table = table or default_coefficient_table()

    cycle = classify_cycle(level_or_class_name)
    if cycle is None:
        logger.debug("No cycle for class %r, coefficient defaults to %d", level_or_class_name, DEFAULT_COEFFICIENT)
        return CoefficientResolution(DEFAULT_COEFFICIENT, UNKNOWN_CYCLE)

    level_key = resolve_level_key(level_or_class_name, table)
    if level_key is None:
        logger.debug("No level key for class %r, coefficient defaults to %d", level_or_class_name, DEFAULT_COEFFICIENT)
        return CoefficientResolution(DEFAULT_COEFFICIENT, UNKNOWN_LEVEL, cycle=cycle)

    subjects = table.subjects(cycle, level_key) or {}
    for key in (subject_name, normalize_subject_name(subject_name)):
        if key in subjects:
            return CoefficientResolution(subjects[key], MATCHED, cycle, level_key, key)

    logger.debug(
        "Subject %r not listed for %s, coefficient defaults to %d", subject_name, level_key, DEFAULT_COEFFICIENT
    )
    return CoefficientResolution(DEFAULT_COEFFICIENT, UNKNOWN_SUBJECT, cycle=cycle, level_key=level_key)


def resolve_coefficient(
    level_or_class_name: str,
    subject_name: str,
    table: Optional[CoefficientTable] = None,
) -> int:
    return explain_coefficient(level_or_class_name, subject_name, table).coefficient
