from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

LEVER = "LEVER"
CONFORM = "CONFORM"
WATCH = "WATCH"
CATEGORIES = (LEVER, CONFORM, WATCH)

SUBJECT_MATHS = "maths"
SUBJECT_FRENCH = "francais"
SUBJECTS = (SUBJECT_MATHS, SUBJECT_FRENCH)
SUBJECT_LABELS = {SUBJECT_MATHS: "Maths", SUBJECT_FRENCH: "Français"}


def make_skill_key(level: str, subject: str, skill: str) -> str:
    return f"{level}_{subject}_{skill}"


def split_skill_key(key: str) -> Tuple[str, str, str]:
    # "CP_maths_Lire_des_nombres" -> ("CP", "maths", "Lire_des_nombres")
    parts = key.split("_")
    level = parts[0] if parts else ""
    subject = parts[1] if len(parts) > 1 else ""
    skill = "_".join(parts[2:]) or key
    return level, subject, skill


@dataclass(frozen=True)
class EffectiveCounts:
    """
    Pupils per performance tier for one skill. Tables that only publish tier
    percentages give shares on a base of 100, which keep the same ratios.
    """
    needs: float
    fragile: float
    satisfactory: float

    @property
    def total(self) -> float:
        return self.needs + self.fragile + self.satisfactory

    @property
    def success_rate(self) -> Optional[float]:
        total = self.total
        if total <= 0:
            return None
        return 100.0 * self.satisfactory / total

    def __add__(self, other: "EffectiveCounts") -> "EffectiveCounts":
        return EffectiveCounts(
            self.needs + other.needs,
            self.fragile + other.fragile,
            self.satisfactory + other.satisfactory,
        )

    @classmethod
    def zero(cls) -> "EffectiveCounts":
        return cls(0.0, 0.0, 0.0)

    @classmethod
    def from_rate(cls, rate: float) -> "EffectiveCounts":
        rate = min(max(float(rate), 0.0), 100.0)
        return cls(0.0, 100.0 - rate, rate)


@dataclass
class SchoolRecord:
    uai: str
    name: str
    results: Dict[str, EffectiveCounts] = field(default_factory=dict)


@dataclass
class EnrichedSchool:
    uai: str
    name: str
    results: Dict[str, EffectiveCounts]
    socio_index: Optional[float]
    sector: str = ""
    academie: str = ""
    departement: str = ""
    commune: str = ""

    @property
    def is_public(self) -> bool:
        return "public" in (self.sector or "").lower()

    @property
    def has_socio_index(self) -> bool:
        return isinstance(self.socio_index, (int, float)) and self.socio_index == self.socio_index


@dataclass(frozen=True)
class Regression:
    slope: float
    intercept: float
    r_squared: float
    sample_size: int

    def predict(self, socio_index: float) -> float:
        return self.slope * socio_index + self.intercept


class RegressionTable(Mapping[str, Regression]):
    """Read-only SkillKey -> Regression mapping, fitted once per run."""

    def __init__(self, regressions: Optional[Mapping[str, Regression]] = None):
        self._data = MappingProxyType(dict(regressions or {}))

    def __getitem__(self, key: str) -> Regression:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def predict(self, skill_key: str, socio_index: float) -> Optional[float]:
        reg = self._data.get(skill_key)
        if reg is None:
            return None
        return reg.predict(socio_index)

    def for_subject(self, subject: str) -> Dict[str, Regression]:
        return {k: r for k, r in self._data.items() if split_skill_key(k)[1] == subject}


@dataclass(frozen=True)
class SkillClassification:
    uai: str
    school: str
    socio_index: float
    socio_band: str
    sector: str
    level: str
    subject: str
    skill: str
    skill_key: str
    counts: EffectiveCounts
    actual_rate: float
    expected_rate: float
    gap: float
    category: str
    ref_france: Optional[float] = None
    ref_academie: Optional[float] = None
    gap_vs_france: Optional[float] = None
    gap_vs_academie: Optional[float] = None


@dataclass(frozen=True)
class SubjectProfile:
    uai: str
    subject: str
    actual_rate: float
    expected_rate: float
    gap: float
    category: str
    skills_used: int
    counts: EffectiveCounts


@dataclass(frozen=True)
class CrossProfile:
    maths: str
    french: str
    priority: int
    label: str

    @property
    def code(self) -> str:
        # (WATCH, CONFORM) -> "W,C"
        return f"{self.maths[0]},{self.french[0]}"


@dataclass
class SchoolSynthesis:
    uai: str
    name: str
    socio_index: float
    socio_band: str
    sector: str
    nb_lever: int = 0
    nb_conform: int = 0
    nb_watch: int = 0
    subject_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    maths_profile: Optional[SubjectProfile] = None
    french_profile: Optional[SubjectProfile] = None
    cross_profile: Optional[CrossProfile] = None
    lever_share: float = 0.0
    in_lever_portfolio: bool = False

    @property
    def nb_total(self) -> int:
        return self.nb_lever + self.nb_conform + self.nb_watch

    @property
    def watch_rate(self) -> float:
        return 100.0 * self.nb_watch / self.nb_total if self.nb_total else 0.0

    @property
    def lever_rate(self) -> float:
        return 100.0 * self.nb_lever / self.nb_total if self.nb_total else 0.0

    @property
    def priority(self) -> Optional[int]:
        return self.cross_profile.priority if self.cross_profile else None
