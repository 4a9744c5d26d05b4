from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional
from .categorisation import categorize_gap, cross_profile, socio_band
from .models import (
    SUBJECTS,
    SUBJECT_FRENCH,
    SUBJECT_MATHS,
    CrossProfile,
    EffectiveCounts,
    EnrichedSchool,
    RegressionTable,
    SkillClassification,
    SubjectProfile,
    split_skill_key,
)
from .regression import subject_expected_rate

logger = logging.getLogger(__name__)


def _r1(x: Optional[float]) -> Optional[float]:
    return None if x is None else round(float(x), 1)


def classify_skill(
    school: EnrichedSchool,
    skill_key: str,
    regressions: RegressionTable,
    references: Any = None,
) -> Optional[SkillClassification]:
    counts = school.results.get(skill_key)
    if counts is None or not school.has_socio_index:
        return None
    actual = counts.success_rate
    if actual is None:
        return None
    expected = regressions.predict(skill_key, school.socio_index)
    if expected is None:
        return None

    gap = actual - expected
    level, subject, skill = split_skill_key(skill_key)

    ref = references.lookup(level, subject, skill) if references is not None else None
    ref_fr = ref.get("france") if ref else None
    ref_ac = ref.get("academie") if ref else None

    return SkillClassification(
        uai=school.uai,
        school=school.name,
        socio_index=_r1(school.socio_index),
        socio_band=socio_band(school.socio_index),
        sector=school.sector or "",
        level=level,
        subject=subject,
        skill=skill,
        skill_key=skill_key,
        counts=counts,
        actual_rate=_r1(actual),
        expected_rate=_r1(expected),
        gap=_r1(gap),
        category=categorize_gap(gap),
        ref_france=_r1(ref_fr),
        ref_academie=_r1(ref_ac),
        gap_vs_france=_r1(actual - ref_fr) if ref_fr is not None else None,
        gap_vs_academie=_r1(actual - ref_ac) if ref_ac is not None else None,
    )


def classify_all(
    schools: List[EnrichedSchool],
    regressions: RegressionTable,
    references: Any = None,
) -> List[SkillClassification]:
    out: List[SkillClassification] = []
    for school in schools:
        for key in school.results:
            c = classify_skill(school, key, regressions, references)
            if c is not None:
                out.append(c)
    logger.info("%d skill classifications", len(out))
    return out


def subject_profile(
    school: EnrichedSchool,
    subject: str,
    regressions: RegressionTable,
) -> Optional[SubjectProfile]:
    """
    Subject rate from cumulative tier counts over every skill of that subject
    with pupils (never a mean of per-skill rates), against the mean of the
    expected rates of the skills that have a baseline.
    """
    if not school.has_socio_index:
        return None

    keys = [
        k for k, c in school.results.items()
        if split_skill_key(k)[1] == subject and c.total > 0
    ]
    if not keys:
        return None

    cumul = EffectiveCounts.zero()
    for k in keys:
        cumul = cumul + school.results[k]
    actual = cumul.success_rate
    expected = subject_expected_rate(regressions, keys, subject, school.socio_index)
    if actual is None or expected is None:
        return None

    gap = actual - expected
    return SubjectProfile(
        uai=school.uai,
        subject=subject,
        actual_rate=_r1(actual),
        expected_rate=_r1(expected),
        gap=_r1(gap),
        category=categorize_gap(gap),
        skills_used=len(keys),
        counts=cumul,
    )


def subject_profiles(
    schools: List[EnrichedSchool],
    regressions: RegressionTable,
) -> Dict[str, Dict[str, Optional[SubjectProfile]]]:
    return {
        s.uai: {subj: subject_profile(s, subj, regressions) for subj in SUBJECTS}
        for s in schools
    }


def school_cross_profile(profiles: Dict[str, Optional[SubjectProfile]]) -> Optional[CrossProfile]:
    maths = profiles.get(SUBJECT_MATHS)
    french = profiles.get(SUBJECT_FRENCH)
    if maths is None or french is None:
        return None
    return cross_profile(maths.category, french.category)
