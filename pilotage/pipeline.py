from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from .extract import extract_table
from .ips import enrich_schools
from .merge import merge_school_records
from .models import (
    EnrichedSchool,
    RegressionTable,
    SchoolRecord,
    SchoolSynthesis,
    SkillClassification,
    SubjectProfile,
)
from .regression import fit_regressions
from .scoring import classify_all, subject_profiles
from .synthesis import build_strategy, summarize_schools

logger = logging.getLogger(__name__)


class PipelineError(RuntimeError):
    """Run-level failure: nothing meaningful can be produced."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


@dataclass
class PipelineResult:
    records: List[SchoolRecord]
    schools: List[EnrichedSchool]
    regressions: RegressionTable
    classifications: List[SkillClassification]
    profiles: Dict[str, Dict[str, Optional[SubjectProfile]]]
    syntheses: List[SchoolSynthesis]
    strategy: Dict[str, Any]
    issues: List[Dict[str, Any]] = field(default_factory=list)


def extract_all(tables: List[Dict[str, Any]], issues: List[Dict[str, Any]]) -> List[SchoolRecord]:
    extractions = []
    for table in tables:
        records, table_issues = extract_table(table)
        issues.extend(table_issues)
        extractions.append(records)
    return merge_school_records(extractions)


def run_pipeline(
    tables: List[Dict[str, Any]],
    ips_index: Dict[str, Dict[str, Any]],
    references: Any = None,
    issues: Optional[List[Dict[str, Any]]] = None,
) -> PipelineResult:
    """
    tables -> merged school records -> IPS join (public schools only) ->
    per-skill regressions -> classifications -> subject/cross profiles ->
    school rollup and strategy levels.
    """
    issues = issues if issues is not None else []

    records = extract_all(tables, issues)
    if not records:
        raise PipelineError("no_schools", "No school could be extracted from the source tables")

    schools, join_issues = enrich_schools(records, ips_index)
    issues.extend(join_issues)
    if not schools:
        raise PipelineError("no_socio_index", "No public school with a usable socio-economic index")

    regressions = fit_regressions(schools, issues)
    classifications = classify_all(schools, regressions, references)
    if not classifications:
        raise PipelineError("no_classifications", "No skill classification could be produced")

    profiles = subject_profiles(schools, regressions)
    syntheses = summarize_schools(classifications, profiles)
    strategy = build_strategy(syntheses, classifications, regressions)

    return PipelineResult(
        records=records,
        schools=schools,
        regressions=regressions,
        classifications=classifications,
        profiles=profiles,
        syntheses=syntheses,
        strategy=strategy,
        issues=issues,
    )
