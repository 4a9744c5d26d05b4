from __future__ import annotations
import logging
from typing import Dict, Any, List, Optional, Tuple
import pandas as pd
from .header_detect import (
    HeaderScanner,
    SkillBlock,
    TIER_NEEDS,
    TIER_FRAGILE,
    TIER_SATISFACTORY,
    frame_rows,
    is_total_row,
    matches_identification,
    segment_skill_blocks,
)
from .models import EffectiveCounts, SchoolRecord, make_skill_key
from .quality import make_issue
from .utils import normalize_skill_name, parse_count, parse_percent

logger = logging.getLogger(__name__)


def _cell(row: List[str], col: int) -> str:
    return row[col] if 0 <= col < len(row) else ""


def _read_tier_counts(row: List[str], block: SkillBlock) -> Optional[EffectiveCounts]:
    if len(block.count_columns) < 3:
        return None
    counts = {tier: parse_count(_cell(row, col)) for tier, col in block.count_columns.items()}
    if any(v is None for v in counts.values()):
        return None
    return EffectiveCounts(counts[TIER_NEEDS], counts[TIER_FRAGILE], counts[TIER_SATISFACTORY])


def read_counts(row: List[str], block: SkillBlock) -> Optional[EffectiveCounts]:
    """
    Tier values for one school and one skill. Pupil counts when the export
    prints them for all three tiers; otherwise the marker columns: all three
    tiers -> triple as read, satisfactory alone -> shares on a base of 100.
    """
    counts = _read_tier_counts(row, block)
    if counts is not None:
        return counts

    values: Dict[str, Optional[float]] = {
        tier: parse_percent(_cell(row, col)) for tier, col in block.columns.items()
    }
    sat = values.get(TIER_SATISFACTORY)
    if sat is None or sat < 0:
        return None

    needs = values.get(TIER_NEEDS)
    fragile = values.get(TIER_FRAGILE)
    if needs is not None and fragile is not None and needs >= 0 and fragile >= 0:
        return EffectiveCounts(needs, fragile, sat)
    return EffectiveCounts.from_rate(sat)


def extract_schools(
    rows: List[List[str]],
    blocks: List[SkillBlock],
    level: str,
    subject: str,
) -> List[SchoolRecord]:
    schools: List[SchoolRecord] = []
    keys = {b.name: make_skill_key(level, subject, normalize_skill_name(b.name)) for b in blocks}

    for row in rows:
        uai = _cell(row, 0).strip()
        name = _cell(row, 1).strip()
        if not uai or is_total_row(row):
            continue

        results: Dict[str, EffectiveCounts] = {}
        for block in blocks:
            counts = read_counts(row, block)
            if counts is not None:
                results[keys[block.name]] = counts

        if results:
            schools.append(SchoolRecord(uai=uai, name=name, results=results))

    return schools


def extract_table(table: Dict[str, Any]) -> Tuple[List[SchoolRecord], List[Dict[str, Any]]]:
    """
    Decodes one export into per-school records for its level x subject.
    Never raises on malformed content: the table is skipped with an issue
    row and a warning.
    """
    source = table.get("source_name", "")
    level = table["level"]
    subject = table["subject"]
    df_raw: pd.DataFrame = table["df_raw"]

    def skip(code: str, detail: Any = "") -> Tuple[List[SchoolRecord], List[Dict[str, Any]]]:
        logger.warning("%s: table skipped (%s)", source, code)
        return [], [make_issue(code, source, detail)]

    rows = frame_rows(df_raw)
    if not rows or not matches_identification(rows[0], level, subject):
        return skip("identification_failed", f"{level} {subject}")

    layout = HeaderScanner(rows).run()
    if not layout.ok:
        return skip(layout.failure or "group_row_missing", f"state={layout.state.value}")

    dropped: List[str] = []
    blocks = segment_skill_blocks(rows, layout, dropped)
    if not blocks:
        return skip("no_skill_blocks")
    issues = [make_issue("skill_dropped", source, name) for name in dropped]

    schools = extract_schools(rows[layout.first_school_row:], blocks, level, subject)
    if not schools:
        return skip("no_school_rows")

    logger.info("%s: %d skills, %d schools extracted", source, len(blocks), len(schools))
    return schools, issues
