from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import pandas as pd
from .utils import cell_text, contains_any, norm_text, strip_accents, load_rules

logger = logging.getLogger(__name__)

RULES = load_rules().get("header", {})

# 0-based row indices: the skill labels sit on the 3rd source row, the group
# labels somewhere on rows 3..10
SKILL_NAME_ROW = int(RULES.get("skill_name_row", 2))
GROUP_ROW_FIRST = int(RULES.get("group_row_first", 2))
GROUP_ROW_LAST = int(RULES.get("group_row_last", 9))
VALUE_KIND_LOOKAHEAD = int(RULES.get("value_kind_lookahead", 3))
DATA_COLUMN_LOOKAHEAD = int(RULES.get("data_column_lookahead", 3))
MIN_SKILL_LABEL_LEN = int(RULES.get("min_skill_label_len", 10))
MIN_SCHOOL_CODE_LEN = int(RULES.get("min_school_code_len", 7))

TIER_NEEDS = "needs"
TIER_FRAGILE = "fragile"
TIER_SATISFACTORY = "satisfactory"
TIERS = (TIER_NEEDS, TIER_FRAGILE, TIER_SATISFACTORY)

TIER_KEYWORDS = RULES.get("tier_keywords", {
    TIER_NEEDS: ["besoin", "needs"],
    TIER_FRAGILE: ["fragile"],
    TIER_SATISFACTORY: ["satisfaisant", "satisfactory"],
})
VALUE_MARKERS = RULES.get("value_markers", ["%", "répondants", "respondents"])
COUNT_MARKERS = RULES.get("count_markers", ["effectif", "nombre", "count"])
META_LABELS = RULES.get("meta_labels", ["compétence", "skill", "exercice", "exercise"])
HEADER_SENTINELS = RULES.get("header_sentinels", ["uai"])
TOTAL_SENTINELS = RULES.get("total_sentinels", ["total"])

SUBJECT_CODES = RULES.get("subject_codes", {"francais": "fr", "maths": "ma"})
SIGNATURE_TEMPLATE = RULES.get("signature", "evaluation {level}{code}")


class ScanState(Enum):
    AWAIT_GROUP_ROW = "AwaitGroupRow"
    AWAIT_VALUE_KIND_ROW = "AwaitValueKindRow"
    AWAIT_FIRST_SCHOOL_ROW = "AwaitFirstSchoolRow"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class HeaderLayout:
    state: ScanState = ScanState.AWAIT_GROUP_ROW
    group_row: Optional[int] = None
    value_kind_row: Optional[int] = None
    first_school_row: Optional[int] = None
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is ScanState.DONE


@dataclass(frozen=True)
class SkillBlock:
    name: str
    start: int
    end: int
    # tier -> data column; the satisfactory tier is always present
    columns: Dict[str, int] = field(default_factory=dict)
    # tier -> pupil-count column, when the export prints counts next to the %
    count_columns: Dict[str, int] = field(default_factory=dict)

    @property
    def data_column(self) -> int:
        return self.columns[TIER_SATISFACTORY]


def frame_rows(df_raw: pd.DataFrame) -> List[List[str]]:
    # matrix of cleaned cell texts, "_origin_row" left out
    cols = [c for c in df_raw.columns if c != "_origin_row"]
    return [[cell_text(v) for v in row] for row in df_raw[cols].itertuples(index=False, name=None)]


def _cell(row: List[str], col: int) -> str:
    return row[col] if 0 <= col < len(row) else ""


def _row_has(row: List[str], keywords) -> bool:
    return any(contains_any(c, keywords) for c in row if c)


def identification_signature(level: str, subject: str) -> str:
    code = SUBJECT_CODES.get(subject, subject[:2])
    return SIGNATURE_TEMPLATE.format(level=level.lower(), code=code)


def matches_identification(first_row: List[str], level: str, subject: str) -> bool:
    """'Evaluation CPMA - ...' in any cell of the first row; case and accents ignored."""
    if not first_row:
        return False
    expected = strip_accents(norm_text(identification_signature(level, subject)))
    return any(expected in strip_accents(norm_text(c)) for c in first_row if c)
# =========================

# Header scan: AwaitGroupRow -> AwaitValueKindRow -> AwaitFirstSchoolRow
# =========================
class HeaderScanner:
    """
    Locates the three anchor rows of an export. Each state performs one
    bounded forward scan; a miss moves to FAILED with the matching issue code.
    """

    def __init__(self, rows: List[List[str]]):
        self.rows = rows
        self.layout = HeaderLayout()
        self._handlers = {
            ScanState.AWAIT_GROUP_ROW: self._await_group_row,
            ScanState.AWAIT_VALUE_KIND_ROW: self._await_value_kind_row,
            ScanState.AWAIT_FIRST_SCHOOL_ROW: self._await_first_school_row,
        }

    def run(self) -> HeaderLayout:
        while self.layout.state in self._handlers:
            self.layout.state = self._handlers[self.layout.state]()
        return self.layout

    def _fail(self, code: str) -> ScanState:
        self.layout.failure = code
        return ScanState.FAILED

    def _await_group_row(self) -> ScanState:
        last = min(GROUP_ROW_LAST, len(self.rows) - 1)
        for i in range(GROUP_ROW_FIRST, last + 1):
            if _row_has(self.rows[i], TIER_KEYWORDS[TIER_SATISFACTORY]):
                self.layout.group_row = i
                return ScanState.AWAIT_VALUE_KIND_ROW
        return self._fail("group_row_missing")

    def _await_value_kind_row(self) -> ScanState:
        start = self.layout.group_row + 1
        stop = min(start + VALUE_KIND_LOOKAHEAD, len(self.rows))
        for i in range(start, stop):
            if _row_has(self.rows[i], VALUE_MARKERS):
                self.layout.value_kind_row = i
                return ScanState.AWAIT_FIRST_SCHOOL_ROW
        return self._fail("value_kind_row_missing")

    def _await_first_school_row(self) -> ScanState:
        for i in range(self.layout.value_kind_row + 1, len(self.rows)):
            if is_school_row(self.rows[i]):
                self.layout.first_school_row = i
                return ScanState.DONE
        return self._fail("first_school_row_missing")


def is_school_row(row: List[str]) -> bool:
    code = _cell(row, 0)
    name = _cell(row, 1)
    if not code or not name:
        return False
    if contains_any(code, HEADER_SENTINELS) or contains_any(code, TOTAL_SENTINELS):
        return False
    return len(code) >= MIN_SCHOOL_CODE_LEN


def is_total_row(row: List[str]) -> bool:
    return contains_any(_cell(row, 0), TOTAL_SENTINELS)
# =========================

# Skill blocks
# =========================
def _is_skill_label(text: str) -> bool:
    return len(text) >= MIN_SKILL_LABEL_LEN and not contains_any(text, META_LABELS)


def _resolve_data_column(group_col: int, end: int, value_row: List[str]) -> int:
    # first percentage/respondent marker at or right of the group label, else the next column
    for col in range(group_col, min(group_col + DATA_COLUMN_LOOKAHEAD, end) + 1):
        if contains_any(_cell(value_row, col), VALUE_MARKERS):
            return col
    return group_col + 1


def _resolve_count_column(group_col: int, end: int, group_row: List[str], value_row: List[str]) -> Optional[int]:
    # count-labelled column inside the tier span, i.e. before the next group label
    tier_label = _cell(group_row, group_col)
    for col in range(group_col, min(group_col + DATA_COLUMN_LOOKAHEAD, end) + 1):
        other = _cell(group_row, col)
        if col > group_col and other and other != tier_label:
            break
        label = _cell(value_row, col)
        if contains_any(label, COUNT_MARKERS) and "%" not in label:
            return col
    return None


def _finalize_block(name: str, start: int, end: int, group_row: List[str], value_row: List[str], width: int) -> Optional[SkillBlock]:
    columns: Dict[str, int] = {}
    count_columns: Dict[str, int] = {}
    for tier in TIERS:
        group_col = next(
            (c for c in range(start, end + 1) if contains_any(_cell(group_row, c), TIER_KEYWORDS[tier])),
            None,
        )
        if group_col is None:
            continue
        col = _resolve_data_column(group_col, end, value_row)
        if col < width:
            columns[tier] = col
        count_col = _resolve_count_column(group_col, end, group_row, value_row)
        if count_col is not None and count_col < width:
            count_columns[tier] = count_col

    if TIER_SATISFACTORY not in columns:
        return None
    return SkillBlock(name=name, start=start, end=end, columns=columns, count_columns=count_columns)


def segment_skill_blocks(rows: List[List[str]], layout: HeaderLayout, dropped: Optional[List[str]] = None) -> List[SkillBlock]:
    """
    Walks the skill-name row left to right: every long enough label that is not
    a meta label ("Compétence", "Exercice") opens a block that runs until the
    next one. Blocks without a satisfactory column are dropped.
    """
    if SKILL_NAME_ROW >= len(rows) or layout.group_row is None or layout.value_kind_row is None:
        return []

    skill_row = rows[SKILL_NAME_ROW]
    group_row = rows[layout.group_row]
    value_row = rows[layout.value_kind_row]
    width = max(len(skill_row), len(group_row), len(value_row))

    starts: List[tuple] = []
    for col, text in enumerate(skill_row):
        if not text or not _is_skill_label(text):
            continue
        # merged header cells unrolled from xlsx repeat the same label
        if starts and starts[-1][1] == text and col == starts[-1][2] + 1:
            starts[-1] = (starts[-1][0], text, col)
            continue
        starts.append((col, text, col))

    blocks: List[SkillBlock] = []
    for i, (start, name, _) in enumerate(starts):
        end = starts[i + 1][0] - 1 if i + 1 < len(starts) else width - 1
        block = _finalize_block(name, start, end, group_row, value_row, width)
        if block is None:
            logger.debug("Skill '%s' dropped: no satisfactory data column", name)
            if dropped is not None:
                dropped.append(name)
            continue
        blocks.append(block)

    return blocks
