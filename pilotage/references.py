from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import pandas as pd
from rapidfuzz import fuzz, process
from .quality import make_issue
from .utils import cell_text, normalize_skill_name, parse_percent, load_rules

logger = logging.getLogger(__name__)

RULES = load_rules().get("references", {})

LEVELS = RULES.get("levels", ["CP", "CE1", "CE2", "CM1", "CM2"])
SUBJECT_FILES = RULES.get("subject_files", {"francais": "francais", "maths": "mathematiques"})
FILE_PATTERN = RULES.get("file_pattern", "{level}-{subject}-2025.xlsx")
SUBDIR = RULES.get("subdir", "references_nationales")
MODALITY_COL = RULES.get("modality_col", "Modalite")
VALUE_COL = RULES.get("value_col", "Groupe au-dessus du seuil 2")
NATIONAL_ROW = RULES.get("national_row", "FRANCE")
FUZZY_THRESHOLD = int(RULES.get("fuzzy_threshold", 90))


def _row_value(sheet: pd.DataFrame, modality: str) -> Optional[float]:
    if MODALITY_COL not in sheet.columns or VALUE_COL not in sheet.columns:
        return None
    mask = sheet[MODALITY_COL].map(lambda v: cell_text(v).upper() == modality.upper())
    hit = sheet.loc[mask, VALUE_COL]
    if hit.empty:
        return None
    return parse_percent(hit.iloc[0])


def parse_reference_sheets(sheets: Dict[str, pd.DataFrame], academie: str) -> Dict[str, Dict[str, float]]:
    """Sheet per skill -> {normalized skill: {"france": x, "academie": y}}."""
    out: Dict[str, Dict[str, float]] = {}
    for sheet_name, sheet in sheets.items():
        france = _row_value(sheet, NATIONAL_ROW)
        acad = _row_value(sheet, academie)
        if france is None or acad is None:
            continue
        out[normalize_skill_name(sheet_name)] = {"france": france, "academie": acad}
    return out


class ReferenceBook:
    """
    National and académie success rates per level x subject x skill, used only
    for side-by-side comparison columns.
    """

    def __init__(self, references: Optional[Dict[Tuple[str, str], Dict[str, Dict[str, float]]]] = None):
        self.references = references or {}

    @classmethod
    def load(cls, data_dir: Path, academie: str, issues: Optional[List[Dict[str, Any]]] = None) -> "ReferenceBook":
        book = cls()
        base = Path(data_dir) / SUBDIR
        for level in LEVELS:
            for subject, file_token in SUBJECT_FILES.items():
                path = base / FILE_PATTERN.format(level=level.lower(), subject=file_token)
                if not path.exists():
                    if issues is not None:
                        issues.append(make_issue("reference_missing", path.name))
                    continue
                try:
                    sheets = pd.read_excel(path, sheet_name=None, engine="openpyxl")
                except Exception as e:
                    logger.warning("%s: unreadable reference workbook (%s)", path.name, e)
                    if issues is not None:
                        issues.append(make_issue("read_failed", path.name, e))
                    continue
                book.references[(level, subject)] = parse_reference_sheets(sheets, academie)
        logger.info("References loaded for %d level/subject pairs", len(book.references))
        return book

    def lookup(self, level: str, subject: str, skill: str) -> Optional[Dict[str, float]]:
        table = self.references.get((level, subject))
        if not table:
            return None
        key = normalize_skill_name(skill)
        if key in table:
            return table[key]
        # sheet names are truncated by Excel (31 chars): fall back to fuzzy matching
        match = process.extractOne(key, list(table.keys()), scorer=fuzz.partial_ratio, score_cutoff=FUZZY_THRESHOLD)
        if match is None:
            return None
        return table[match[0]]
