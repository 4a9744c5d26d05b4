from __future__ import annotations
import csv
import logging
from io import BytesIO, StringIO
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple
import pandas as pd
from openpyxl import load_workbook
from .utils import load_rules
from .quality import make_issue

logger = logging.getLogger(__name__)

RULES = load_rules()

DEFAULT_TABLES = [
    {"level": "CP", "subject": "francais", "prefix": "cpfr"},
    {"level": "CP", "subject": "maths", "prefix": "cpma"},
    {"level": "CE1", "subject": "francais", "prefix": "ce1fr"},
    {"level": "CE1", "subject": "maths", "prefix": "ce1ma"},
    {"level": "CE2", "subject": "francais", "prefix": "ce2fr"},
    {"level": "CE2", "subject": "maths", "prefix": "ce2ma"},
    {"level": "CM1", "subject": "francais", "prefix": "cm1fr"},
    {"level": "CM1", "subject": "maths", "prefix": "cm1ma"},
    {"level": "CM2", "subject": "francais", "prefix": "cm2fr"},
    {"level": "CM2", "subject": "maths", "prefix": "cm2ma"},
]
FILE_PATTERN = "CIRCO_ecoles_{PREFIX}.csv"
CSV_SUBDIR = ("orace", "csv")
# =========================

# Excel: sheet as a matrix, merged cells unrolled
# =========================
def _sheet_to_matrix_with_merged(wb_bytes: bytes, sheet_name: Optional[str] = None) -> List[List[Any]]:
    wb = load_workbook(BytesIO(wb_bytes), read_only=False, data_only=True)
    ws = wb[sheet_name] if sheet_name else wb.worksheets[0]
    merged_map = {}
    for r in ws.merged_cells.ranges:
        min_col, min_row, max_col, max_row = r.bounds
        top_val = ws.cell(min_row, min_col).value
        for rr in range(min_row, max_row + 1):
            for cc in range(min_col, max_col + 1):
                merged_map[(rr, cc)] = top_val

    rows = []
    for r in range(1, ws.max_row + 1):
        row_vals = []
        for c in range(1, ws.max_column + 1):
            v = ws.cell(r, c).value
            if (r, c) in merged_map and (v is None or str(v).strip() == ""):
                v = merged_map[(r, c)]
            row_vals.append(v)
        rows.append(row_vals)

    return rows
# =========================

# CSV: tolerant reading from bytes (ragged rows, unknown delimiter)
# =========================
def _decode(data: bytes) -> str:
    # exports are utf-8 (often with BOM) or Windows-1252
    for enc in ("utf-8-sig", "utf-8", "cp1252"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1", errors="replace")


def _guess_delimiter(sample_text: str) -> str:
    # ';' for French locales, ',' otherwise, sometimes tabs
    try:
        dialect = csv.Sniffer().sniff(sample_text, delimiters=";,\t|")
        if dialect.delimiter:
            return dialect.delimiter
    except csv.Error:
        pass

    # fallback: average count per non-empty line
    candidates = [";", ",", "\t", "|"]
    lines = [ln for ln in sample_text.splitlines() if ln.strip()][:20]
    if not lines:
        return ";"

    scores = {}
    for d in candidates:
        cnts = [ln.count(d) for ln in lines]
        scores[d] = sum(cnts) / max(1, len(cnts))

    best = max(scores.items(), key=lambda x: x[1])[0]
    return best if scores.get(best, 0) > 0 else ";"


def _matrix_to_frame(rows: List[List[Any]]) -> pd.DataFrame:
    # ragged rows are padded with None; column 0 = source row number (1-based)
    df = pd.DataFrame(rows, dtype=object)
    df.columns = range(1, df.shape[1] + 1)
    df.insert(0, "_origin_row", range(1, len(df) + 1))
    return df


def read_csv_bytes(data: bytes, delimiter: Optional[str] = None) -> pd.DataFrame:
    """
    Reads a delimited export as a header-less matrix: banner rows, group
    labels and school rows all land in the frame as ordinary rows.
    """
    text = _decode(data)
    if not text.strip():
        return _matrix_to_frame([])
    delim = delimiter or _guess_delimiter(text[:65536])

    # ragged exports: the widest line fixes the column count, shorter rows are padded
    width = max(ln.count(delim) for ln in text.splitlines()) + 1
    df = pd.read_csv(
        StringIO(text),
        header=None,
        names=list(range(width)),
        sep=delim,
        engine="python",
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=False,
    )
    rows = [
        [v.strip() if isinstance(v, str) else v for v in row]
        for row in df.itertuples(index=False, name=None)
    ]
    return _matrix_to_frame(rows)


def read_xlsx_bytes(data: bytes, sheet_name: Optional[str] = None) -> pd.DataFrame:
    return _matrix_to_frame(_sheet_to_matrix_with_merged(data, sheet_name=sheet_name))


def read_table_file(path: Path) -> pd.DataFrame:
    data = Path(path).read_bytes()
    if str(path).lower().endswith((".xlsx", ".xlsm")):
        return read_xlsx_bytes(data)
    return read_csv_bytes(data)
# =========================

# Main: data dir -> tables
# =========================
def table_configs() -> List[Dict[str, str]]:
    cfg = RULES.get("tables")
    return cfg if isinstance(cfg, list) and cfg else DEFAULT_TABLES


def load_source_tables(
    data_dir: Path,
    configs: Optional[List[Dict[str, str]]] = None,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Returns (tables, issues). One table per configured level x subject:
      {
        "source_name": <file name>,
        "level": "CP", "subject": "maths",
        "df_raw": DataFrame (column "_origin_row" first),
      }
    A missing or unreadable file is skipped with an issue row.
    """
    configs = configs or table_configs()
    base = Path(data_dir).joinpath(*CSV_SUBDIR)
    tables: List[Dict[str, Any]] = []
    issues: List[Dict[str, Any]] = []

    for cfg in configs:
        name = FILE_PATTERN.format(PREFIX=cfg["prefix"].upper())
        path = base / name
        if not path.exists():
            xlsx = path.with_suffix(".xlsx")
            if xlsx.exists():
                path, name = xlsx, xlsx.name
            else:
                logger.warning("%s: file not found, skipped", name)
                issues.append(make_issue("missing_file", name))
                continue

        try:
            df_raw = read_table_file(path)
        except Exception as e:
            logger.warning("%s: unreadable (%s: %s), skipped", name, type(e).__name__, e)
            issues.append(make_issue("read_failed", name, e))
            continue

        logger.info("Loaded %s (%d rows)", name, len(df_raw))
        tables.append({
            "source_name": name,
            "level": cfg["level"],
            "subject": cfg["subject"],
            "df_raw": df_raw,
        })

    return tables, issues
