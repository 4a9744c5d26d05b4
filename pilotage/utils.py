from __future__ import annotations
import os
import re
import json
import math
import unicodedata
from pathlib import Path
from typing import Any, Optional

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"

APPDATA = os.environ.get("APPDATA")
if APPDATA:
    USER_DATA_DIR = Path(APPDATA) / "IpsPilotage"
else:
    USER_DATA_DIR = DEFAULT_DATA_DIR  # fallback

def load_json(path: Path, default: Any):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return default

def save_json(path: Path, obj: Any):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)

_DASH_CHARS_RE = re.compile(r"[\u2010\u2011\u2012\u2013\u2014\u2212]")
_NBSP_RE = re.compile(r"[\u00A0\u2007\u202F]")  # NBSP variants
_APOSTROPHES_RE = re.compile(r"['\u2019\u2018`]")


def cell_text(v: Any) -> str:
    # raw cell value -> stripped text, NaN/None -> ""
    if v is None:
        return ""
    s = str(v)
    if not s or s.lower() == "nan":
        return ""
    return s.replace("\ufeff", "").strip()


def norm_text(s: Any) -> str:
    """
    Generic cell text normalization used for keyword matching:
    - lower
    - BOM / non-breaking spaces
    - outer quotes
    - every dash variant -> '-'
    - collapsed whitespace
    """
    if s is None:
        return ""

    s = str(s)

    # invisible characters typical of CSV/Excel exports
    s = s.replace("\ufeff", "")
    s = _NBSP_RE.sub(" ", s)
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ('"', "'"):
        s = s[1:-1].strip()
    s = s.lower()
    s = _DASH_CHARS_RE.sub("-", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def strip_accents(s: str) -> str:
    nfkd = unicodedata.normalize("NFKD", s)
    return "".join(ch for ch in nfkd if not unicodedata.combining(ch))


def normalize_skill_name(name: Any, max_len: int = 100) -> str:
    """
    Stable key fragment for a skill label:
    trim, whitespace -> '_', drop parentheses, strip accents, drop apostrophes,
    cap at max_len characters.
    """
    s = cell_text(name)
    s = _NBSP_RE.sub(" ", s)
    s = re.sub(r"\s+", "_", s)
    s = re.sub(r"[()]", "", s)
    s = strip_accents(s)
    s = _APOSTROPHES_RE.sub("", s)
    return s[:max_len]


def _to_number(value: Any) -> Optional[float]:
    # finite float from a numeric cell or a "43,5 %" style text; None otherwise
    if value is None:
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    else:
        s = cell_text(value)
        if not s:
            return None
        s = _NBSP_RE.sub("", s).replace(" ", "")
        s = s.replace("%", "").replace(",", ".")
        try:
            num = float(s)
        except ValueError:
            return None
    return num if math.isfinite(num) else None


def parse_percent(value: Any) -> Optional[float]:
    """
    '43,5 %' -> 43.5, '0.435' -> 43.5, '' -> None.
    Values strictly between 0 and 1 are read as fractions and rescaled to
    percentage scale; a genuine 0.5 % cannot be told apart from 50 % here.
    """
    num = _to_number(value)
    if num is None:
        return None
    if 0 < num < 1:
        return num * 100
    return num


def parse_count(value: Any) -> Optional[float]:
    """Pupil count cell: '12' -> 12.0; empty, negative or non-numeric -> None."""
    num = _to_number(value)
    if num is None or num < 0:
        return None
    return num


def contains_any(text: Any, keywords) -> bool:
    # accent-insensitive substring match ("repondants" finds "Répondants")
    t = strip_accents(norm_text(text))
    if not t:
        return False
    return any(strip_accents(norm_text(k)) in t for k in keywords)


def rules_path() -> Path:
    return DEFAULT_DATA_DIR / "rules.json"


def load_rules() -> dict:
    rules = load_json(rules_path(), {})
    return rules if isinstance(rules, dict) else {}


def cache_dir() -> Path:
    p = USER_DATA_DIR / "cache"
    p.mkdir(parents=True, exist_ok=True)
    return p
