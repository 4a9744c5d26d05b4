from __future__ import annotations
from typing import Dict, Optional, Tuple
from .models import LEVER, CONFORM, WATCH, CrossProfile
from .utils import load_rules

RULES = load_rules().get("categorisation", {})

LEVER_THRESHOLD = float(RULES.get("lever_threshold", 7.0))
WATCH_THRESHOLD = float(RULES.get("watch_threshold", -7.0))
LEVER_SHARE_THRESHOLD = float(RULES.get("lever_share_threshold", 0.30))

PRIORITY_SUPPORT = "PRIORITY SUPPORT"
MODERATE_WATCH = "MODERATE WATCH"
REINFORCED_FOLLOW_UP = "REINFORCED FOLLOW-UP"
STANDARD_FOLLOW_UP = "STANDARD FOLLOW-UP"
LEVER_SCHOOL = "LEVER SCHOOL"

# (maths, french) -> (priority, posture label); 0 = most urgent
CROSS_PROFILE_TABLE: Dict[Tuple[str, str], Tuple[int, str]] = {
    (WATCH, WATCH): (0, PRIORITY_SUPPORT),
    (WATCH, CONFORM): (1, MODERATE_WATCH),
    (CONFORM, WATCH): (1, MODERATE_WATCH),
    (WATCH, LEVER): (2, REINFORCED_FOLLOW_UP),
    (LEVER, WATCH): (2, REINFORCED_FOLLOW_UP),
    (CONFORM, LEVER): (2, REINFORCED_FOLLOW_UP),
    (LEVER, CONFORM): (2, REINFORCED_FOLLOW_UP),
    (CONFORM, CONFORM): (3, STANDARD_FOLLOW_UP),
    (LEVER, LEVER): (5, LEVER_SCHOOL),
}

# intervention sequencing: same cells, same priorities, one action per cell
PRIORITY_MATRIX: Dict[Tuple[str, str], Tuple[int, str]] = {
    (WATCH, WATCH): (0, "ACCOMPAGNEMENT GLOBAL URGENT"),
    (WATCH, CONFORM): (1, "ACCOMP. MATHS + SUIVI FRANÇAIS"),
    (CONFORM, WATCH): (1, "ACCOMP. FRANÇAIS + SUIVI MATHS"),
    (WATCH, LEVER): (2, "ACCOMP. MATHS + VALORISER FRANÇAIS"),
    (LEVER, WATCH): (2, "ACCOMP. FRANÇAIS + VALORISER MATHS"),
    (CONFORM, LEVER): (2, "SUIVI RENFORCÉ + OBSERVATION"),
    (LEVER, CONFORM): (2, "SUIVI RENFORCÉ + OBSERVATION"),
    (CONFORM, CONFORM): (3, "SUIVI STANDARD"),
    (LEVER, LEVER): (5, "EXCELLENCE À VALORISER"),
}

CATEGORY_LABELS = {LEVER: "🟢 LEVIER", CONFORM: "🟡 CONFORME", WATCH: "🔴 VIGILANCE"}


def categorize_gap(gap: float) -> str:
    # strict thresholds: +7.0 and -7.0 themselves stay CONFORM
    if gap > LEVER_THRESHOLD:
        return LEVER
    if gap < WATCH_THRESHOLD:
        return WATCH
    return CONFORM


def cross_profile(maths: str, french: str) -> CrossProfile:
    priority, label = CROSS_PROFILE_TABLE[(maths, french)]
    return CrossProfile(maths=maths, french=french, priority=priority, label=label)


def matrix_cell(maths: str, french: str) -> Tuple[int, str]:
    return PRIORITY_MATRIX[(maths, french)]


def socio_band(ips: Optional[float]) -> str:
    if ips is None:
        return ""
    if ips < 80:
        return "Très défavorisé"
    if ips < 90:
        return "Défavorisé"
    if ips > 120:
        return "Très favorisé"
    if ips > 110:
        return "Favorisé"
    return "Moyen"


def interpret_r2(r2: float) -> str:
    if r2 > 0.7:
        return "IPS très déterminant (leviers limités)"
    if r2 > 0.5:
        return "IPS déterminant"
    if r2 > 0.3:
        return "IPS modérément déterminant"
    return "Faible influence IPS (forte marge de manœuvre)"
