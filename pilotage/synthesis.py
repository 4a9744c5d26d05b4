"""
School-level and circumscription-level rollups.

Two independent readings of a school are produced and kept side by side:
- the cross-subject profile (maths x french posture -> priority P0..P5);
- the lever share (fraction of classified skills that are LEVER), which feeds
  the lever portfolio. A school can be P1 and still sit in the portfolio.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional
import numpy as np
from .categorisation import (
    LEVER_SHARE_THRESHOLD,
    PRIORITY_MATRIX,
    interpret_r2,
)
from .models import (
    CATEGORIES,
    LEVER,
    SUBJECTS,
    SUBJECT_FRENCH,
    SUBJECT_LABELS,
    SUBJECT_MATHS,
    WATCH,
    RegressionTable,
    SchoolSynthesis,
    SkillClassification,
    SubjectProfile,
)
from .scoring import school_cross_profile
from .utils import load_rules

logger = logging.getLogger(__name__)

RULES = load_rules().get("synthesis", {})
PORTFOLIO_SIZE = int(RULES.get("portfolio_size", 10))
SHOWCASE_SIZE = int(RULES.get("showcase_size", 5))
TRAINING_WATCH_RATE = float(RULES.get("training_watch_rate", 30.0))
SUBJECT_GAP_POINTS = float(RULES.get("subject_gap_points", 10.0))

_NO_PRIORITY = 99


def ranking_key(s: SchoolSynthesis):
    # priority ascending (unprofiled last), then most WATCH, then most LEVER
    prio = s.priority if s.priority is not None else _NO_PRIORITY
    return (prio, -s.nb_watch, -s.nb_lever, s.uai)


def summarize_schools(
    classifications: List[SkillClassification],
    profiles: Dict[str, Dict[str, Optional[SubjectProfile]]],
) -> List[SchoolSynthesis]:
    by_uai: Dict[str, SchoolSynthesis] = {}

    for c in classifications:
        syn = by_uai.get(c.uai)
        if syn is None:
            syn = SchoolSynthesis(
                uai=c.uai,
                name=c.school,
                socio_index=c.socio_index,
                socio_band=c.socio_band,
                sector=c.sector,
                subject_counts={subj: {k: 0 for k in CATEGORIES} for subj in SUBJECTS},
            )
            by_uai[c.uai] = syn

        if c.category == LEVER:
            syn.nb_lever += 1
        elif c.category == WATCH:
            syn.nb_watch += 1
        else:
            syn.nb_conform += 1
        syn.subject_counts.setdefault(c.subject, {k: 0 for k in CATEGORIES})[c.category] += 1

    for uai, syn in by_uai.items():
        prof = profiles.get(uai, {})
        syn.maths_profile = prof.get(SUBJECT_MATHS)
        syn.french_profile = prof.get(SUBJECT_FRENCH)
        syn.cross_profile = school_cross_profile(prof)
        syn.lever_share = syn.nb_lever / syn.nb_total if syn.nb_total else 0.0
        syn.in_lever_portfolio = syn.lever_share >= LEVER_SHARE_THRESHOLD

    out = sorted(by_uai.values(), key=ranking_key)
    logger.info("%d schools summarized", len(out))
    return out
# =========================

# Level 1: circumscription overview
# =========================
def circumscription_overview(
    classifications: List[SkillClassification],
    regressions: RegressionTable,
) -> Dict[str, Dict[str, Any]]:
    overview: Dict[str, Dict[str, Any]] = {}
    for subj in SUBJECTS:
        rows = [c for c in classifications if c.subject == subj]
        total = len(rows)
        n_lever = sum(1 for c in rows if c.category == LEVER)
        n_watch = sum(1 for c in rows if c.category == WATCH)
        r2s = [r.r_squared for r in regressions.for_subject(subj).values()]
        r2_mean = float(np.mean(r2s)) if r2s else 0.0
        overview[subj] = {
            "label": SUBJECT_LABELS[subj],
            "total": total,
            "lever": n_lever,
            "conform": total - n_lever - n_watch,
            "watch": n_watch,
            "lever_rate": round(100.0 * n_lever / total, 1) if total else 0.0,
            "watch_rate": round(100.0 * n_watch / total, 1) if total else 0.0,
            "r2_mean": round(r2_mean, 3),
            "r2_reading": interpret_r2(r2_mean),
        }

    wm = overview[SUBJECT_MATHS]["watch_rate"]
    wf = overview[SUBJECT_FRENCH]["watch_rate"]
    if wm > wf + SUBJECT_GAP_POINTS:
        recommendation = "Priorité MATHS"
    elif wf > wm + SUBJECT_GAP_POINTS:
        recommendation = "Priorité FRANÇAIS"
    else:
        recommendation = "Accompagnement équilibré"
    overview["recommendation"] = recommendation
    return overview
# =========================

# Level 2: priority matrix
# =========================
def priority_matrix(syntheses: List[SchoolSynthesis]) -> Dict[str, Dict[str, Any]]:
    matrix: Dict[str, Dict[str, Any]] = {}
    for (maths, french), (priority, action) in PRIORITY_MATRIX.items():
        matrix[f"{maths[0]},{french[0]}"] = {
            "maths": maths,
            "french": french,
            "priority": priority,
            "action": action,
            "schools": [],
        }
    for s in syntheses:
        if s.cross_profile is None:
            continue
        matrix[s.cross_profile.code]["schools"].append(s)
    return matrix
# =========================

# Level 3: lever portfolio (skill-count view)
# =========================
def lever_portfolio(syntheses: List[SchoolSynthesis], limit: int = PORTFOLIO_SIZE) -> List[SchoolSynthesis]:
    picked = [s for s in syntheses if s.in_lever_portfolio]
    picked.sort(key=lambda s: (-s.lever_share, s.uai))
    return picked[:limit]
# =========================

# Level 4: action plan
# =========================
def training_needs(classifications: List[SkillClassification]) -> List[Dict[str, str]]:
    needs = []
    titles = {
        SUBJECT_MATHS: "Différenciation en mathématiques",
        SUBJECT_FRENCH: "Enseignement explicite de la compréhension",
    }
    for subj in SUBJECTS:
        rows = [c for c in classifications if c.subject == subj]
        if not rows:
            continue
        rate = 100.0 * sum(1 for c in rows if c.category == WATCH) / len(rows)
        if rate > TRAINING_WATCH_RATE:
            needs.append({"title": titles[subj], "audience": "Tous cycles", "format": "3h × 2 sessions"})

    if not needs:
        needs.append({"title": "Échanges de pratiques inter-écoles", "audience": "Tous cycles", "format": "3h"})
    return needs


def action_plan(matrix: Dict[str, Dict[str, Any]], classifications: List[SkillClassification]) -> Dict[str, List[Dict[str, Any]]]:
    plan: Dict[str, List[Dict[str, Any]]] = {"visits": [], "trainings": [], "showcases": []}

    for s in matrix["W,W"]["schools"]:
        plan["visits"].append({
            "priority": 0, "school": s.name, "uai": s.uai,
            "type": "Accompagnement global", "frequency": "Mensuel",
        })

    for s in matrix["W,C"]["schools"] + matrix["C,W"]["schools"]:
        focus = SUBJECT_LABELS[SUBJECT_MATHS] if s.cross_profile.maths == WATCH else SUBJECT_LABELS[SUBJECT_FRENCH]
        plan["visits"].append({
            "priority": 1, "school": s.name, "uai": s.uai,
            "type": f"Accompagnement {focus}", "frequency": "Trimestriel",
        })

    plan["trainings"] = training_needs(classifications)

    levers = matrix["L,L"]["schools"] + matrix["L,C"]["schools"] + matrix["C,L"]["schools"]
    plan["showcases"] = [{"school": s.name, "uai": s.uai} for s in levers[:SHOWCASE_SIZE]]
    return plan
# =========================

# Level 5: dashboard
# =========================
def dashboard(syntheses: List[SchoolSynthesis], matrix: Dict[str, Dict[str, Any]], plan: Dict[str, List]) -> Dict[str, Any]:
    total = len(syntheses)
    p0 = len(matrix["W,W"]["schools"])
    p1 = len(matrix["W,C"]["schools"]) + len(matrix["C,W"]["schools"])
    lever_schools = len(matrix["L,L"]["schools"])
    return {
        "schools_total": total,
        "schools_p0": p0,
        "schools_p1": p1,
        "lever_schools": lever_schools,
        "watch_rate": round(100.0 * (p0 + p1) / total, 1) if total else 0.0,
        "lever_rate": round(100.0 * lever_schools / total, 1) if total else 0.0,
        "visits": len(plan["visits"]),
        "trainings": len(plan["trainings"]),
        "showcases": len(plan["showcases"]),
    }


def build_strategy(
    syntheses: List[SchoolSynthesis],
    classifications: List[SkillClassification],
    regressions: RegressionTable,
) -> Dict[str, Any]:
    overview = circumscription_overview(classifications, regressions)
    matrix = priority_matrix(syntheses)
    portfolio = lever_portfolio(syntheses)
    plan = action_plan(matrix, classifications)
    return {
        "overview": overview,
        "matrix": matrix,
        "portfolio": portfolio,
        "plan": plan,
        "dashboard": dashboard(syntheses, matrix, plan),
    }
