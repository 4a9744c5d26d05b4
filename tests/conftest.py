from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from pilotage.ingest import _matrix_to_frame
from pilotage.models import (
    LEVER,
    SUBJECT_MATHS,
    EffectiveCounts,
    EnrichedSchool,
    SkillClassification,
    make_skill_key,
)

TIER_GROUPS = ["Besoin", "", "Fragile", "", "Satisfaisant", ""]
TIER_KINDS = ["Effectif", "%", "Effectif", "%", "Effectif", "%"]


def orace_rows(
    signature: str,
    skills: Sequence[str],
    schools: Sequence[Tuple[str, str, Sequence[Tuple[Any, Any, Any]]]],
    total: bool = True,
    counts: Optional[Sequence[Sequence[Tuple[Any, Any, Any]]]] = None,
) -> List[List[Any]]:
    """
    Rows shaped like a circumscription export: banner, year, skill names
    (index 2), tier groups, value kinds, column header, schools, total.
    Each school carries one (needs %, fragile %, satisfactory %) per skill;
    `counts`, one list per school, fills the "Effectif" cells.
    """
    rows: List[List[Any]] = [
        [f"{signature} - Circonscription de test"],
        ["Année scolaire 2024-2025"],
        ["", ""] + [cell for name in skills for cell in [name, "", "", "", "", ""]],
        ["", ""] + TIER_GROUPS * len(skills),
        ["", ""] + TIER_KINDS * len(skills),
        ["UAI", "Nom de l'école"],
    ]
    for i, (uai, name, values) in enumerate(schools):
        row = [uai, name]
        school_counts = counts[i] if counts else [("", "", "")] * len(values)
        for (needs, fragile, sat), (cn, cf, cs) in zip(values, school_counts):
            row += [cn, needs, cf, fragile, cs, sat]
        rows.append(row)
    if total:
        rows.append(["Total circonscription", ""] + ["", 10, "", 20, "", 70] * len(skills))
    return rows


def make_table(level: str, subject: str, rows: List[List[Any]], source_name: str = "test.csv") -> Dict[str, Any]:
    return {"source_name": source_name, "level": level, "subject": subject, "df_raw": _matrix_to_frame(rows)}


def public_school(uai: str, socio_index: Optional[float], results: Dict[str, EffectiveCounts], sector: str = "Public") -> EnrichedSchool:
    return EnrichedSchool(uai=uai, name=f"École {uai}", results=results, socio_index=socio_index, sector=sector)


def make_classification(uai: str, category: str = LEVER, subject: str = SUBJECT_MATHS, skill: str = "Lire_des_nombres") -> SkillClassification:
    return SkillClassification(
        uai=uai,
        school=f"École {uai}",
        socio_index=100.0,
        socio_band="Moyen",
        sector="Public",
        level="CP",
        subject=subject,
        skill=skill,
        skill_key=make_skill_key("CP", subject, skill),
        counts=EffectiveCounts.from_rate(50.0),
        actual_rate=50.0,
        expected_rate=50.0,
        gap=0.0,
        category=category,
    )


SCHOOLS = [
    ("0070001A", "École des Tilleuls", 80.0),
    ("0070002B", "École du Centre", 90.0),
    ("0070003C", "École Jules Ferry", 100.0),
    ("0070004D", "École des Vignes", 110.0),
    ("0070005E", "École du Plateau", 120.0),
]

MATHS_VALUES = [
    [(30, 40, 30), (25, 45, 30)],
    [(20, 30, 50), (30, 30, 40)],
    [(15, 30, 55), (10, 30, 60)],
    [(10, 25, 65), (10, 25, 65)],
    [(5, 25, 70), (5, 15, 80)],
]

FRENCH_VALUES = [
    [(25, 35, 40)],
    [(20, 35, 45)],
    [(10, 20, 70)],
    [(10, 30, 60)],
    [(5, 20, 75)],
]


@pytest.fixture
def maths_table() -> Dict[str, Any]:
    rows = orace_rows(
        "Evaluation CPMA",
        ["Lire des nombres entiers", "Résoudre des problèmes"],
        [(uai, name, vals) for (uai, name, _), vals in zip(SCHOOLS, MATHS_VALUES)],
    )
    return make_table("CP", "maths", rows, "CIRCO_ecoles_CPMA.csv")


@pytest.fixture
def french_table() -> Dict[str, Any]:
    rows = orace_rows(
        "Evaluation CPFR",
        ["Comprendre un texte lu"],
        [(uai, name, vals) for (uai, name, _), vals in zip(SCHOOLS, FRENCH_VALUES)],
    )
    return make_table("CP", "francais", rows, "CIRCO_ecoles_CPFR.csv")


@pytest.fixture
def ips_index() -> Dict[str, Dict[str, Any]]:
    return {
        uai: {"uai": uai, "ips": ips, "secteur": "Public", "academie": "GRENOBLE", "departement": "07", "nom_commune": "Privas"}
        for uai, _, ips in SCHOOLS
    }
