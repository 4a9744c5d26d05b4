from __future__ import annotations
from typing import Any, Dict, List
import pandas as pd

ISSUE_MAP = {
    "missing_file": ("warn", "Fichier source absent, niveau/matière ignoré."),
    "read_failed": ("error", "Fichier source illisible, ignoré."),
    "identification_failed": ("error", "La première ligne ne porte pas l'identification niveau/matière attendue."),
    "group_row_missing": ("error", "Ligne des groupes ('satisfaisant') introuvable entre les lignes 3 et 10."),
    "value_kind_row_missing": ("error", "Ligne des pourcentages/répondants introuvable sous la ligne des groupes."),
    "no_skill_blocks": ("error", "Aucune compétence exploitable dans l'en-tête."),
    "first_school_row_missing": ("error", "Aucune ligne d'école reconnue sous l'en-tête."),
    "no_school_rows": ("warn", "Aucune école n'a de résultat exploitable dans ce tableau."),
    "skill_dropped": ("info", "Compétence sans colonne de données, ignorée."),
    "regression_insufficient": ("info", "Moins de 4 écoles exploitables : pas de régression pour cette compétence."),
    "regression_degenerate": ("warn", "IPS identiques pour toutes les écoles : régression impossible."),
    "ips_missing": ("warn", "IPS introuvable pour l'école, exclue de l'analyse."),
    "sector_excluded": ("info", "École hors secteur public, exclue de l'analyse."),
    "reference_missing": ("info", "Fichier de références nationales absent."),
}


def make_issue(code: str, source: str = "", detail: Any = "") -> Dict[str, Any]:
    level, msg = ISSUE_MAP.get(code, ("warn", f"Problème : {code}"))
    return {
        "level": level,
        "code": code,
        "message": msg,
        "source": str(source or ""),
        "detail": str(detail or ""),
    }


def issues_to_frame(issues: List[Dict[str, Any]]) -> pd.DataFrame:
    if not issues:
        return pd.DataFrame()
    df = pd.DataFrame(issues)
    sev_order = {"error": 0, "warn": 1, "info": 2}
    df["__sev"] = df["level"].map(sev_order).fillna(9)
    df = df.sort_values(["__sev", "source", "code"], kind="stable").drop(columns=["__sev"]).reset_index(drop=True)
    return df.rename(columns={
        "level": "Niveau",
        "code": "Code",
        "message": "Message",
        "source": "Source",
        "detail": "Détail",
    })
