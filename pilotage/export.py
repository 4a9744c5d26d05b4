from __future__ import annotations
import logging
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional
import pandas as pd
from .categorisation import CATEGORY_LABELS, interpret_r2
from .models import SUBJECT_FRENCH, SUBJECT_LABELS, SUBJECT_MATHS, RegressionTable, SkillClassification, SchoolSynthesis, split_skill_key
from .pipeline import PipelineResult
from .quality import issues_to_frame

logger = logging.getLogger(__name__)
# =========================

# DataFrames
# =========================
def classifications_frame(classifications: List[SkillClassification]) -> pd.DataFrame:
    rows = []
    for c in classifications:
        rows.append({
            "École": c.school,
            "UAI": c.uai,
            "IPS": c.socio_index,
            "Catégorie IPS": c.socio_band,
            "Secteur": c.sector,
            "Niveau": c.level,
            "Matière": SUBJECT_LABELS.get(c.subject, c.subject),
            "Compétence": c.skill,
            "Besoins": c.counts.needs,
            "Fragiles": c.counts.fragile,
            "Satisfaisants": c.counts.satisfactory,
            "Résultat réel": c.actual_rate,
            "Attendu IPS": c.expected_rate,
            "Écart IPS": c.gap,
            "Catégorie": CATEGORY_LABELS[c.category],
            "Code": c.category,
            "Réf. France": c.ref_france,
            "Réf. Académie": c.ref_academie,
            "Écart France": c.gap_vs_france,
            "Écart Académie": c.gap_vs_academie,
        })
    return pd.DataFrame(rows)


def regressions_frame(regressions: RegressionTable) -> pd.DataFrame:
    rows = []
    for key, r in regressions.items():
        level, subject, skill = split_skill_key(key)
        rows.append({
            "Niveau": level,
            "Matière": SUBJECT_LABELS.get(subject, subject),
            "Compétence": skill,
            "Pente": round(r.slope, 4),
            "Ordonnée": round(r.intercept, 2),
            "R²": round(r.r_squared, 3),
            "Lecture": interpret_r2(r.r_squared),
            "Écoles": r.sample_size,
        })
    return pd.DataFrame(rows)


def _profile_code(p) -> str:
    return p.category if p is not None else ""


def schools_frame(syntheses: List[SchoolSynthesis]) -> pd.DataFrame:
    rows = []
    for s in syntheses:
        cp = s.cross_profile
        rows.append({
            "École": s.name,
            "UAI": s.uai,
            "IPS": s.socio_index,
            "Catégorie IPS": s.socio_band,
            "Profil Maths": _profile_code(s.maths_profile),
            "Taux Maths": s.maths_profile.actual_rate if s.maths_profile else None,
            "Attendu Maths": s.maths_profile.expected_rate if s.maths_profile else None,
            "Profil Français": _profile_code(s.french_profile),
            "Taux Français": s.french_profile.actual_rate if s.french_profile else None,
            "Attendu Français": s.french_profile.expected_rate if s.french_profile else None,
            "Profil croisé": f"({cp.code})" if cp else "",
            "Posture": cp.label if cp else "",
            "Priorité": f"P{cp.priority}" if cp else "",
            "Leviers": s.nb_lever,
            "Conformes": s.nb_conform,
            "Vigilance": s.nb_watch,
            "Total": s.nb_total,
            "Taux leviers (%)": round(s.lever_rate, 1),
            "Taux vigilance (%)": round(s.watch_rate, 1),
            "Leviers Maths": s.subject_counts.get(SUBJECT_MATHS, {}).get("LEVER", 0),
            "Vigil. Maths": s.subject_counts.get(SUBJECT_MATHS, {}).get("WATCH", 0),
            "Leviers Français": s.subject_counts.get(SUBJECT_FRENCH, {}).get("LEVER", 0),
            "Vigil. Français": s.subject_counts.get(SUBJECT_FRENCH, {}).get("WATCH", 0),
            "Portefeuille leviers": "oui" if s.in_lever_portfolio else "",
        })
    return pd.DataFrame(rows)


def portfolio_frame(portfolio: List[SchoolSynthesis]) -> pd.DataFrame:
    return pd.DataFrame([{
        "École": s.name,
        "UAI": s.uai,
        "IPS": s.socio_index,
        "Catégorie IPS": s.socio_band,
        "Leviers": s.nb_lever,
        "Total": s.nb_total,
        "Part leviers (%)": round(100.0 * s.lever_share, 1),
        "Priorité (profil croisé)": f"P{s.priority}" if s.priority is not None else "",
    } for s in portfolio])
# =========================

# Workbook
# =========================
def export_to_excel_bytes(result: PipelineResult, academie: str = "", departement: str = "") -> bytes:
    strategy = result.strategy
    analyses_df = classifications_frame(result.classifications)
    regressions_df = regressions_frame(result.regressions)
    schools_df = schools_frame(result.syntheses)
    portfolio_df = portfolio_frame(strategy["portfolio"])
    quality_df = issues_to_frame(result.issues)

    bio = BytesIO()
    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        wb = writer.book
        fmt_header = wb.add_format({"bold": True, "bg_color": "#F2F2F2", "border": 1, "valign": "vcenter"})
        fmt_title = wb.add_format({"bold": True, "font_size": 13, "bg_color": "#E8F0FE"})
        fmt_section = wb.add_format({"bold": True, "bg_color": "#F2F2F2"})
        fmt_lvl_err = wb.add_format({"bg_color": "#FCE8E6"})
        fmt_lvl_warn = wb.add_format({"bg_color": "#FEF7E0"})

        def write_rows(sheet_name: str, rows: List[List[Any]], widths: Dict[int, int]):
            ws = wb.add_worksheet(sheet_name)
            writer.sheets[sheet_name] = ws
            for r, row in enumerate(rows):
                for c, v in enumerate(row):
                    ws.write(r, c, v)
                if row and len(row) == 1 and isinstance(row[0], str) and row[0].isupper():
                    ws.write(r, 0, row[0], fmt_title if r == 0 else fmt_section)
            for col, w in widths.items():
                ws.set_column(col, col, w)

        def format_df_sheet(sheet_name: str, df: pd.DataFrame, default_width: int = 14, max_width: int = 50):
            ws = writer.sheets.get(sheet_name)
            if ws is None:
                return
            ws.freeze_panes(1, 0)
            ws.autofilter(0, 0, max(1, len(df)), max(0, len(df.columns) - 1))
            for col, name in enumerate(df.columns):
                ws.write(0, col, name, fmt_header)
                w = max(10, min(max_width, int(len(str(name)) * 1.2) + 4))
                ws.set_column(col, col, max(default_width, w))

        write_rows("Dashboard", _dashboard_rows(strategy, academie, departement), {0: 30, 1: 14, 2: 12, 3: 12, 4: 12, 5: 12, 6: 40})
        write_rows("Matrice", _matrix_rows(strategy["matrix"]), {0: 10, 1: 38, 2: 10, 3: 10, 4: 60})
        write_rows("Plan d'actions", _plan_rows(strategy["plan"]), {0: 14, 1: 45, 2: 30, 3: 10, 4: 14})

        for sheet, df, dw in (
            ("Leviers", portfolio_df, 14),
            ("Écoles", schools_df, 12),
            ("Analyses", analyses_df, 12),
            ("Régressions", regressions_df, 12),
            ("Qualité", quality_df, 18),
        ):
            if df.empty:
                continue
            df.to_excel(writer, index=False, sheet_name=sheet)
            format_df_sheet(sheet, df, default_width=dw)

        if not quality_df.empty:
            wsq = writer.sheets["Qualité"]
            last_row = len(quality_df)
            wsq.conditional_format(1, 0, last_row, 0, {"type": "text", "criteria": "containing", "value": "error", "format": fmt_lvl_err})
            wsq.conditional_format(1, 0, last_row, 0, {"type": "text", "criteria": "containing", "value": "warn", "format": fmt_lvl_warn})

    return bio.getvalue()


def _dashboard_rows(strategy: Dict[str, Any], academie: str, departement: str) -> List[List[Any]]:
    d = strategy["dashboard"]
    ov = strategy["overview"]
    rows: List[List[Any]] = [
        ["DASHBOARD STRATÉGIQUE IEN"],
        ["Date", datetime.now().strftime("%d/%m/%Y")],
        ["Académie", academie],
        ["Département", departement],
        [],
        ["INDICATEURS CLÉS"],
        ["Total écoles", d["schools_total"]],
        ["Écoles P0 (urgence)", d["schools_p0"]],
        ["Écoles P1 (prioritaire)", d["schools_p1"]],
        ["Écoles leviers", d["lever_schools"]],
        ["Taux vigilance global (%)", d["watch_rate"]],
        ["Taux leviers global (%)", d["lever_rate"]],
        [],
        ["PLAN D'ACTIONS"],
        ["Visites à programmer", d["visits"]],
        ["Formations à organiser", d["trainings"]],
        ["Valorisations prévues", d["showcases"]],
        [],
        ["VUE MATHS/FRANÇAIS"],
        ["", "Analyses", "Vigilance", "Taux vigil. (%)", "Leviers", "Taux leviers (%)", "R² moyen"],
    ]
    for subj in (SUBJECT_MATHS, SUBJECT_FRENCH):
        o = ov[subj]
        rows.append([o["label"].upper(), o["total"], o["watch"], o["watch_rate"], o["lever"], o["lever_rate"], f'{o["r2_mean"]} ({o["r2_reading"]})'])
    rows.append(["Recommandation", ov["recommendation"]])
    return rows


def _matrix_rows(matrix: Dict[str, Dict[str, Any]]) -> List[List[Any]]:
    rows: List[List[Any]] = [
        ["MATRICE DE PRIORISATION (MATHS × FRANÇAIS)"],
        ["Profil", "Action", "Priorité", "Écoles", "Exemples"],
    ]
    cells = sorted(matrix.items(), key=lambda kv: (kv[1]["priority"], kv[0]))
    for code, cell in cells:
        names = ", ".join(s.name for s in cell["schools"][:3])
        rows.append([f"({code})", cell["action"], f'P{cell["priority"]}', len(cell["schools"]), names])
    return rows


def _plan_rows(plan: Dict[str, List[Dict[str, Any]]]) -> List[List[Any]]:
    rows: List[List[Any]] = [["PLAN D'ACTIONS IEN"], [], ["VISITES D'ACCOMPAGNEMENT"]]
    for i, v in enumerate(plan["visits"], start=1):
        rows.append([f"Visite {i}", v["school"], v["type"], f'P{v["priority"]}', v["frequency"]])
    rows += [[], ["ANIMATIONS PÉDAGOGIQUES"]]
    for i, t in enumerate(plan["trainings"], start=1):
        rows.append([f"Formation {i}", t["title"], t["audience"], t["format"]])
    rows += [[], ["VALORISATION LEVIERS"]]
    for i, s in enumerate(plan["showcases"], start=1):
        rows.append([f"Action {i}", s["school"]])
    return rows


def write_workbook(result: PipelineResult, output_dir: Path, academie: str = "", departement: str = "", timestamp: Optional[str] = None) -> Path:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    ts = timestamp or datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    path = output_dir / f"strategie_ien_dept{departement}_{ts}.xlsx"
    path.write_bytes(export_to_excel_bytes(result, academie=academie, departement=departement))
    logger.info("Workbook written: %s", path.name)
    return path
