from io import BytesIO

import pytest
from openpyxl import load_workbook

from pilotage.export import classifications_frame, export_to_excel_bytes, regressions_frame, schools_frame, write_workbook
from pilotage.models import CATEGORIES
from pilotage.pipeline import PipelineError, run_pipeline
from pilotage.synthesis import ranking_key

from conftest import make_table, orace_rows


class TestRunPipeline:
    """Tables + IPS index -> classifications, profiles and strategy."""

    def test_end_to_end(self, maths_table, french_table, ips_index):
        result = run_pipeline([maths_table, french_table], ips_index)
        assert len(result.records) == 5
        assert len(result.schools) == 5
        assert len(result.regressions) == 3
        assert len(result.classifications) == 15
        assert {c.category for c in result.classifications} <= set(CATEGORIES)
        assert len(result.syntheses) == 5
        assert all(s.cross_profile is not None for s in result.syntheses)
        assert result.syntheses == sorted(result.syntheses, key=ranking_key)
        assert set(result.strategy) == {"overview", "matrix", "portfolio", "plan", "dashboard"}

    def test_deterministic(self, maths_table, french_table, ips_index):
        first = run_pipeline([maths_table, french_table], ips_index)
        second = run_pipeline([maths_table, french_table], ips_index)
        assert [(c.uai, c.skill_key, c.gap) for c in first.classifications] == \
            [(c.uai, c.skill_key, c.gap) for c in second.classifications]
        assert [s.uai for s in first.syntheses] == [s.uai for s in second.syntheses]

    def test_bad_table_does_not_abort(self, maths_table, ips_index):
        broken = make_table("CP", "francais", [["Evaluation CPFR"], ["rien"]], "CIRCO_ecoles_CPFR.csv")
        result = run_pipeline([broken, maths_table], ips_index)
        assert "group_row_missing" in {i["code"] for i in result.issues}
        assert len(result.regressions) == 2
        assert all(s.cross_profile is None for s in result.syntheses)

    def test_no_schools(self, ips_index):
        with pytest.raises(PipelineError) as exc:
            run_pipeline([], ips_index)
        assert exc.value.code == "no_schools"

    def test_no_socio_index(self, maths_table):
        issues = []
        with pytest.raises(PipelineError) as exc:
            run_pipeline([maths_table], {}, issues=issues)
        assert exc.value.code == "no_socio_index"
        assert len(issues) == 5

    def test_no_classifications(self, ips_index):
        rows = orace_rows("Evaluation CPMA", ["Lire des nombres entiers"], [
            ("0070001A", "École des Tilleuls", [(20, 30, 50)]),
            ("0070002B", "École du Centre", [(20, 20, 60)]),
            ("0070003C", "École Jules Ferry", [(10, 30, 60)]),
        ])
        with pytest.raises(PipelineError) as exc:
            run_pipeline([make_table("CP", "maths", rows)], ips_index)
        assert exc.value.code == "no_classifications"


class TestExport:
    """Workbook and tabular frames."""

    def test_frames(self, maths_table, french_table, ips_index):
        result = run_pipeline([maths_table, french_table], ips_index)
        assert len(classifications_frame(result.classifications)) == 15
        assert list(regressions_frame(result.regressions)["Écoles"]) == [5, 5, 5]
        assert schools_frame(result.syntheses)["Priorité"].str.startswith("P").all()

    def test_workbook_sheets(self, maths_table, french_table, ips_index):
        result = run_pipeline([maths_table, french_table], ips_index)
        data = export_to_excel_bytes(result, academie="GRENOBLE", departement="07")
        wb = load_workbook(BytesIO(data))
        for name in ("Dashboard", "Matrice", "Plan d'actions", "Écoles", "Analyses", "Régressions"):
            assert name in wb.sheetnames
        assert wb["Dashboard"]["A1"].value == "DASHBOARD STRATÉGIQUE IEN"
        assert wb["Analyses"].max_row == 16

    def test_write_workbook(self, tmp_path, maths_table, french_table, ips_index):
        result = run_pipeline([maths_table, french_table], ips_index)
        path = write_workbook(result, tmp_path / "out", departement="07", timestamp="2025-01-01T00-00-00")
        assert path.name == "strategie_ien_dept07_2025-01-01T00-00-00.xlsx"
        assert path.read_bytes()[:2] == b"PK"
