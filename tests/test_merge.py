from pilotage.merge import merge_school_records
from pilotage.models import EffectiveCounts, SchoolRecord

C1 = EffectiveCounts(10, 20, 70)
C2 = EffectiveCounts(30, 30, 40)


class TestMergeSchoolRecords:
    """One record per UAI across per-table extractions."""

    def test_union_of_skills(self):
        maths = [SchoolRecord("0070001A", "École A", {"CP_maths_x": C1})]
        french = [SchoolRecord("0070001A", "École A", {"CP_francais_y": C2})]
        merged = merge_school_records([maths, french])
        assert len(merged) == 1
        assert merged[0].results == {"CP_maths_x": C1, "CP_francais_y": C2}

    def test_last_write_wins(self):
        first = [SchoolRecord("0070001A", "École A", {"CP_maths_x": C1})]
        second = [SchoolRecord("0070001A", "École A", {"CP_maths_x": C2})]
        assert merge_school_records([first, second])[0].results["CP_maths_x"] == C2

    def test_first_seen_order_and_trimmed_uai(self):
        a = [SchoolRecord("0070002B", "B", {"k": C1}), SchoolRecord("0070001A ", "A", {"k": C1})]
        b = [SchoolRecord("0070001A", "A", {"j": C2}), SchoolRecord("0070003C", "C", {"k": C1})]
        merged = merge_school_records([a, b])
        assert [s.uai for s in merged] == ["0070002B", "0070001A", "0070003C"]
        assert set(merged[1].results) == {"k", "j"}

    def test_schools_without_skills_dropped(self):
        merged = merge_school_records([[SchoolRecord("0070001A", "A", {})]])
        assert merged == []

    def test_inputs_not_mutated(self):
        rec = SchoolRecord("0070001A", "A", {"k": C1})
        merge_school_records([[rec], [SchoolRecord("0070001A", "A", {"j": C2})]])
        assert rec.results == {"k": C1}
