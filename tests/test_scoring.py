import pytest

from pilotage.models import CONFORM, LEVER, WATCH, EffectiveCounts, Regression, RegressionTable
from pilotage.scoring import classify_all, classify_skill, school_cross_profile, subject_profile, subject_profiles

from conftest import public_school

MATHS_A = "CP_maths_Lire_des_nombres"
MATHS_B = "CP_maths_Resoudre_des_problemes"
FRENCH_A = "CP_francais_Comprendre_un_texte"


def _flat(value):
    return Regression(slope=0.0, intercept=value, r_squared=0.4, sample_size=6)


REGRESSIONS = RegressionTable({MATHS_A: _flat(50.0), MATHS_B: _flat(40.0), FRENCH_A: _flat(60.0)})


class FakeReferences:
    def lookup(self, level, subject, skill):
        if (level, subject, skill) == ("CP", "maths", "Lire_des_nombres"):
            return {"france": 55.0, "academie": 57.25}
        return None


class TestClassifySkill:
    """Gap against the per-skill baseline."""

    @pytest.mark.parametrize("rate,category", [(58.0, LEVER), (56.9, CONFORM), (43.0, CONFORM), (42.9, WATCH)])
    def test_categories(self, rate, category):
        school = public_school("0070001A", 100.0, {MATHS_A: EffectiveCounts.from_rate(rate)})
        c = classify_skill(school, MATHS_A, REGRESSIONS)
        assert c.category == category
        assert c.expected_rate == 50.0
        assert c.gap == round(rate - 50.0, 1)

    def test_fields(self):
        school = public_school("0070001A", 87.4, {MATHS_A: EffectiveCounts(20, 30, 50)})
        c = classify_skill(school, MATHS_A, REGRESSIONS, FakeReferences())
        assert (c.level, c.subject, c.skill) == ("CP", "maths", "Lire_des_nombres")
        assert c.actual_rate == 50.0
        assert c.socio_band == "Défavorisé"
        assert c.counts == EffectiveCounts(20, 30, 50)
        assert c.ref_france == 55.0
        assert c.gap_vs_france == -5.0
        assert c.gap_vs_academie == -7.2

    def test_references_do_not_drive_category(self):
        school = public_school("0070001A", 100.0, {MATHS_A: EffectiveCounts.from_rate(50.0)})
        assert classify_skill(school, MATHS_A, REGRESSIONS, FakeReferences()).category == CONFORM

    def test_zero_denominator(self):
        school = public_school("0070001A", 100.0, {MATHS_A: EffectiveCounts.zero()})
        assert classify_skill(school, MATHS_A, REGRESSIONS) is None

    def test_unfitted_skill(self):
        school = public_school("0070001A", 100.0, {"CP_maths_other": EffectiveCounts.from_rate(50.0)})
        assert classify_all([school], REGRESSIONS) == []


class TestSubjectProfile:
    """Cumulative-count subject rates."""

    def test_cumulative_counts(self):
        school = public_school("0070001A", 100.0, {
            MATHS_A: EffectiveCounts(30, 40, 50),
            MATHS_B: EffectiveCounts(30, 40, 60),
        })
        prof = subject_profile(school, "maths", REGRESSIONS)
        assert prof.counts == EffectiveCounts(60, 80, 110)
        assert prof.actual_rate == 44.0
        # mean of per-skill rates would be 43.9
        assert prof.expected_rate == 45.0
        assert prof.gap == -1.0
        assert prof.category == CONFORM
        assert prof.skills_used == 2

    def test_weighting_by_cohort_size(self):
        school = public_school("0070001A", 100.0, {
            MATHS_A: EffectiveCounts(0, 10, 10),
            MATHS_B: EffectiveCounts(0, 20, 180),
        })
        prof = subject_profile(school, "maths", REGRESSIONS)
        assert prof.actual_rate == pytest.approx(round(100 * 190 / 220, 1))
        assert prof.category == LEVER

    def test_unfitted_skill_counts_toward_actual_rate(self):
        regressions = RegressionTable({MATHS_A: _flat(50.0)})
        school = public_school("0070001A", 100.0, {
            MATHS_A: EffectiveCounts(0, 10, 10),
            MATHS_B: EffectiveCounts(0, 0, 100),
        })
        prof = subject_profile(school, "maths", regressions)
        assert prof.counts == EffectiveCounts(0, 10, 110)
        assert prof.actual_rate == 91.7
        assert prof.expected_rate == 50.0
        assert prof.skills_used == 2
        assert prof.category == LEVER

    def test_no_fitted_skill_gives_none(self):
        school = public_school("0070001A", 100.0, {"CP_maths_other": EffectiveCounts(0, 10, 10)})
        assert subject_profile(school, "maths", REGRESSIONS) is None

    def test_no_skill_gives_none(self):
        school = public_school("0070001A", 100.0, {MATHS_A: EffectiveCounts.from_rate(20.0)})
        profiles = subject_profiles([school], REGRESSIONS)["0070001A"]
        assert profiles["francais"] is None
        assert profiles["maths"].category == WATCH
        assert school_cross_profile(profiles) is None

    def test_zero_denominator_everywhere(self):
        school = public_school("0070001A", 100.0, {MATHS_A: EffectiveCounts.zero()})
        assert subject_profile(school, "maths", REGRESSIONS) is None

    def test_cross_profile(self):
        school = public_school("0070001A", 100.0, {
            MATHS_A: EffectiveCounts.from_rate(30.0),
            FRENCH_A: EffectiveCounts.from_rate(61.0),
        })
        cp = school_cross_profile(subject_profiles([school], REGRESSIONS)["0070001A"])
        assert (cp.maths, cp.french) == (WATCH, CONFORM)
        assert cp.priority == 1
