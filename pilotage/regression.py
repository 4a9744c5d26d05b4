"""
Per-skill socio-economic baselines.

For every skill key, one ordinary least-squares line success_rate ~ socio_index
is fitted over the public schools that have a usable rate for that skill.
"""
from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Optional, Tuple
import numpy as np
from .models import EnrichedSchool, Regression, RegressionTable, split_skill_key
from .quality import make_issue

logger = logging.getLogger(__name__)

MIN_POINTS = 4


def collect_points(schools: Iterable[EnrichedSchool]) -> Dict[str, List[Tuple[float, float]]]:
    # skill key -> [(socio_index, success_rate)], zero-denominator triples left out
    points: Dict[str, List[Tuple[float, float]]] = {}
    for school in schools:
        if not school.has_socio_index or not school.is_public:
            continue
        for key, counts in school.results.items():
            rate = counts.success_rate
            if rate is None:
                continue
            points.setdefault(key, []).append((float(school.socio_index), rate))
    return points


def fit_line(points: List[Tuple[float, float]]) -> Optional[Regression]:
    """
    OLS fit of y = slope * x + intercept; None under MIN_POINTS points or when
    every x is identical.
    """
    n = len(points)
    if n < MIN_POINTS:
        return None

    arr = np.asarray(points, dtype=float)
    x = arr[:, 0]
    y = arr[:, 1]
    if np.allclose(x, x[0]):
        return None

    X = np.column_stack([x, np.ones(n)])
    beta, _, _, _ = np.linalg.lstsq(X, y, rcond=None)
    slope, intercept = float(beta[0]), float(beta[1])

    y_hat = X @ beta
    ss_res = float(np.sum((y - y_hat) ** 2))
    ss_tot = float(np.sum((y - np.mean(y)) ** 2))
    r_sq = 1.0 if ss_tot == 0 else 1.0 - ss_res / ss_tot

    return Regression(slope=slope, intercept=intercept, r_squared=r_sq, sample_size=n)


def fit_regressions(schools: Iterable[EnrichedSchool], issues: Optional[List[dict]] = None) -> RegressionTable:
    points = collect_points(schools)
    fitted: Dict[str, Regression] = {}

    for key in sorted(points):
        pts = points[key]
        reg = fit_line(pts)
        if reg is None:
            code = "regression_insufficient" if len(pts) < MIN_POINTS else "regression_degenerate"
            if issues is not None:
                issues.append(make_issue(code, key, f"n={len(pts)}"))
            continue
        fitted[key] = reg

    logger.info("%d regressions fitted (%d skills seen)", len(fitted), len(points))
    return RegressionTable(fitted)


def subject_expected_rate(
    regressions: RegressionTable,
    skill_keys: Iterable[str],
    subject: str,
    socio_index: float,
) -> Optional[float]:
    """Unweighted mean of per-skill predictions over the subject's fitted skills."""
    preds = [
        regressions.predict(k, socio_index)
        for k in skill_keys
        if split_skill_key(k)[1] == subject and k in regressions
    ]
    if not preds:
        return None
    return float(np.mean(preds))
