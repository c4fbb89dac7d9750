"""Mann-Whitney U comparison of control and treatment latency samples."""

from __future__ import annotations

import enum
import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from scipy import stats

DEFAULT_HARM_THRESHOLD = 1.5
# Two-tailed p = 0.05
DEFAULT_Z_SCORE_THRESHOLD = 1.96


class Verdict(str, enum.Enum):
    HARM = "harm"
    NO_HARM = "noHarm"
    NOT_SIGNIFICANT = "notSignificant"


@dataclass(frozen=True)
class AnalysisResult:
    u: tuple[float, float]
    verdict: Verdict
    z_score: float = 0.0


def mann_whitney_u(
    control_samples: Sequence[float],
    treatment_samples: Sequence[float],
) -> tuple[float, float]:
    """U statistic of each group.

    U_treatment grows with the number of (treatment, control) pairs where the
    treatment sample is larger, i.e. slower for latency samples.
    """
    n1, n2 = len(control_samples), len(treatment_samples)
    if n1 == 0 or n2 == 0:
        return 0.0, 0.0
    result = stats.mannwhitneyu(
        control_samples,
        treatment_samples,
        alternative="two-sided",
        use_continuity=False,
        method="asymptotic",
    )
    control_u = float(result.statistic)
    return control_u, n1 * n2 - control_u


def critical_value(
    u: tuple[float, float],
    control_samples: Sequence[float],
    treatment_samples: Sequence[float],
) -> float:
    """Absolute z-score of the normal approximation, with tie correction."""
    n1, n2 = len(control_samples), len(treatment_samples)
    n = n1 + n2
    if n1 == 0 or n2 == 0:
        return 0.0
    ranks = stats.rankdata(np.concatenate([control_samples, treatment_samples]))
    variance = stats.tiecorrect(ranks) * n1 * n2 * (n + 1) / 12.0
    if variance <= 0:
        return 0.0
    mu = n1 * n2 / 2.0
    return float(abs((min(u) - mu) / math.sqrt(variance)))


def evaluate(
    control_samples: Sequence[float],
    treatment_samples: Sequence[float],
    min_samples: int,
    harm_threshold: float = DEFAULT_HARM_THRESHOLD,
    z_score_threshold: float = DEFAULT_Z_SCORE_THRESHOLD,
) -> AnalysisResult:
    if len(control_samples) < min_samples or len(treatment_samples) < min_samples:
        return AnalysisResult(u=(0, 0), verdict=Verdict.NOT_SIGNIFICANT)

    u = mann_whitney_u(control_samples, treatment_samples)
    z_score = critical_value(u, control_samples, treatment_samples)
    if z_score <= z_score_threshold:
        return AnalysisResult(u=u, verdict=Verdict.NO_HARM, z_score=z_score)

    # Significantly different: harm only if treatment is worse by harm_threshold
    control_u, treatment_u = u
    if control_u == 0:
        verdict = Verdict.HARM if treatment_u > 0 else Verdict.NO_HARM
    else:
        verdict = Verdict.HARM if treatment_u / control_u > harm_threshold else Verdict.NO_HARM
    return AnalysisResult(u=u, verdict=verdict, z_score=z_score)
