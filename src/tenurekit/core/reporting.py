"""Standardized summary tables and plain-English effect descriptions."""

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from tenurekit.core.config import DEFAULT_ALPHA


SUMMARY_COLUMNS = [
    "estimate",
    "exp_estimate",
    "std_error",
    "z",
    "p_value",
    "ci_lower",
    "ci_upper",
    "significant",
]


def coefficient_summary(
    names: Sequence[str],
    estimates: np.ndarray,
    std_errors: np.ndarray,
    alpha: float = DEFAULT_ALPHA,
) -> pd.DataFrame:
    """Build the model summary table shared by every regression model.

    Inference is the Wald test: ``estimate / std_error`` is compared to a
    standard normal. Confidence bounds are on the exponentiated scale, so they
    read directly as hazard ratios (Cox) or time ratios (AFT).

    Args:
        names: Coefficient names (table index).
        estimates: Point estimates on the linear-predictor scale.
        std_errors: Standard errors of the estimates.
        alpha: Significance threshold for the ``significant`` flag and the
            width of the confidence interval.

    Returns:
        DataFrame indexed by covariate with the columns in ``SUMMARY_COLUMNS``.
    """
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")

    estimates = np.asarray(estimates, dtype=float)
    std_errors = np.asarray(std_errors, dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        z = estimates / std_errors
    p_value = 2.0 * stats.norm.sf(np.abs(z))
    z_crit = stats.norm.ppf(1.0 - alpha / 2.0)

    table = pd.DataFrame(
        {
            "estimate": estimates,
            "exp_estimate": np.exp(estimates),
            "std_error": std_errors,
            "z": z,
            "p_value": p_value,
            "ci_lower": np.exp(estimates - z_crit * std_errors),
            "ci_upper": np.exp(estimates + z_crit * std_errors),
            "significant": p_value < alpha,
        },
        index=pd.Index(list(names), name="covariate"),
    )
    return table[SUMMARY_COLUMNS]


def describe_effects(
    summary: pd.DataFrame,
    effect: str = "hazard_ratio",
    only_significant: bool = False,
) -> Dict[str, str]:
    """Translate exponentiated coefficients into one sentence each.

    Args:
        summary: Output of :func:`coefficient_summary`.
        effect: "hazard_ratio" (Cox, logistic odds) or "time_ratio" (AFT).
        only_significant: Skip rows whose ``significant`` flag is False.

    Returns:
        Mapping from covariate to description, e.g.
        ``{"way[T.foot]": "43.7% longer expected tenure per unit increase"}``.
    """
    templates = {
        "hazard_ratio": ("{pct:.1f}% higher turnover risk", "{pct:.1f}% lower turnover risk"),
        "time_ratio": ("{pct:.1f}% longer expected tenure", "{pct:.1f}% shorter expected tenure"),
        "odds_ratio": ("{pct:.1f}% higher odds of turnover", "{pct:.1f}% lower odds of turnover"),
    }
    if effect not in templates:
        raise ValueError(f"Invalid effect '{effect}'. Use one of {sorted(templates)}.")
    up, down = templates[effect]

    descriptions = {}
    for name, row in summary.iterrows():
        if name == "Intercept":
            continue
        if only_significant and not row["significant"]:
            continue
        ratio = row["exp_estimate"]
        pct = (ratio - 1.0) * 100.0
        text = up.format(pct=pct) if pct >= 0 else down.format(pct=-pct)
        descriptions[name] = f"{text} per unit increase"
    return descriptions


def significant_covariates(summary: pd.DataFrame) -> List[str]:
    """Names of rows flagged significant, excluding the intercept."""
    return [name for name in summary.index[summary["significant"]] if name != "Intercept"]


def diagnostic_table(
    rows: Dict[str, Dict[str, float]], alpha: Optional[float] = None, flag: str = "violated"
) -> pd.DataFrame:
    """Tabulate per-covariate diagnostics ``{name: {test_statistic, p_value}}``."""
    table = pd.DataFrame.from_dict(rows, orient="index", columns=["test_statistic", "p_value"])
    table.index.name = "covariate"
    if alpha is not None:
        table[flag] = table["p_value"] < alpha
    return table
