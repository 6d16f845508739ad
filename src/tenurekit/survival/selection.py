"""AIC-driven stepwise covariate selection.

Works with any fitter callable ``fit(data, spec) -> model`` whose models
expose ``aic``. Each move adds or drops one whole covariate, so a
categorical covariate enters or leaves with all of its dummy columns.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from tenurekit.core.covariates import EMPTY_SPEC, CovariateSpec
from tenurekit.core.exceptions import ConvergenceError, DataError, NumericalError
from tenurekit.core.records import SurvivalData


logger = logging.getLogger(__name__)

DIRECTIONS = ("both", "backward", "forward")
HISTORY_COLUMNS = ["step", "action", "covariate", "aic", "delta_aic", "status", "selected"]


@dataclass(frozen=True, eq=False)
class StepwiseResult:
    """Outcome of a stepwise search.

    Attributes:
        model: The selected fitted model.
        spec: Its covariate specification.
        history: One row per candidate fit (step, action, covariate, aic,
            delta_aic relative to the model at that step, status "ok" or the
            error message, selected).

    A result is only returned once no move lowers AIC; running out of
    steps raises instead.
    """
    model: Any
    spec: CovariateSpec
    history: pd.DataFrame

    def _moves(self, action: str) -> List[str]:
        taken = self.history[self.history["selected"] & (self.history["action"] == action)]
        return taken["covariate"].tolist()

    @property
    def dropped(self) -> List[str]:
        """Covariates removed, in the order they were dropped."""
        return self._moves("drop")

    @property
    def added(self) -> List[str]:
        return self._moves("add")


def stepwise_selection(
    fit: Callable[[SurvivalData, CovariateSpec], Any],
    data: SurvivalData,
    spec: CovariateSpec,
    direction: str = "both",
    start: Optional[CovariateSpec] = None,
    max_steps: Optional[int] = None,
) -> StepwiseResult:
    """Greedy AIC search over subsets of ``spec``.

    At every step all single add/drop moves allowed by ``direction`` are
    fitted; the one with the lowest AIC is taken if it is lower than the
    current model's. Candidates whose fit raises a numerical error are
    recorded as failed and skipped.

    Args:
        fit: Fitter callable, e.g. ``CoxPHFitter().fit``.
        data: Records to fit on.
        spec: Scope of the search (the largest model considered).
        direction: "both" (default), "backward" or "forward".
        start: Starting model. Defaults to ``spec`` for "both"/"backward" and
            the null model for "forward".
        max_steps: Maximum number of accepted moves.

    Raises:
        ConvergenceError: If an improving move remains after ``max_steps``.
        DataError: If ``start`` is not contained in ``spec``.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"Invalid direction '{direction}'. Use one of {list(DIRECTIONS)}.")
    if start is None:
        start = EMPTY_SPEC if direction == "forward" else spec
    outside = set(start.names) - set(spec.names)
    if outside:
        raise DataError(f"Starting covariates not in search scope: {sorted(outside)}")
    if max_steps is None:
        max_steps = max(10, 4 * len(spec))

    current = spec.subset(start.names)
    model = fit(data, current)
    history: List[Dict[str, Any]] = [{
        "step": 0, "action": "start", "covariate": None, "aic": model.aic,
        "delta_aic": 0.0, "status": "ok", "selected": True,
    }]
    logger.debug("Stepwise start: %s (AIC=%.3f)", current, model.aic)

    step = 0
    while True:
        moves = []
        if direction in ("both", "backward"):
            moves += [("drop", name, current.without(name)) for name in current.names]
        if direction in ("both", "forward"):
            moves += [
                ("add", name, spec.subset(current.names + (name,)))
                for name in spec.names if name not in current
            ]

        best = None
        rows = []
        for action, name, candidate in moves:
            row = {"step": step + 1, "action": action, "covariate": name, "selected": False}
            try:
                candidate_model = fit(data, candidate)
            except NumericalError as exc:
                logger.info("Stepwise candidate %s %s failed: %s", action, name, exc)
                rows.append({**row, "aic": float("nan"), "delta_aic": float("nan"), "status": str(exc)})
                continue
            rows.append({
                **row, "aic": candidate_model.aic,
                "delta_aic": candidate_model.aic - model.aic, "status": "ok",
            })
            if best is None or candidate_model.aic < best[2].aic:
                best = (len(rows) - 1, candidate, candidate_model)

        improving = best is not None and best[2].aic < model.aic
        if improving:
            if step >= max_steps:
                history.extend(rows)
                raise ConvergenceError(
                    f"Stepwise selection still improving after {max_steps} steps",
                    {"spec": str(current), "aic": model.aic, "history": history},
                )
            rows[best[0]]["selected"] = True
        history.extend(rows)
        if not improving:
            break

        step += 1
        current, model = best[1], best[2]
        logger.debug("Stepwise step %d: %s (AIC=%.3f)", step, current, model.aic)

    logger.info("Stepwise selection finished after %d steps: %s (AIC=%.3f)", step, current, model.aic)
    return StepwiseResult(
        model=model,
        spec=current,
        history=pd.DataFrame(history, columns=HISTORY_COLUMNS),
    )
