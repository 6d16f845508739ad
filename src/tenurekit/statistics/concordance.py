"""Harrell's concordance index for fitted risk models."""

import numpy as np

from tenurekit.core.exceptions import DataError


def concordance_index(durations, risk_scores, events=None) -> float:
    """Fraction of comparable pairs ranked consistently with observed order.

    A pair is comparable when the subject with the strictly shorter duration
    experienced the event. It is concordant when that subject also received
    the higher risk score; tied scores earn half credit.

    Args:
        durations: Observed durations.
        risk_scores: Predicted risk (higher = earlier expected turnover).
        events: Event indicator. Defaults to all events observed.

    Returns:
        Concordance in [0, 1]; 0.5 is chance, 1.0 perfect discrimination.

    Raises:
        DataError: If the inputs differ in length or no pair is comparable.
    """
    durations = np.asarray(durations, dtype=float)
    risk_scores = np.asarray(risk_scores, dtype=float)
    events = np.ones_like(durations, dtype=bool) if events is None else np.asarray(events, dtype=bool)

    if not (durations.shape == risk_scores.shape == events.shape):
        raise DataError("durations, risk_scores and events must have the same length")
    if not np.all(np.isfinite(risk_scores)):
        raise DataError("risk_scores must be finite")

    concordant = 0.0
    comparable = 0
    for i in np.flatnonzero(events):
        later = durations > durations[i]
        n_later = int(later.sum())
        if n_later == 0:
            continue
        others = risk_scores[later]
        concordant += np.sum(risk_scores[i] > others) + 0.5 * np.sum(risk_scores[i] == others)
        comparable += n_later

    if comparable == 0:
        raise DataError("No comparable pairs: need at least one event before a later time")
    return float(concordant / comparable)


def score_model(model, data) -> float:
    """Concordance of ``model.predict_risk`` on a set of records.

    Args:
        model: Any fitted model exposing ``predict_risk(data)``.
        data: :class:`~tenurekit.core.records.SurvivalData` to score, either
            the training sample or a held-out one.
    """
    return concordance_index(data.durations, model.predict_risk(data), data.events)
