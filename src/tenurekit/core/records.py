"""Event-time records: the canonical per-subject data unit."""

import hashlib
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Union

import numpy as np
import pandas as pd

from tenurekit.core.config import DURATION_COL, EVENT_COL, GROUP_COL, TREATMENT_COL
from tenurekit.core.engine import BackendType, to_pandas
from tenurekit.core.exceptions import DataError
from tenurekit.core.validation import validate_input_schema


logger = logging.getLogger(__name__)

# Standard names used by to_frame; covariates may not take them
RESERVED_COLUMNS = (DURATION_COL, EVENT_COL, GROUP_COL, TREATMENT_COL)


def _frozen(values: np.ndarray) -> np.ndarray:
    values = np.array(values, copy=True)
    values.setflags(write=False)
    return values


class SurvivalData:
    """Immutable collection of right-censored event-time records.

    Each subject has a positive ``duration`` (years of tenure until turnover
    or censoring), an ``event`` indicator (True = turnover observed) and a row
    of covariates. A group label and a treatment flag may be attached; doing
    so returns a new collection and leaves the covariates untouched.

    Examples:
        >>> data = SurvivalData.from_frame(df, "stag", "event", ["gender", "age"])
        >>> by_gender = data.with_group_label("gender")
        >>> by_gender.groups().keys()
        dict_keys(['f', 'm'])
    """

    def __init__(
        self,
        durations,
        events,
        covariates: Optional[pd.DataFrame] = None,
        group_label=None,
        treatment_flag=None,
        treatment_source: Optional[str] = None,
    ):
        durations = np.asarray(durations, dtype=float)
        events = np.asarray(events)
        n = len(durations)

        if n == 0:
            raise DataError("No records supplied")
        if events.shape != durations.shape:
            raise DataError("durations and events must have the same length")
        if not np.all(np.isfinite(durations)) or durations.min() <= 0:
            raise DataError("Every duration must be positive and finite")
        if not np.isin(events, [0, 1]).all():
            raise DataError("Event indicator must only contain 0/1")

        if covariates is None:
            covariates = pd.DataFrame(index=pd.RangeIndex(n))
        if len(covariates) != n:
            raise DataError("Covariate table length does not match durations")
        clashes = [c for c in covariates.columns if c in RESERVED_COLUMNS]
        if clashes:
            raise DataError(
                f"Covariate names {clashes} are reserved for the standard record columns; "
                "rename them before loading"
            )

        self._durations = _frozen(durations)
        self._events = _frozen(events.astype(bool))
        self._covariates = covariates.reset_index(drop=True).copy()
        self._group_label = None if group_label is None else _frozen(np.asarray(group_label, dtype=object))
        self._treatment_flag = None if treatment_flag is None else _frozen(np.asarray(treatment_flag, dtype=bool))
        self._treatment_source = treatment_source if treatment_flag is not None else None

        for name, attached in (("group_label", self._group_label), ("treatment_flag", self._treatment_flag)):
            if attached is not None and len(attached) != n:
                raise DataError(f"{name} length does not match durations")

    @classmethod
    def from_frame(
        cls,
        df: BackendType,
        duration_col: str,
        event_col: str,
        covariate_cols: Optional[Iterable[str]] = None,
    ) -> "SurvivalData":
        """Build records from a pandas or PySpark DataFrame.

        Args:
            df: One row per subject.
            duration_col: Column holding the positive tenure.
            event_col: Column holding the 0/1 event indicator.
            covariate_cols: Covariate columns to keep. Defaults to every other
                column.

        Raises:
            DataError: If the table fails validation or a covariate uses one
                of the reserved names in ``RESERVED_COLUMNS``.
        """
        if covariate_cols is None:
            covariate_cols = [c for c in df.columns if c not in (duration_col, event_col)]
        covariate_cols = list(covariate_cols)

        validate_input_schema(df, duration_col, event_col, required_cols=covariate_cols)
        frame = to_pandas(df, [duration_col, event_col] + covariate_cols)

        logger.debug("Loaded %d records with %d covariates", len(frame), len(covariate_cols))
        return cls(
            durations=frame[duration_col].to_numpy(dtype=float),
            events=frame[event_col].to_numpy().astype(int),
            covariates=frame[covariate_cols],
        )

    # Read-only views

    @property
    def durations(self) -> np.ndarray:
        return self._durations

    @property
    def events(self) -> np.ndarray:
        return self._events

    @property
    def covariates(self) -> pd.DataFrame:
        """A copy of the covariate table."""
        return self._covariates.copy()

    @property
    def group_label(self) -> Optional[np.ndarray]:
        return self._group_label

    @property
    def treatment_flag(self) -> Optional[np.ndarray]:
        return self._treatment_flag

    @property
    def n_samples(self) -> int:
        return len(self._durations)

    @property
    def n_events(self) -> int:
        return int(self._events.sum())

    def __len__(self) -> int:
        return self.n_samples

    def __repr__(self) -> str:
        return (
            f"SurvivalData(n_samples={self.n_samples}, n_events={self.n_events}, "
            f"covariates={list(self._covariates.columns)})"
        )

    # Derivations (each returns a new instance)

    def _derive(self, mask=None, treatment_source=None, **overrides) -> "SurvivalData":
        attrs: Dict[str, Any] = {
            "durations": self._durations,
            "events": self._events.astype(int),
            "covariates": self._covariates,
            "group_label": self._group_label,
            "treatment_flag": self._treatment_flag,
        }
        attrs.update(overrides)
        if mask is not None:
            mask = np.asarray(mask, dtype=bool)
            attrs = {
                key: (None if value is None else
                      value.loc[mask] if isinstance(value, pd.DataFrame) else
                      np.asarray(value)[mask])
                for key, value in attrs.items()
            }
        attrs["treatment_source"] = treatment_source or self._treatment_source
        return SurvivalData(**attrs)

    def with_group_label(
        self, labels: Union[str, Iterable[Any]]
    ) -> "SurvivalData":
        """Attach a categorical group label.

        Args:
            labels: A covariate column name, or one label per subject.
        """
        if isinstance(labels, str):
            if labels not in self._covariates.columns:
                raise DataError(f"Column '{labels}' not found in covariates")
            labels = self._covariates[labels].to_numpy()
        return self._derive(group_label=np.asarray(list(labels), dtype=object))

    def with_treatment_flag(
        self,
        column: str,
        treated: Union[Any, Callable[[pd.Series], Iterable[bool]]],
    ) -> "SurvivalData":
        """Attach a binary treatment flag derived from a covariate.

        Args:
            column: Covariate the flag is derived from.
            treated: Level counted as treated, or a callable mapping the
                column to booleans.
        """
        if column not in self._covariates.columns:
            raise DataError(f"Column '{column}' not found in covariates")
        values = self._covariates[column]
        if callable(treated):
            flag = np.asarray(list(treated(values)), dtype=bool)
        else:
            flag = (values == treated).to_numpy(dtype=bool)
        return self._derive(treatment_flag=flag, treatment_source=column)

    @property
    def treatment_source(self) -> Optional[str]:
        """Covariate the treatment flag was derived from, if any."""
        return self._treatment_source

    def subset(self, mask) -> "SurvivalData":
        """Records where ``mask`` is true."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != self._durations.shape:
            raise DataError("Mask length does not match records")
        if not mask.any():
            raise DataError("Subset is empty")
        return self._derive(mask=mask)

    def groups(self) -> Dict[Any, "SurvivalData"]:
        """Split by group label, in sorted label order."""
        if self._group_label is None:
            raise DataError("No group label attached; call with_group_label() first")
        labels = sorted(pd.unique(self._group_label), key=str)
        return {label: self.subset(self._group_label == label) for label in labels}

    def to_frame(self) -> pd.DataFrame:
        """Flat table with standard column names plus covariates."""
        frame = pd.DataFrame({
            DURATION_COL: self._durations,
            EVENT_COL: self._events.astype(int),
        })
        frame = pd.concat([frame, self._covariates], axis=1)
        if self._group_label is not None:
            frame[GROUP_COL] = self._group_label
        if self._treatment_flag is not None:
            frame[TREATMENT_COL] = self._treatment_flag.astype(int)
        return frame

    def fingerprint(self) -> str:
        """Short content hash identifying this data snapshot."""
        hashed = pd.util.hash_pandas_object(self.to_frame(), index=True)
        return hashlib.sha1(hashed.to_numpy().tobytes()).hexdigest()[:12]


def covariate_frame(data: Union["SurvivalData", pd.DataFrame]) -> pd.DataFrame:
    """Covariate table of records, or a plain covariate DataFrame as is."""
    return data.covariates if isinstance(data, SurvivalData) else data
