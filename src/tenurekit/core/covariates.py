"""Declarative covariate specification.

Every fitter consumes a :class:`CovariateSpec` instead of a pre-encoded
table. Categorical covariates are dummy coded against an explicit reference
level, so re-leveling means building a new spec rather than mutating data.

Example:
    >>> spec = CovariateSpec.infer(df, ["age", "way"], references={"way": "bus"})
    >>> spec.names
    ('age', 'way')
    >>> spec.resolve(df).design_matrix(df).columns.tolist()
    ['age', 'way[T.car]', 'way[T.foot]']
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from tenurekit.core.exceptions import DataError


NUMERIC = "numeric"
CATEGORICAL = "categorical"


@dataclass(frozen=True)
class Covariate:
    """One model term.

    Attributes:
        name: Column name in the record table.
        kind: "numeric" or "categorical".
        reference: Reference level of a categorical covariate (coefficient 0).
            Defaults to the first sorted level.
        levels: All levels of a categorical covariate. Filled from training
            data by :meth:`CovariateSpec.resolve` and frozen afterwards.
    """
    name: str
    kind: str = NUMERIC
    reference: Optional[Any] = None
    levels: Optional[Tuple[Any, ...]] = None

    def __post_init__(self):
        if self.kind not in (NUMERIC, CATEGORICAL):
            raise ValueError(f"Invalid covariate kind '{self.kind}' for '{self.name}'")
        if self.kind == NUMERIC and (self.reference is not None or self.levels is not None):
            raise ValueError(f"Numeric covariate '{self.name}' cannot have levels")
        if self.levels is not None and self.reference is not None:
            if self.reference not in self.levels:
                raise DataError(
                    f"Reference level {self.reference!r} is not a level of '{self.name}'"
                )

    @property
    def is_categorical(self) -> bool:
        return self.kind == CATEGORICAL

    @property
    def resolved(self) -> bool:
        return not self.is_categorical or self.levels is not None

    @property
    def contrast_levels(self) -> Tuple[Any, ...]:
        """Levels that get their own coefficient (all but the reference)."""
        if not self.is_categorical:
            return ()
        if self.levels is None:
            raise DataError(f"Covariate '{self.name}' has unresolved levels")
        return tuple(level for level in self.levels if level != self.reference)

    @property
    def columns(self) -> Tuple[str, ...]:
        """Design-matrix column names produced by this covariate."""
        if not self.is_categorical:
            return (self.name,)
        return tuple(f"{self.name}[T.{level}]" for level in self.contrast_levels)

    def resolve(self, values: pd.Series) -> "Covariate":
        """Return a copy with levels and reference fixed from data."""
        if not self.is_categorical:
            return self
        levels = self.levels
        if levels is None:
            levels = tuple(sorted(pd.unique(values.dropna()), key=str))
        if not levels:
            raise DataError(f"Categorical covariate '{self.name}' has no levels")
        reference = self.reference if self.reference is not None else levels[0]
        if reference not in levels:
            raise DataError(
                f"Reference level {reference!r} is not a level of '{self.name}'"
            )
        return replace(self, levels=tuple(levels), reference=reference)


@dataclass(frozen=True)
class CovariateSpec:
    """Ordered, immutable list of covariates used by a model."""
    covariates: Tuple[Covariate, ...] = field(default_factory=tuple)

    def __post_init__(self):
        covariates = tuple(self.covariates)
        names = [c.name for c in covariates]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate covariates in spec: {sorted(duplicates)}")
        object.__setattr__(self, "covariates", covariates)

    @classmethod
    def infer(
        cls,
        frame: pd.DataFrame,
        columns: Iterable[str],
        references: Optional[Mapping[str, Any]] = None,
    ) -> "CovariateSpec":
        """Build a spec from column dtypes.

        Numeric (non-boolean) columns become numeric covariates; everything
        else, and every column named in ``references``, is categorical.
        """
        references = dict(references or {})
        covariates = []
        for name in columns:
            if name not in frame.columns:
                raise DataError(f"Column '{name}' not found in DataFrame")
            dtype = frame[name].dtype
            numeric = pd.api.types.is_numeric_dtype(dtype) and not pd.api.types.is_bool_dtype(dtype)
            if numeric and name not in references:
                covariates.append(Covariate(name))
            else:
                covariates.append(Covariate(name, CATEGORICAL, reference=references.get(name)))
        unknown = set(references) - set(columns)
        if unknown:
            raise DataError(f"References given for columns not in spec: {sorted(unknown)}")
        return cls(tuple(covariates)).resolve(frame)

    def __len__(self) -> int:
        return len(self.covariates)

    def __iter__(self):
        return iter(self.covariates)

    def __contains__(self, name: str) -> bool:
        return name in self.names

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.covariates)

    @property
    def columns(self) -> List[str]:
        """Design-matrix columns, in order."""
        return [col for c in self.covariates for col in c.columns]

    def get(self, name: str) -> Covariate:
        for covariate in self.covariates:
            if covariate.name == name:
                return covariate
        raise KeyError(name)

    def term_columns(self) -> Dict[str, Tuple[str, ...]]:
        """Map each covariate to its design-matrix columns."""
        return {c.name: c.columns for c in self.covariates}

    def with_covariate(self, covariate: Covariate) -> "CovariateSpec":
        if covariate.name in self:
            raise ValueError(f"Covariate '{covariate.name}' already in spec")
        return CovariateSpec(self.covariates + (covariate,))

    def without(self, name: str) -> "CovariateSpec":
        if name not in self:
            raise KeyError(name)
        return CovariateSpec(tuple(c for c in self.covariates if c.name != name))

    def subset(self, names: Iterable[str]) -> "CovariateSpec":
        """Keep only ``names``, preserving this spec's order."""
        wanted = set(names)
        missing = wanted - set(self.names)
        if missing:
            raise KeyError(f"Not in spec: {sorted(missing)}")
        return CovariateSpec(tuple(c for c in self.covariates if c.name in wanted))

    def with_reference(self, name: str, reference: Any) -> "CovariateSpec":
        """Re-level one categorical covariate."""
        covariate = self.get(name)
        if not covariate.is_categorical:
            raise ValueError(f"Covariate '{name}' is not categorical")
        if covariate.levels is not None and reference not in covariate.levels:
            raise DataError(f"Reference level {reference!r} is not a level of '{name}'")
        return CovariateSpec(tuple(
            replace(c, reference=reference) if c.name == name else c
            for c in self.covariates
        ))

    def resolve(self, frame: pd.DataFrame) -> "CovariateSpec":
        """Fix categorical levels from ``frame`` where not already fixed."""
        resolved = []
        for covariate in self.covariates:
            if covariate.name not in frame.columns:
                raise DataError(f"Column '{covariate.name}' not found in DataFrame")
            resolved.append(covariate.resolve(frame[covariate.name]))
        return CovariateSpec(tuple(resolved))

    def design_matrix(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Encode ``frame`` as a float design matrix (no intercept).

        Raises:
            DataError: On a missing column, a null value, or a categorical
                value outside the resolved levels.
        """
        blocks = {}
        for covariate in self.covariates:
            if covariate.name not in frame.columns:
                raise DataError(f"Column '{covariate.name}' not found in DataFrame")
            values = frame[covariate.name]
            if values.isna().any():
                raise DataError(f"Covariate '{covariate.name}' contains missing values")

            if not covariate.is_categorical:
                try:
                    blocks[covariate.name] = values.astype(float).to_numpy()
                except (TypeError, ValueError) as exc:
                    raise DataError(
                        f"Numeric covariate '{covariate.name}' has non-numeric values"
                    ) from exc
                continue

            if covariate.levels is None:
                raise DataError(f"Covariate '{covariate.name}' has unresolved levels")
            unknown = set(pd.unique(values)) - set(covariate.levels)
            if unknown:
                raise DataError(
                    f"Unknown levels for '{covariate.name}': {sorted(map(str, unknown))}"
                )
            for level, column in zip(covariate.contrast_levels, covariate.columns):
                blocks[column] = (values == level).to_numpy(dtype=float)

        return pd.DataFrame(blocks, index=frame.index, columns=self.columns, dtype=float)

    def n_parameters(self) -> int:
        return len(self.columns)

    def __str__(self) -> str:
        terms = []
        for c in self.covariates:
            terms.append(f"{c.name}(ref={c.reference!r})" if c.is_categorical else c.name)
        return " + ".join(terms) if terms else "<null model>"


EMPTY_SPEC = CovariateSpec()

