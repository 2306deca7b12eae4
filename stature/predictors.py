"""
predictors.py
=============
Predictor catalog: every candidate predictor with its functional kind.

The kind (length vs. breadth) decides the nonlinear family and is assigned
once here. Downstream code reads PredictorSpec.kind; it never looks at the
predictor name again.

Length codes follow the osteometric convention used in long-bone datasets:
maximum length (..ML, ..XLN), bicondylar / physiological length (..BL, ..BLN,
..PLN), subadult diaphyseal length (..DL), or a spelled-out "len"/"length".
Everything else (head diameters, epiphyseal and midshaft breadths) is
breadth-type.
"""

import logging
import re
from dataclasses import replace
from typing import Dict, Iterator, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import ConfigurationError
from .records import Individual, PredictorKind, PredictorSpec

logger = logging.getLogger(__name__)

_LENGTH_PATTERN = re.compile(r'(ML|BL|DL|XLN|BLN|PLN)$|LEN(GTH)?$|LENGTH', re.IGNORECASE)


def classify_predictor(name: str) -> PredictorKind:
    """Length-type when the name follows a length code, breadth-type otherwise"""
    if _LENGTH_PATTERN.search(str(name).strip()):
        return PredictorKind.LENGTH
    return PredictorKind.BREADTH


class PredictorCatalog:
    """
    Ordered collection of PredictorSpecs

    Args:
        predictors: base measurement names
        composites: composite name -> component names (summed)
        overrides: predictor name -> "length" / "breadth", wins over the pattern
    """

    def __init__(self,
                 predictors: Sequence[str],
                 composites: Optional[Mapping[str, Sequence[str]]] = None,
                 overrides: Optional[Mapping[str, str]] = None):
        overrides = dict(overrides or {})
        self._specs: Dict[str, PredictorSpec] = {}

        for name in predictors:
            if name in self._specs:
                raise ConfigurationError(f"Duplicate predictor: {name}")
            self._specs[name] = PredictorSpec(name=name, kind=self._kind_for(name, overrides))

        for name, components in (composites or {}).items():
            if name in self._specs:
                raise ConfigurationError(f"Composite '{name}' collides with a predictor")
            components = tuple(components)
            if len(components) < 2:
                raise ConfigurationError(f"Composite '{name}' needs at least two components")
            unknown = [c for c in components if c not in self._specs]
            if unknown:
                raise ConfigurationError(f"Composite '{name}' has unknown components {unknown}")
            kinds = {self._specs[c].kind for c in components}
            kind = kinds.pop() if len(kinds) == 1 else PredictorKind.BREADTH
            if name in overrides:
                kind = self._kind_for(name, overrides)
            self._specs[name] = PredictorSpec(name=name, kind=kind, components=components)

        unused = set(overrides) - set(self._specs)
        if unused:
            logger.warning(f"Kind overrides for unknown predictors ignored: {sorted(unused)}")

        n_length = sum(1 for s in self._specs.values() if s.kind is PredictorKind.LENGTH)
        logger.info(f"Predictor catalog: {len(self._specs)} predictors "
                    f"({n_length} length-type, {len(self._specs) - n_length} breadth-type, "
                    f"{len(composites or {})} composite)")

    @staticmethod
    def _kind_for(name: str, overrides: Mapping[str, str]) -> PredictorKind:
        if name in overrides:
            try:
                return PredictorKind(str(overrides[name]).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Invalid kind override for {name}: {overrides[name]!r}") from None
        return classify_predictor(name)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, exclude: Sequence[str] = (),
                   composites: Optional[Mapping[str, Sequence[str]]] = None,
                   overrides: Optional[Mapping[str, str]] = None) -> "PredictorCatalog":
        """Catalog of every numeric column not listed in `exclude`"""
        numeric = df.select_dtypes(include=[np.number]).columns
        return cls([c for c in numeric if c not in set(exclude)], composites, overrides)

    def __iter__(self) -> Iterator[PredictorSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    @property
    def specs(self) -> List[PredictorSpec]:
        return list(self._specs.values())

    @property
    def names(self) -> List[str]:
        return list(self._specs)

    @property
    def base_names(self) -> List[str]:
        return [s.name for s in self._specs.values() if not s.is_composite]

    def get(self, name: str) -> PredictorSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise ConfigurationError(f"Unknown predictor: {name}") from None

    def kind(self, name: str) -> PredictorKind:
        return self.get(name).kind

    def value(self, individual: Individual, name: str) -> float:
        """Measurement of `name` for one individual; composites are summed, NaN if incomplete"""
        spec = self.get(name)
        if not spec.is_composite:
            return individual.value(name)
        parts = [individual.value(c) for c in spec.components]
        if not all(np.isfinite(parts)):
            return np.nan
        return float(np.sum(parts))

    def derive(self, individuals: Sequence[Individual]) -> List[Individual]:
        """Copies of `individuals` whose measurements include every composite value"""
        composites = [s for s in self._specs.values() if s.is_composite]
        if not composites:
            return list(individuals)

        derived = []
        for ind in individuals:
            measurements = dict(ind.measurements)
            for spec in composites:
                value = self.value(ind, spec.name)
                if np.isfinite(value):
                    measurements[spec.name] = value
            derived.append(replace(ind, measurements=measurements))
        return derived

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([
            {'predictor': s.name, 'kind': s.kind.value,
             'components': '+'.join(s.components)}
            for s in self._specs.values()
        ])
