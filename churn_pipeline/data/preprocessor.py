"""
Data Preprocessor Module
========================

Fits deterministic feature transforms on the training split and applies them
to any dataset. The fitted state is a plain, versioned, JSON-serialisable
artifact so a serving process can apply the same transform without this code.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
from loguru import logger
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import MinMaxScaler, OneHotEncoder, OrdinalEncoder, StandardScaler

from config import PipelineSettings

from ..exceptions import PreprocessingError
from ..utils import to_builtin
from .schema import FeatureSchema

ARTIFACT_FORMAT_VERSION = 1
ARTIFACT_KIND = "churn_pipeline.preprocessing"
UNKNOWN = "__unknown__"
UNKNOWN_CODE = -1

SCALERS = {
    "standard": StandardScaler,
    "minmax": MinMaxScaler,
}



def onehot_column(feature: str, category: Any) -> str:
    return f"{feature}_{category}"

@dataclass(frozen=True)
class ScalerParams:
    """``(x - offset) / scale`` after filling nulls with ``fill_value``."""

    method: str
    offset: float
    scale: float
    fill_value: float

    def apply(self, series: pd.Series) -> pd.Series:
        values = pd.to_numeric(series, errors="coerce").fillna(self.fill_value).astype(float)
        return (values - self.offset) / self.scale

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "offset": self.offset,
            "scale": self.scale,
            "fill_value": self.fill_value,
        }


@dataclass(frozen=True)
class EncodingMap:
    """Observed training categories; anything else maps to the unknown bucket."""

    categories: Tuple[Any, ...]
    fill_value: Any

    @property
    def codes(self) -> Dict[Any, int]:
        return {category: i for i, category in enumerate(self.categories)}

    def encode(self, series: pd.Series) -> pd.Series:
        codes = self.codes
        filled = series.where(series.notna(), self.fill_value)
        return filled.map(lambda value: codes.get(value, UNKNOWN_CODE)).astype(int)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categories": list(self.categories),
            "fill_value": self.fill_value,
            "unknown_code": UNKNOWN_CODE,
        }


@dataclass(frozen=True)
class PreprocessingArtifact:
    """Fitted state of every feature transform. Immutable once fit."""

    numerical_scaler: str
    categorical_encoder: str
    scalers: Mapping[str, ScalerParams]
    encoders: Mapping[str, EncodingMap]
    feature_names: Tuple[str, ...]
    target_column: Optional[str] = None
    format_version: int = field(default=ARTIFACT_FORMAT_VERSION)

    def __post_init__(self):
        object.__setattr__(self, "scalers", MappingProxyType(dict(self.scalers)))
        object.__setattr__(self, "encoders", MappingProxyType(dict(self.encoders)))
        object.__setattr__(self, "feature_names", tuple(self.feature_names))

    @property
    def input_columns(self) -> Tuple[str, ...]:
        return tuple(self.scalers) + tuple(self.encoders)

    def to_dict(self) -> Dict[str, Any]:
        return to_builtin({
            "kind": ARTIFACT_KIND,
            "format_version": self.format_version,
            "target_column": self.target_column,
            "numerical_scaler": self.numerical_scaler,
            "categorical_encoder": self.categorical_encoder,
            "feature_names": list(self.feature_names),
            "numeric": {name: p.to_dict() for name, p in self.scalers.items()},
            "categorical": {name: e.to_dict() for name, e in self.encoders.items()},
        })

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PreprocessingArtifact":
        version = payload.get("format_version")
        if payload.get("kind") != ARTIFACT_KIND or version != ARTIFACT_FORMAT_VERSION:
            raise PreprocessingError(
                f"Unsupported preprocessing artifact (kind={payload.get('kind')}, version={version})"
            )
        try:
            return cls(
                numerical_scaler=payload["numerical_scaler"],
                categorical_encoder=payload["categorical_encoder"],
                scalers={
                    name: ScalerParams(
                        method=p["method"],
                        offset=float(p["offset"]),
                        scale=float(p["scale"]),
                        fill_value=float(p["fill_value"]),
                    )
                    for name, p in payload["numeric"].items()
                },
                encoders={
                    name: EncodingMap(categories=tuple(e["categories"]), fill_value=e["fill_value"])
                    for name, e in payload["categorical"].items()
                },
                feature_names=tuple(payload["feature_names"]),
                target_column=payload.get("target_column"),
                format_version=version,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PreprocessingError(f"Malformed preprocessing artifact: {exc}") from exc


class Preprocessor:
    """Fit scalers and encoders on train data only and apply them anywhere."""

    def __init__(
        self,
        config: Optional[PipelineSettings] = None,
        schema: Optional[FeatureSchema] = None,
        numerical_scaler: Optional[str] = None,
        categorical_encoder: Optional[str] = None,
        log=None,
    ):
        """
        Initialize Preprocessor.

        Args:
            config: Pipeline configuration (feature schema and preprocessing options)
            schema: Explicit feature schema, overrides the one built from config
            numerical_scaler: Scaler for numerical features ('standard', 'minmax')
            categorical_encoder: Encoder for categorical features ('onehot', 'ordinal')
            log: Logger to report through
        """
        if schema is None:
            if config is None:
                raise PreprocessingError("Preprocessor needs a config or a schema")
            schema = FeatureSchema.from_config(config)
        self.schema = schema
        self.log = log or logger

        options = config.preprocessing if config is not None else None
        self.numerical_scaler = numerical_scaler or (options.numerical_scaler if options else "standard")
        self.categorical_encoder = categorical_encoder or (options.categorical_encoder if options else "onehot")

        if self.numerical_scaler not in SCALERS:
            raise PreprocessingError(f"Unknown scaler: {self.numerical_scaler}")
        if self.categorical_encoder not in ("onehot", "ordinal"):
            raise PreprocessingError(f"Unknown encoder: {self.categorical_encoder}")

    def fit(self, train: pd.DataFrame) -> PreprocessingArtifact:
        """
        Fit every feature transform on the training split.

        Args:
            train: Training DataFrame

        Returns:
            PreprocessingArtifact holding the fitted state
        """
        scalers = {}
        for column in self.schema.numeric:
            values = pd.to_numeric(self._usable(train, column.name), errors="coerce").dropna()
            if values.empty:
                raise PreprocessingError(f"No usable numeric values to fit '{column.name}'")
            scalers[column.name] = self._fit_scaler(values)

        encoders = {}
        for column in self.schema.categorical:
            encoders[column.name] = self._fit_encoder(column.name, self._usable(train, column.name))

        artifact = PreprocessingArtifact(
            numerical_scaler=self.numerical_scaler,
            categorical_encoder=self.categorical_encoder,
            scalers=scalers,
            encoders=encoders,
            feature_names=self._feature_names(scalers, encoders),
            target_column=self.schema.target_column,
        )

        self.log.info(f"Numerical features: {list(scalers)}")
        self.log.info(f"Categorical features: {list(encoders)}")
        self.log.info(f"Fitted preprocessing on {len(train)} rows -> {len(artifact.feature_names)} features")
        return artifact

    def _usable(self, df: pd.DataFrame, name: str) -> pd.Series:
        if name not in df.columns:
            raise PreprocessingError(f"Feature '{name}' missing from training data")
        values = df[name].dropna()
        if values.empty:
            raise PreprocessingError(f"Feature '{name}' has no usable rows in training data")
        return values

    def _fit_scaler(self, values: pd.Series) -> ScalerParams:
        matrix = values.to_numpy(dtype=float).reshape(-1, 1)
        imputer = SimpleImputer(strategy="median").fit(matrix)
        scaler = SCALERS[self.numerical_scaler]().fit(matrix)

        if self.numerical_scaler == "standard":
            offset, scale = float(scaler.mean_[0]), float(scaler.scale_[0])
        else:
            offset, scale = float(scaler.data_min_[0]), float(scaler.data_range_[0])
        if scale == 0 or not np.isfinite(scale):
            scale = 1.0

        return ScalerParams(
            method=self.numerical_scaler,
            offset=offset,
            scale=scale,
            fill_value=float(imputer.statistics_[0]),
        )

    def _fit_encoder(self, name: str, values: pd.Series) -> EncodingMap:
        # object dtype keeps integer categories as Python ints
        matrix = values.to_numpy(dtype=object).reshape(-1, 1)
        if self.categorical_encoder == "onehot":
            encoder = OneHotEncoder(handle_unknown="ignore", sparse_output=False)
        else:
            encoder = OrdinalEncoder(handle_unknown="use_encoded_value", unknown_value=UNKNOWN_CODE)

        try:
            imputer = SimpleImputer(strategy="most_frequent").fit(matrix)
            encoder.fit(matrix)
        except (TypeError, ValueError) as exc:
            raise PreprocessingError(f"Cannot encode feature '{name}': {exc}") from exc

        return EncodingMap(
            categories=tuple(to_builtin(encoder.categories_[0])),
            fill_value=to_builtin(imputer.statistics_[0]),
        )

    def _feature_names(self, scalers: Dict[str, ScalerParams], encoders: Dict[str, EncodingMap]) -> Tuple[str, ...]:
        names: List[str] = list(scalers)
        for name, encoder in encoders.items():
            if self.categorical_encoder == "onehot":
                names.extend(onehot_column(name, category) for category in encoder.categories)
                names.append(onehot_column(name, UNKNOWN))
            else:
                names.append(name)

        duplicated = sorted({n for n in names if names.count(n) > 1})
        if duplicated:
            raise PreprocessingError(f"Encoded feature names collide: {duplicated}")
        return tuple(names)

    @staticmethod
    def transform(dataset: pd.DataFrame, artifact: PreprocessingArtifact) -> pd.DataFrame:
        """
        Apply a fitted artifact. Pure: never refits, never mutates its inputs.

        Args:
            dataset: DataFrame with the raw feature columns
            artifact: Fitted preprocessing state

        Returns:
            DataFrame of transformed features (plus the target when present),
            indexed like ``dataset``
        """
        missing = [name for name in artifact.input_columns if name not in dataset.columns]
        if missing:
            raise PreprocessingError(f"Cannot transform, missing columns: {missing}")

        columns: Dict[str, pd.Series] = {}
        for name, params in artifact.scalers.items():
            columns[name] = params.apply(dataset[name])

        for name, encoder in artifact.encoders.items():
            codes = encoder.encode(dataset[name])
            if artifact.categorical_encoder == "onehot":
                for i, category in enumerate(encoder.categories):
                    columns[onehot_column(name, category)] = (codes == i).astype(float)
                columns[onehot_column(name, UNKNOWN)] = (codes == UNKNOWN_CODE).astype(float)
            else:
                columns[name] = codes.astype(float)

        result = pd.DataFrame(columns, index=dataset.index)[list(artifact.feature_names)]
        target = artifact.target_column
        if target is not None and target in dataset.columns:
            result[target] = dataset[target].to_numpy()
        return result

    def fit_transform(self, train: pd.DataFrame) -> Tuple[PreprocessingArtifact, pd.DataFrame]:
        """Fit on ``train`` and return the artifact with the transformed train set."""
        artifact = self.fit(train)
        return artifact, self.transform(train, artifact)
