"""
Data Ingestion Module
=====================

Loads raw churn records and produces a reproducible stratified train/test split.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np
import pandas as pd
from loguru import logger

from config import PipelineSettings

from ..exceptions import IngestionError

POSITIVE_ALIASES = {"1", "yes", "y", "true", "churn", "churned"}

READERS = {
    ".csv": pd.read_csv,
    ".xlsx": pd.read_excel,
    ".xls": pd.read_excel,
    ".parquet": pd.read_parquet,
}


@dataclass(frozen=True)
class Split:
    """Disjoint train/test partition of an ingested dataset."""

    train: pd.DataFrame
    test: pd.DataFrame

    def combined(self) -> pd.DataFrame:
        """Both partitions together, in original record order."""
        return pd.concat([self.train, self.test]).sort_index()


class DataIngestor:
    """Load raw records and split them for training."""

    def __init__(self, config: Optional[PipelineSettings] = None, log=None):
        """
        Initialize DataIngestor.

        Args:
            config: Validated pipeline configuration. Without one, callers
                must pass the target column and split arguments explicitly.
            log: Logger to report through (defaults to the global loguru logger)
        """
        self.config = config
        self.log = log or logger

        data_config = config.data if config is not None else None
        self.target_column = data_config.target_column if data_config else None
        self.random_state = data_config.random_state if data_config else 42
        self.positive_label = data_config.positive_label if data_config else None
        self.drop_columns = list(data_config.drop_columns) if data_config else []

    def load_raw_data(self, source: Union[str, Path, pd.DataFrame], **kwargs) -> pd.DataFrame:
        """
        Load raw data from a file or take a copy of an in-memory frame.

        Args:
            source: Path to a .csv, .xlsx/.xls or .parquet file, or a DataFrame
            **kwargs: Additional arguments passed to the pandas reader

        Returns:
            DataFrame containing raw data with a unique row index
        """
        if isinstance(source, pd.DataFrame):
            df = source.copy()
        else:
            df = self._read_file(Path(source), **kwargs)

        if df.empty:
            raise IngestionError(f"Source contains no records: {self._describe(source)}")

        if not df.index.is_unique:
            df = df.reset_index(drop=True)

        cols_to_drop = [col for col in self.drop_columns if col in df.columns]
        if cols_to_drop:
            df = df.drop(columns=cols_to_drop)
            self.log.info(f"Dropped columns: {cols_to_drop}")

        duplicates = int(df.duplicated().sum())
        if duplicates:
            self.log.warning(f"Source holds {duplicates} duplicated rows; keeping them")

        self.log.info(f"Loaded {len(df)} rows and {len(df.columns)} columns")
        return df

    def _read_file(self, file_path: Path, **kwargs) -> pd.DataFrame:
        if not file_path.is_file():
            self.log.error(f"Data file not found: {file_path}")
            raise IngestionError(f"Data file not found: {file_path}")

        reader = READERS.get(file_path.suffix.lower())
        if reader is None:
            raise IngestionError(f"Unsupported file format: {file_path.suffix}")

        self.log.info(f"Loading data from {file_path}")
        try:
            return reader(file_path, **kwargs)
        except pd.errors.EmptyDataError as exc:
            raise IngestionError(f"Source contains no records: {file_path}") from exc
        except Exception as exc:
            raise IngestionError(f"Cannot read {file_path}: {exc}") from exc

    @staticmethod
    def _describe(source: Any) -> str:
        return "<DataFrame>" if isinstance(source, pd.DataFrame) else str(source)

    def encode_target(self, df: pd.DataFrame, target_col: str) -> pd.DataFrame:
        """
        Map the target labels onto {0, 1}.

        Args:
            df: Raw DataFrame
            target_col: Name of target column

        Returns:
            DataFrame whose target column is integer 0/1
        """
        if target_col not in df.columns:
            raise IngestionError(f"Target column '{target_col}' not found in source")

        target = df[target_col]
        n_missing = int(target.isnull().sum())
        if n_missing:
            raise IngestionError(f"Target column '{target_col}' has {n_missing} missing labels")

        labels = list(pd.unique(target))
        if len(labels) > 2:
            raise IngestionError(
                f"Target column '{target_col}' is not binary: {len(labels)} distinct labels"
            )

        df = df.copy()
        if all(label in (0, 1) for label in labels):
            df[target_col] = target.astype(int)
            return df

        if self.positive_label is not None:
            positives = [label for label in labels if label == self.positive_label]
        else:
            positives = [label for label in labels if str(label).strip().lower() in POSITIVE_ALIASES]

        if len(labels) == 2 and len(positives) != 1:
            raise IngestionError(
                f"Cannot tell the positive class among labels {labels}; set data.positive_label"
            )

        positive = positives[0] if positives else object()
        df[target_col] = (target == positive).astype(int)
        self.log.debug(f"Encoded target labels {labels} with positive={positives}")
        return df

    def stratified_split(
        self,
        df: pd.DataFrame,
        split_ratio: float,
        stratify_on: str,
        random_state: Optional[int] = None,
    ) -> Split:
        """
        Split each stratum independently, then shuffle the concatenation.

        Args:
            df: Input DataFrame with a unique index
            split_ratio: Share of every stratum assigned to train
            stratify_on: Column whose values define the strata
            random_state: Seed for both shuffles

        Returns:
            Split with disjoint train and test frames
        """
        seed = self.random_state if random_state is None else random_state
        rng = np.random.default_rng(seed)

        train_parts, test_parts = [], []
        for _, group in df.groupby(stratify_on, sort=True, dropna=False):
            idx = rng.permutation(group.index.to_numpy())
            n_train = int(round(len(idx) * split_ratio))
            train_parts.append(idx[:n_train])
            test_parts.append(idx[n_train:])

        train_idx = rng.permutation(np.concatenate(train_parts))
        test_idx = rng.permutation(np.concatenate(test_parts))

        if len(train_idx) == 0 or len(test_idx) == 0:
            raise IngestionError(
                f"Split ratio {split_ratio} leaves an empty partition for {len(df)} records"
            )

        return Split(train=df.loc[train_idx], test=df.loc[test_idx])

    def ingest(
        self,
        source: Union[str, Path, pd.DataFrame, None] = None,
        split_ratio: Optional[float] = None,
        stratify_on: Optional[str] = None,
        target_col: Optional[str] = None,
    ) -> Split:
        """
        Load, encode and split the raw dataset.

        Args:
            source: Raw data location or frame (defaults to ``data.source``)
            split_ratio: Train share in (0, 1) (defaults to ``data.split_ratio``)
            stratify_on: Stratification column (defaults to the target)
            target_col: Target column (defaults to ``data.target_column``)

        Returns:
            Stratified Split
        """
        data_config = self.config.data if self.config is not None else None

        if source is None:
            if data_config is None:
                raise IngestionError("No data source given")
            source = data_config.source
        if split_ratio is None:
            split_ratio = data_config.split_ratio if data_config else 0.8
        target_col = target_col or self.target_column
        if target_col is None:
            raise IngestionError("No target column given")
        stratify_on = stratify_on or (data_config.stratify_on if data_config else None) or target_col

        if not 0.0 < split_ratio < 1.0:
            raise IngestionError(f"split_ratio must be within (0, 1), got {split_ratio}")

        df = self.load_raw_data(source)
        df = self.encode_target(df, target_col)

        if stratify_on not in df.columns:
            raise IngestionError(f"Stratification column '{stratify_on}' not found in source")

        split = self.stratified_split(df, split_ratio, stratify_on)

        self.log.info(
            f"Train set: {len(split.train)} samples "
            f"(positive rate {class_ratio(split.train, target_col):.3f})"
        )
        self.log.info(
            f"Test set: {len(split.test)} samples "
            f"(positive rate {class_ratio(split.test, target_col):.3f})"
        )
        return split


def class_ratio(df: pd.DataFrame, target_col: str) -> float:
    """Share of positive labels in ``df``."""
    if len(df) == 0:
        return float("nan")
    return float(df[target_col].mean())
