# titanic_workbench/data_prep.py
"""
Data Preprocessing Module for the Titanic Survival Workbench.

This module handles every step between a CSV file on disk and the numeric
matrices consumed by the trainer:
- Lenient CSV parsing (extra tokens kept in an overflow collection)
- Row normalization (blank cells -> None, strings trimmed, numbers typed)
- Preprocessor fitting (imputation values, z-score statistics, fixed one-hot
  vocabularies, derived-feature toggles)
- Stratified train/validation splitting
- Tensorizing rows into a feature matrix and label column
- Prediction CSV output

The preprocessor is fitted ONCE on the full training set before any split and
then reused unchanged for training, validation and test rows, so no statistic
is ever recomputed from held-out data.

Usage Example:
    from titanic_workbench.config import WorkbenchConfig
    from titanic_workbench.data_prep import (
        load_rows,
        build_preprocessor,
        stratified_split,
        tensorize,
    )

    rows = load_rows("data/train.csv")
    pre = build_preprocessor(rows, WorkbenchConfig())
    train_rows, val_rows = stratified_split(rows, ratio=0.2, random_state=42)
    X_train, y_train, n_feat = tensorize(train_rows, pre)
"""

# Standard library imports
import csv
import logging
import math
import os
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

# Third-party imports
import numpy as np
import pandas as pd

# Local imports
from titanic_workbench.config import WorkbenchConfig
from titanic_workbench.errors import (
    EmptyInputError,
    InputMissingError,
    ParseFailure,
)
from titanic_workbench.repair import OVERFLOW_KEY, num_or_none, repair_rows

logger = logging.getLogger(__name__)


# ============================================================================
# FEATURE CONFIGURATION
# ============================================================================
# Column roles in the Kaggle Titanic files. The vocabularies are fixed so the
# feature vector has the same width for every file.

def get_feature_lists() -> Dict[str, Any]:
    """
    Define and return the column roles of the Titanic dataset.

    Returns:
        Dict containing:
            - "numeric": Columns imputed and z-scored (Age, Fare)
            - "count": Family-count columns used by derived features
            - "categorical": One-hot encoded columns (Sex, Pclass, Embarked)
            - "id_column": Passenger identifier (kept for prediction output)
            - "target": Label column (Survived, absent from test files)
    """
    return {
        "numeric": ["Age", "Fare"],
        "count": ["SibSp", "Parch"],
        "categorical": ["Sex", "Pclass", "Embarked"],
        "id_column": "PassengerId",
        "target": "Survived",
    }


SEX_CATEGORIES: Tuple[str, ...] = ("female", "male")
PCLASS_CATEGORIES: Tuple[int, ...] = (1, 2, 3)
EMBARKED_CATEGORIES: Tuple[str, ...] = ("C", "Q", "S", "UNKNOWN")

DEFAULT_AGE = 30.0
DEFAULT_EMBARKED = "S"


# ============================================================================
# CSV LOADING AND ROW NORMALIZATION
# ============================================================================
# The reader is deliberately lenient: ragged rows never fail the parse. Tokens
# beyond the header width go into OVERFLOW_KEY so the repair step can use them.

_NUMBER_RE = re.compile(r"^\s*-?(\d+\.?|\.\d+|\d+\.\d+)([eE][-+]?\d+)?\s*$")
_INT_RE = re.compile(r"^\s*-?\d+\s*$")


def _coerce_cell(value: Any) -> Any:
    """Type numeric-looking text as int/float; leave everything else alone."""
    if not isinstance(value, str) or not _NUMBER_RE.match(value):
        return value
    if _INT_RE.match(value):
        return int(value)
    x = float(value)
    return x if math.isfinite(x) else value


def read_rows(path: Optional[str]) -> List[Dict[str, Any]]:
    """
    Parse a comma-delimited, double-quote-quoted CSV file with a header row.

    Blank lines and lines whose every cell is empty are skipped. Missing
    trailing cells become None; surplus cells are collected under
    OVERFLOW_KEY as a list of strings.

    Raises:
        InputMissingError: If path is empty or the file does not exist
        ParseFailure: If the file cannot be decoded or parsed
    """
    if not path:
        raise InputMissingError("No CSV file selected")
    if not os.path.exists(path):
        raise InputMissingError(f"CSV file not found: {path}")

    rows: List[Dict[str, Any]] = []
    try:
        with open(path, "r", newline="", encoding="utf-8-sig") as fh:
            reader = csv.DictReader(
                fh, delimiter=",", quotechar='"', restkey=OVERFLOW_KEY, restval=None
            )
            if reader.fieldnames is None:
                raise ParseFailure(f"{path} is empty (no header row)")
            for raw in reader:
                cells = [v for k, v in raw.items() if k != OVERFLOW_KEY]
                extra = raw.get(OVERFLOW_KEY) or []
                if all(v is None or not v.strip() for v in cells) and not any(
                    e.strip() for e in extra
                ):
                    continue
                row = {k: _coerce_cell(v) for k, v in raw.items() if k != OVERFLOW_KEY}
                if extra:
                    row[OVERFLOW_KEY] = [e.strip() for e in extra]
                rows.append(row)
    except (csv.Error, UnicodeDecodeError) as e:
        raise ParseFailure(f"Failed to parse {path}: {e}") from e

    logger.info(f"Parsed {len(rows)} rows from {path}")
    return rows


def normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Collapse blank cells to None and trim strings.

    Example:
        >>> normalize_row({"Cabin": "", "Name": "  Allen  ", "Age": 29})
        {'Cabin': None, 'Name': 'Allen', 'Age': 29}
    """
    out: Dict[str, Any] = {}
    for k, v in row.items():
        if isinstance(v, str):
            t = v.strip()
            out[k] = t if t else None
        else:
            out[k] = v
    return out


def load_rows(path: Optional[str]) -> List[Dict[str, Any]]:
    """Read, normalize and repair a Titanic CSV file."""
    return repair_rows([normalize_row(r) for r in read_rows(path)])


def rough_missing_pct(rows: List[Dict[str, Any]]) -> float:
    """Percentage of empty cells over the columns of the first row (100 if no rows)."""
    if not rows:
        return 100.0
    cols = list(rows[0].keys())
    df = pd.DataFrame(rows).reindex(columns=cols)
    return round(100.0 * float(df.isna().to_numpy().mean()), 1)


# ============================================================================
# STATISTICS HELPERS
# ============================================================================

def _median(values: Sequence[Any]) -> Optional[float]:
    nums = [x for x in (num_or_none(v) for v in values) if x is not None]
    if not nums:
        return None
    return float(np.median(nums))


def _mode(values: Sequence[Any]) -> Any:
    """Most frequent non-empty value; the first value to reach the top count wins."""
    counts: Dict[Any, int] = {}
    best, best_count = None, 0
    for v in values:
        if v is None or v == "":
            continue
        c = counts.get(v, 0) + 1
        counts[v] = c
        if c > best_count:
            best, best_count = v, c
    return best


def _mean(values: np.ndarray) -> float:
    finite = values[np.isfinite(values)]
    return float(finite.mean()) if finite.size else 0.0


def _sample_std(values: np.ndarray) -> float:
    finite = values[np.isfinite(values)]
    if finite.size < 2:
        return 0.0
    return float(finite.std(ddof=1))


def _one_hot(value: Any, categories: Sequence[Any]) -> List[float]:
    vec = [0.0] * len(categories)
    for i, cat in enumerate(categories):
        if value is not None and value == cat:
            vec[i] = 1.0
            break
    return vec


# ============================================================================
# PREPROCESSOR
# ============================================================================

@dataclass(frozen=True)
class Preprocessor:
    """
    Fitted, immutable row -> feature-vector mapping.

    Feature layout:
        [Age_z, Fare_z, Sex(2), Pclass(3), Embarked(4), FamilySize?, IsAlone?]

    Attributes:
        age_median: Imputation value for missing ages
        embarked_mode: Most frequent training port (reported; a missing port
            is encoded in the explicit UNKNOWN bucket)
        sex_categories / pclass_categories / embarked_categories: Fixed vocabularies
        age_mean, age_std, fare_mean, fare_std: z-score parameters after imputation
        use_family, use_alone: Derived-feature toggles
        feat_len: Fixed vector width
    """
    age_median: float
    embarked_mode: Any
    sex_categories: Tuple[str, ...]
    pclass_categories: Tuple[int, ...]
    embarked_categories: Tuple[str, ...]
    age_mean: float
    age_std: float
    fare_mean: float
    fare_std: float
    use_family: bool
    use_alone: bool
    feat_len: int = 0

    def _base(self, row: Dict[str, Any]) -> List[float]:
        age = num_or_none(row.get("Age"))
        if age is None:
            age = self.age_median
        fare = num_or_none(row.get("Fare"))
        if fare is None:
            fare = 0.0
        embarked = row.get("Embarked")
        if embarked is None or embarked == "":
            embarked = "UNKNOWN"

        family = (num_or_none(row.get("SibSp")) or 0.0) + (num_or_none(row.get("Parch")) or 0.0) + 1
        alone = 1.0 if family == 1 else 0.0

        age_z = (age - self.age_mean) / self.age_std if self.age_std else 0.0
        fare_z = (fare - self.fare_mean) / self.fare_std if self.fare_std else 0.0

        features = [age_z, fare_z]
        features += _one_hot(row.get("Sex"), self.sex_categories)
        features += _one_hot(num_or_none(row.get("Pclass")), self.pclass_categories)
        features += _one_hot(embarked, self.embarked_categories)
        if self.use_family:
            features.append(family)
        if self.use_alone:
            features.append(alone)

        return [x if math.isfinite(x) else 0.0 for x in (float(f) for f in features)]

    def map_row(self, row: Dict[str, Any]) -> np.ndarray:
        """Map one row to a vector of exactly feat_len finite floats."""
        vec = self._base(row)
        if len(vec) < self.feat_len:
            vec += [0.0] * (self.feat_len - len(vec))
        elif len(vec) > self.feat_len:
            vec = vec[: self.feat_len]
        return np.asarray(vec, dtype=np.float64)

    def transform(self, rows: List[Dict[str, Any]]) -> np.ndarray:
        """Map every row; returns an array of shape (len(rows), feat_len)."""
        if not rows:
            return np.zeros((0, self.feat_len), dtype=np.float64)
        return np.vstack([self.map_row(r) for r in rows])

    def feature_names(self) -> List[str]:
        names = ["Age_z", "Fare_z"]
        names += [f"Sex_{c}" for c in self.sex_categories]
        names += [f"Pclass_{c}" for c in self.pclass_categories]
        names += [f"Embarked_{c}" for c in self.embarked_categories]
        if self.use_family:
            names.append("FamilySize")
        if self.use_alone:
            names.append("IsAlone")
        return names

    def describe(self) -> str:
        return "\n".join([
            f"Features: {self.feat_len}",
            f"Impute Age median={self.age_median:g} | Embarked mode={self.embarked_mode}",
            f"Age mean={self.age_mean:.4f} std={self.age_std:.4f} | "
            f"Fare mean={self.fare_mean:.4f} std={self.fare_std:.4f}",
            f"One-hot: Sex, Pclass, Embarked | Engineered: "
            f"FamilySize={self.use_family}, IsAlone={self.use_alone}",
        ])


def build_preprocessor(
    train_rows: List[Dict[str, Any]], config: Optional[WorkbenchConfig] = None
) -> Preprocessor:
    """
    Fit a Preprocessor on the full training set.

    Fitting steps:
        1. Age median over numeric training ages (fallback 30)
        2. Embarked mode over non-empty training ports (fallback "S")
        3. Impute Age (median) and Fare (0) for every training row
        4. Mean and sample std (n-1) of the imputed Age and Fare arrays
        5. Derived-feature toggles from config
        6. Fix feat_len from a probe row

    Args:
        train_rows: Normalized, repaired training rows
        config: Workbench settings (defaults used when None)

    Returns:
        Preprocessor: Immutable fitted mapping
    """
    config = config or WorkbenchConfig()

    age_median = _median([r.get("Age") for r in train_rows])
    if age_median is None or not math.isfinite(age_median):
        age_median = DEFAULT_AGE
    embarked_mode = _mode([r.get("Embarked") for r in train_rows])
    if embarked_mode is None:
        embarked_mode = DEFAULT_EMBARKED

    ages, fares = [], []
    for r in train_rows:
        age = num_or_none(r.get("Age"))
        fare = num_or_none(r.get("Fare"))
        ages.append(age if age is not None else age_median)
        fares.append(fare if fare is not None else 0.0)
    age_arr = np.asarray(ages, dtype=np.float64)
    fare_arr = np.asarray(fares, dtype=np.float64)

    pre = Preprocessor(
        age_median=float(age_median),
        embarked_mode=embarked_mode,
        sex_categories=SEX_CATEGORIES,
        pclass_categories=PCLASS_CATEGORIES,
        embarked_categories=EMBARKED_CATEGORIES,
        age_mean=_mean(age_arr),
        age_std=_sample_std(age_arr),
        fare_mean=_mean(fare_arr),
        fare_std=_sample_std(fare_arr),
        use_family=config.use_family,
        use_alone=config.use_alone,
    )
    probe = train_rows[0] if train_rows else {}
    pre = replace(pre, feat_len=len(pre._base(probe)))

    logger.info(
        f"Fitted preprocessor on {len(train_rows)} rows: {pre.feat_len} features, "
        f"age median={pre.age_median:g}, embarked mode={pre.embarked_mode}"
    )
    return pre


# ============================================================================
# STRATIFIED SPLIT
# ============================================================================

def stratified_split(
    rows: List[Dict[str, Any]],
    ratio: float = 0.2,
    random_state: Union[int, np.random.Generator, None] = None,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Split labeled rows into train/validation while preserving class balance.

    For each class (Survived == 0, Survived == 1) independently the rows are
    shuffled and the first max(1, floor(n * ratio)) go to validation. Both
    outputs are shuffled again before returning. Rows without a 0/1 label are
    left out. A naive random split can starve the rare class of validation
    rows; this one keeps at least one of each class that exists.

    Args:
        rows: Labeled rows
        ratio: Validation share per class
        random_state: Seed or numpy Generator

    Returns:
        Tuple of (train_rows, val_rows)
    """
    rng = np.random.default_rng(random_state)
    target = get_feature_lists()["target"]

    groups: Dict[int, List[Dict[str, Any]]] = {0: [], 1: []}
    for r in rows:
        label = num_or_none(r.get(target))
        if label == 0:
            groups[0].append(r)
        elif label == 1:
            groups[1].append(r)

    train: List[Dict[str, Any]] = []
    val: List[Dict[str, Any]] = []
    for label in (0, 1):
        group = groups[label]
        if not group:
            continue
        shuffled = [group[i] for i in rng.permutation(len(group))]
        n_val = max(1, int(math.floor(len(group) * ratio)))
        val.extend(shuffled[:n_val])
        train.extend(shuffled[n_val:])

    train = [train[i] for i in rng.permutation(len(train))]
    val = [val[i] for i in rng.permutation(len(val))]

    logger.info(
        f"Stratified split: train={len(train)} val={len(val)} "
        f"(class 0: {len(groups[0])}, class 1: {len(groups[1])})"
    )
    return train, val


# ============================================================================
# TENSORIZER
# ============================================================================

class TensorizedRows(NamedTuple):
    X: np.ndarray
    y: Optional[np.ndarray]
    feat_len: int


def tensorize(rows: List[Dict[str, Any]], pre: Preprocessor) -> TensorizedRows:
    """
    Convert rows to a (n, feat_len) feature matrix and an aligned (n, 1) label column.

    Rows whose vector has a non-finite entry are dropped; labels are taken in
    the same pass so X and y stay row-aligned.

    Raises:
        EmptyInputError: If no row survives filtering
        ParseFailure: If only some of the kept rows carry a label
    """
    target = get_feature_lists()["target"]
    xs: List[np.ndarray] = []
    ys: List[float] = []

    for r in rows:
        vec = pre.map_row(r)
        if not np.all(np.isfinite(vec)):
            continue
        xs.append(vec)
        if target in r:
            ys.append(num_or_none(r[target]) or 0.0)

    if not xs:
        raise EmptyInputError("No valid rows after preprocessing.")
    if ys and len(ys) != len(xs):
        raise ParseFailure(
            f"Label column '{target}' present on {len(ys)} of {len(xs)} rows"
        )

    X = np.vstack(xs).reshape(len(xs), pre.feat_len)
    y = np.asarray(ys, dtype=np.float64).reshape(-1, 1) if ys else None
    return TensorizedRows(X, y, pre.feat_len)


# ---------------------------
# Prediction output
# ---------------------------

def write_prediction_csv(
    path: str, ids: Sequence[Any], values: Sequence[Any], column: str
) -> str:
    """
    Write a two-column CSV (PassengerId, <column>).

    Fields containing a comma, quote or newline are quoted with internal
    quotes doubled (pandas QUOTE_MINIMAL).
    """
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    id_col = get_feature_lists()["id_column"]
    df = pd.DataFrame({id_col: pd.Series(list(ids), dtype=object), column: list(values)})
    df.to_csv(path, index=False, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    logger.info(f"Wrote {len(df)} rows to {path}")
    return path
