# test_data_prep.py
"""Tests for CSV loading, the preprocessor, stratified split and tensorizer."""

import dataclasses
import math
from collections import Counter

import numpy as np
import pandas as pd
import pytest

from conftest import HEADER, make_rows
from titanic_workbench.config import WorkbenchConfig
from titanic_workbench.data_prep import (
    build_preprocessor,
    load_rows,
    normalize_row,
    read_rows,
    rough_missing_pct,
    stratified_split,
    tensorize,
    write_prediction_csv,
)
from titanic_workbench.errors import EmptyInputError, InputMissingError, ParseFailure
from titanic_workbench.repair import OVERFLOW_KEY


# ============================================================================
# LOADING
# ============================================================================

def test_read_rows_types_numbers_and_collects_overflow(train_csv):
    rows = read_rows(train_csv)

    assert len(rows) == 81
    assert rows[0]["PassengerId"] == 1
    assert isinstance(rows[0]["Fare"], float)
    broken = rows[-1]
    assert broken["Age"] == "male"
    assert broken[OVERFLOW_KEY] == ["S"]


def test_read_rows_skips_all_empty_lines(tmp_path):
    path = tmp_path / "t.csv"
    path.write_text("PassengerId,Sex\n1,male\n,\n\n2,female\n")
    assert [r["PassengerId"] for r in read_rows(str(path))] == [1, 2]


def test_read_rows_missing_inputs(tmp_path):
    with pytest.raises(InputMissingError):
        read_rows(None)
    with pytest.raises(InputMissingError):
        read_rows(str(tmp_path / "nope.csv"))


def test_read_rows_empty_file(tmp_path):
    path = tmp_path / "empty.csv"
    path.write_text("")
    with pytest.raises(ParseFailure):
        read_rows(str(path))


def test_normalize_row():
    row = normalize_row({"A": "", "B": "  x ", "C": "   ", "D": 3, "E": None})
    assert row == {"A": None, "B": "x", "C": None, "D": 3, "E": None}


def test_load_rows_repairs_broken_line(train_csv):
    rows = load_rows(train_csv)
    fixed = [r for r in rows if r["PassengerId"] == 999][0]

    assert fixed["Name"] == "Allen, Mr. William Henry"
    assert fixed["Sex"] == "male"
    assert fixed["Age"] == 35
    assert fixed["Ticket"] == "373450"
    assert fixed["Fare"] == 8.05
    assert fixed["Embarked"] == "S"
    assert all(OVERFLOW_KEY not in r for r in rows)


def test_rough_missing_pct():
    rows = [{"a": 1, "b": None}, {"a": None, "b": None}]
    assert rough_missing_pct(rows) == 75.0
    assert rough_missing_pct([]) == 100.0


# ============================================================================
# PREPROCESSOR
# ============================================================================

def small_train():
    return [
        {"Age": 20, "Fare": 10, "Sex": "male", "Pclass": 3, "Embarked": "S", "SibSp": 0, "Parch": 0},
        {"Age": 30, "Fare": None, "Sex": "female", "Pclass": 1, "Embarked": "C", "SibSp": 1, "Parch": 0},
        {"Age": None, "Fare": 30, "Sex": "female", "Pclass": 2, "Embarked": "C", "SibSp": 0, "Parch": 2},
        {"Age": 40, "Fare": 20, "Sex": "male", "Pclass": 3, "Embarked": None, "SibSp": 0, "Parch": 0},
    ]


def test_build_preprocessor_statistics():
    pre = build_preprocessor(small_train(), WorkbenchConfig())

    assert pre.age_median == 30
    assert pre.embarked_mode == "C"
    assert pre.age_mean == pytest.approx(30.0)
    assert pre.age_std == pytest.approx(math.sqrt(200 / 3))
    assert pre.fare_mean == pytest.approx(15.0)
    assert pre.fare_std == pytest.approx(math.sqrt(500 / 3))
    assert pre.feat_len == 13


def test_map_row_layout():
    pre = build_preprocessor(small_train(), WorkbenchConfig())
    row = {"Age": 40, "Fare": 30, "Sex": "male", "Pclass": 1, "Embarked": "Q", "SibSp": 1, "Parch": 1}

    vec = pre.map_row(row)

    assert vec[0] == pytest.approx(10 / math.sqrt(200 / 3))
    assert vec[1] == pytest.approx(15 / math.sqrt(500 / 3))
    assert list(vec[2:]) == [0, 1, 1, 0, 0, 0, 1, 0, 0, 3, 0]
    assert pre.feature_names()[-2:] == ["FamilySize", "IsAlone"]


def test_map_row_missing_port_uses_unknown_bucket_and_alone():
    pre = build_preprocessor(small_train(), WorkbenchConfig())
    vec = pre.map_row({"Sex": "female", "Pclass": "2"})

    assert list(vec[2:4]) == [1, 0]
    assert list(vec[4:7]) == [0, 1, 0]
    assert list(vec[7:11]) == [0, 0, 0, 1]
    assert list(vec[11:]) == [1, 1]


def test_map_row_unmatched_categories_are_all_zero():
    pre = build_preprocessor(small_train(), WorkbenchConfig())
    vec = pre.map_row({"Sex": "Male", "Pclass": 7, "Embarked": "X"})
    assert not vec[2:11].any()


def test_map_row_all_null_row_is_finite():
    pre = build_preprocessor(small_train(), WorkbenchConfig())
    vec = pre.map_row({k: None for k in HEADER})
    assert vec.shape == (pre.feat_len,)
    assert np.all(np.isfinite(vec))
    assert pre.map_row({}).shape == (pre.feat_len,)


def test_toggles_change_width():
    pre = build_preprocessor(small_train(), WorkbenchConfig(use_family=False, use_alone=False))
    assert pre.feat_len == 11
    assert pre.map_row(small_train()[0]).shape == (11,)
    pre = build_preprocessor(small_train(), WorkbenchConfig(use_family=True, use_alone=False))
    assert pre.feature_names()[-1] == "FamilySize"


def test_fallbacks_without_ages_or_ports():
    rows = [{"Age": None, "Fare": 5, "Embarked": None}, {"Age": "?", "Fare": 5}]
    pre = build_preprocessor(rows, WorkbenchConfig())
    assert pre.age_median == 30
    assert pre.embarked_mode == "S"
    assert pre.age_std == 0
    assert pre.map_row({"Age": 99})[0] == 0.0


def test_build_preprocessor_on_empty_rows():
    pre = build_preprocessor([], WorkbenchConfig())
    assert pre.feat_len == 13
    assert np.all(np.isfinite(pre.map_row({"Age": 5, "Fare": 1})))


def test_preprocessor_is_immutable_and_unaffected_by_mapping():
    pre = build_preprocessor(small_train(), WorkbenchConfig())
    before = dataclasses.asdict(pre)
    pre.transform([{"Age": 1000, "Fare": 1e6, "Embarked": "Q"}])
    assert dataclasses.asdict(pre) == before
    with pytest.raises(dataclasses.FrozenInstanceError):
        pre.age_mean = 0.0


# ============================================================================
# STRATIFIED SPLIT
# ============================================================================

def test_stratified_split_sizes_and_partition():
    rows = make_rows(80)
    counts = Counter(r["Survived"] for r in rows)

    train, val = stratified_split(rows, 0.2, random_state=3)

    val_counts = Counter(r["Survived"] for r in val)
    for label, n in counts.items():
        assert val_counts[label] == max(1, math.floor(n * 0.2))
    ids_train = {r["PassengerId"] for r in train}
    ids_val = {r["PassengerId"] for r in val}
    assert not ids_train & ids_val
    assert ids_train | ids_val == {r["PassengerId"] for r in rows}


def test_stratified_split_keeps_rare_class_in_validation():
    rows = [{"PassengerId": i, "Survived": 0} for i in range(10)] + [{"PassengerId": 10, "Survived": 1}]
    train, val = stratified_split(rows, 0.2, random_state=0)

    assert sum(r["Survived"] for r in val) == 1
    assert len(val) == 3
    assert len(train) == 8


def test_stratified_split_single_class_and_unlabeled_rows():
    rows = [{"PassengerId": i, "Survived": 1} for i in range(5)] + [{"PassengerId": 9, "Survived": None}]
    train, val = stratified_split(rows, 0.2, random_state=0)
    assert len(val) == 1
    assert len(train) == 4


def test_stratified_split_is_reproducible_with_seed():
    rows = make_rows(40)
    a = stratified_split(rows, 0.25, random_state=5)
    b = stratified_split(rows, 0.25, random_state=5)
    assert [r["PassengerId"] for r in a[1]] == [r["PassengerId"] for r in b[1]]


# ============================================================================
# TENSORIZER
# ============================================================================

def test_tensorize_shapes_and_alignment():
    rows = small_train()
    for i, r in enumerate(rows):
        r["Survived"] = i % 2
    pre = build_preprocessor(rows, WorkbenchConfig())

    X, y, n_feat = tensorize(rows, pre)

    assert X.shape == (4, 13)
    assert n_feat == 13
    assert y.shape == (4, 1)
    assert list(y.ravel()) == [0, 1, 0, 1]
    np.testing.assert_allclose(X[1], pre.map_row(rows[1]))


def test_tensorize_unlabeled_rows_have_no_y():
    pre = build_preprocessor(small_train(), WorkbenchConfig())
    result = tensorize(small_train(), pre)
    assert result.y is None


def test_tensorize_empty_input():
    pre = build_preprocessor(small_train(), WorkbenchConfig())
    with pytest.raises(EmptyInputError):
        tensorize([], pre)


def test_tensorize_partial_labels():
    pre = build_preprocessor(small_train(), WorkbenchConfig())
    rows = small_train()
    rows[0]["Survived"] = 1
    with pytest.raises(ParseFailure):
        tensorize(rows, pre)


# ============================================================================
# OUTPUT
# ============================================================================

def test_write_prediction_csv_quotes_special_fields(tmp_path):
    path = str(tmp_path / "out" / "sub.csv")
    write_prediction_csv(path, [892, 'a,"b"'], [1, 0], "Survived")

    with open(path) as fh:
        text = fh.read()
    assert text.splitlines() == ["PassengerId,Survived", "892,1", '"a,""b""",0']
    assert list(pd.read_csv(path)["Survived"]) == [1, 0]
