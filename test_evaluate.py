# test_evaluate.py
"""Tests for ROC/AUC, confusion statistics and threshold reports."""

import numpy as np
import pytest

from titanic_workbench.evaluate import (
    compute_best_threshold,
    confusion_stats,
    evaluate_at_threshold,
    roc_points,
)


def test_confusion_stats_example():
    s = confusion_stats([1, 0, 1, 0], [0.9, 0.2, 0.4, 0.6], 0.5)

    assert (s.tp, s.fp, s.tn, s.fn) == (1, 1, 1, 1)
    assert s.precision == pytest.approx(0.5)
    assert s.recall == pytest.approx(0.5)
    assert s.f1 == pytest.approx(0.5)


def test_confusion_stats_threshold_is_inclusive():
    s = confusion_stats([1, 0], [0.5, 0.49], 0.5)
    assert (s.tp, s.fp, s.tn, s.fn) == (1, 0, 1, 0)


def test_confusion_stats_degenerate_inputs_give_zero_rates():
    s = confusion_stats([0, 0, 0], [0.2, 0.1, 0.3], 0.5)
    assert (s.tp, s.fp, s.tn, s.fn) == (0, 0, 3, 0)
    assert (s.precision, s.recall, s.f1) == (0.0, 0.0, 0.0)

    empty = confusion_stats([], [], 0.5)
    assert (empty.tp, empty.fp, empty.tn, empty.fn) == (0, 0, 0, 0)


def test_counts_always_sum_to_sample_count():
    rng = np.random.default_rng(0)
    y = rng.integers(0, 2, 200)
    y[:5] = 2
    p = rng.random(200)

    for t in (0.0, 0.3, 0.5, 1.0):
        s = confusion_stats(y, p, t)
        assert s.tp + s.fp + s.tn + s.fn == 200


def test_confusion_stats_length_mismatch():
    with pytest.raises(ValueError):
        confusion_stats([1, 0], [0.5], 0.5)


def test_roc_points_grid_and_order():
    y = [0, 1, 1, 0, 1]
    p = [0.2, 0.7, 0.4, 0.55, 0.9]

    curve = roc_points(y, p, steps=20)

    assert len(curve.points) == 21
    xs = [pt.fpr for pt in curve.points]
    assert xs == sorted(xs)
    assert curve.points[0][:2] == (0.0, 0.0)
    assert curve.points[-1][:2] == (1.0, 1.0)
    assert 0.0 <= curve.auc <= 1.0


def test_roc_extreme_thresholds():
    curve = roc_points([0, 1, 0, 1], [0.1, 0.6, 0.3, 0.8], steps=4)
    by_threshold = {pt.threshold: (pt.fpr, pt.tpr) for pt in curve.points}
    assert by_threshold[0.0] == (1.0, 1.0)
    assert by_threshold[1.0] == (0.0, 0.0)


def test_roc_perfect_separator_auc_is_one():
    assert roc_points([0, 1], [0.1, 0.9], steps=10).auc == pytest.approx(1.0)
    assert roc_points([0, 0, 1, 1], [0.05, 0.3, 0.7, 0.95]).auc == pytest.approx(1.0)


def test_roc_random_scores_auc_near_half():
    rng = np.random.default_rng(123)
    y = rng.integers(0, 2, 20000)
    p = rng.random(20000)
    assert roc_points(y, p, steps=200).auc == pytest.approx(0.5, abs=0.03)


def test_roc_invalid_steps():
    with pytest.raises(ValueError):
        roc_points([0, 1], [0.2, 0.8], steps=0)


def test_compute_best_threshold():
    thr, metrics = compute_best_threshold([0, 0, 1, 1, 1], [0.1, 0.4, 0.35, 0.8, 0.9])
    assert thr == pytest.approx(0.35)
    assert metrics["f1"] == pytest.approx(6 / 7, abs=1e-6)
    assert metrics["recall"] == pytest.approx(1.0)


def test_evaluate_at_threshold_report():
    report = evaluate_at_threshold([1, 0, 1, 0], [0.9, 0.2, 0.4, 0.6], 0.5, roc_steps=50)

    assert report["n_samples"] == 4
    assert report["confusion"]["tp"] == 1
    assert report["confusion_matrix"] == [[1, 1], [1, 1]]
    assert report["roc_auc_exact"] == pytest.approx(0.75)
    assert report["log_loss"] > 0
    assert "threshold" in report["suggested_threshold"]


def test_evaluate_at_threshold_single_class():
    report = evaluate_at_threshold([1, 1, 1], [0.2, 0.6, 0.9], 0.5)

    assert report["roc_auc_exact"] is None
    assert report["log_loss"] is None
    assert report["suggested_threshold"] == {"threshold": 0.5}
    assert report["confusion"]["fn"] == 1
