# titanic_workbench/evaluate.py
"""
Metrics Engine for the Titanic Survival Workbench.

Threshold-dependent evaluation of a probability vector against ground-truth
labels. Everything here is exact and deterministic so the numbers shown while
moving the decision threshold are reproducible.

Key Metrics Computed:
    - ROC curve on a uniform threshold grid (steps + 1 thresholds in [0, 1])
    - AUC: trapezoidal integral of TPR over FPR along the sorted curve
    - Confusion matrix (TP, FP, TN, FN) at a caller-chosen threshold
    - Precision, Recall, F1 at that threshold
    - F1-optimal threshold suggestion (precision-recall curve)

Decision Rule:
    prediction = 1 if probability >= threshold, else 0
    A probability exactly at the threshold counts as positive.

Division Rule:
    Every ratio uses a denominator of 1 when its natural denominator is 0, so
    degenerate inputs give a rate of 0 rather than NaN.

Example:
    >>> from titanic_workbench.evaluate import confusion_stats, roc_points
    >>> stats = confusion_stats([1, 0, 1, 0], [0.9, 0.2, 0.4, 0.6], 0.5)
    >>> stats.tp, stats.fp, stats.tn, stats.fn
    (1, 1, 1, 1)
    >>> roc_points([0, 1], [0.1, 0.9], steps=10).auc
    1.0
"""

# Standard library imports
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, NamedTuple, Sequence, Tuple

# Third-party imports
import numpy as np

# Scikit-learn imports
from sklearn.metrics import log_loss, precision_recall_curve, roc_auc_score

logger = logging.getLogger(__name__)


# ============================================================================
# RESULT TYPES
# ============================================================================

class RocPoint(NamedTuple):
    fpr: float
    tpr: float
    threshold: float


class RocCurve(NamedTuple):
    points: List[RocPoint]
    auc: float


@dataclass(frozen=True)
class ConfusionStats:
    """
    Confusion matrix and derived ratios at one threshold.

    Attributes:
        tp, fp, tn, fn: Counts (always sum to the number of samples)
        precision: TP / (TP + FP), denominator floored at 1
        recall: TP / (TP + FN), denominator floored at 1
        f1: 2PR / (P + R), denominator floored at 1
    """
    tp: int
    fp: int
    tn: int
    fn: int
    precision: float
    recall: float
    f1: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# CONFUSION COUNTS
# ============================================================================

def _as_arrays(y_true: Sequence[float], y_prob: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    yt = np.asarray(y_true, dtype=np.float64).ravel()
    yp = np.asarray(y_prob, dtype=np.float64).ravel()
    if yt.shape != yp.shape:
        raise ValueError(f"y_true and y_prob lengths differ: {yt.size} != {yp.size}")
    return yt, yp


def _counts(yt: np.ndarray, predicted: np.ndarray) -> Tuple[np.ndarray, ...]:
    """
    Count TP/FP/TN/FN along the last axis of a boolean prediction array.

    Labels other than exactly 0 or 1 fall into FN, so the four counts always
    add up to the sample count.
    """
    pos = yt == 1
    neg = yt == 0
    tp = np.sum(pos & predicted, axis=-1)
    fp = np.sum(neg & predicted, axis=-1)
    tn = np.sum(neg & ~predicted, axis=-1)
    fn = yt.size - tp - fp - tn
    return tp, fp, tn, fn


def _floor1(x):
    return np.where(x == 0, 1, x)


# ============================================================================
# ROC CURVE AND AUC
# ============================================================================

def roc_points(y_true: Sequence[float], y_prob: Sequence[float], steps: int = 200) -> RocCurve:
    """
    Build the ROC curve on a uniform threshold grid and integrate it.

    For thresholds i / steps (i = 0..steps) the confusion matrix is computed
    and mapped to (FPR, TPR). Points are sorted by FPR ascending (TPR ascending
    among equal FPR) and the AUC is the trapezoidal rule along that order.

    Interpretation:
        - AUC = 1.0: Perfect separation
        - AUC = 0.5: Random guessing

    Args:
        y_true: Binary labels (0 or 1)
        y_prob: Predicted probabilities of the positive class
        steps: Grid resolution (steps + 1 thresholds)

    Returns:
        RocCurve: points sorted by FPR, and auc
    """
    if steps < 1:
        raise ValueError("steps must be >= 1")
    yt, yp = _as_arrays(y_true, y_prob)

    thresholds = np.arange(steps + 1, dtype=np.float64) / steps
    predicted = yp[np.newaxis, :] >= thresholds[:, np.newaxis]
    tp, fp, tn, fn = _counts(yt, predicted)

    tpr = tp / _floor1(tp + fn)
    fpr = fp / _floor1(fp + tn)

    # ties on FPR ordered by TPR so the curve is monotone
    order = np.lexsort((tpr, fpr))
    xs, ys, ths = fpr[order], tpr[order], thresholds[order]
    auc = float(np.sum(np.diff(xs) * (ys[1:] + ys[:-1]) / 2.0))

    points = [RocPoint(float(x), float(y), float(t)) for x, y, t in zip(xs, ys, ths)]
    return RocCurve(points, auc)


# ============================================================================
# THRESHOLD METRICS
# ============================================================================

def confusion_stats(y_true: Sequence[float], y_prob: Sequence[float], threshold: float) -> ConfusionStats:
    """
    Confusion matrix, precision, recall and F1 at one threshold.

    Example:
        >>> s = confusion_stats([1, 0, 1, 0], [0.9, 0.2, 0.4, 0.6], 0.5)
        >>> (s.precision, s.recall, s.f1)
        (0.5, 0.5, 0.5)
    """
    yt, yp = _as_arrays(y_true, y_prob)
    tp, fp, tn, fn = (int(c) for c in _counts(yt, yp >= threshold))

    precision = tp / (tp + fp or 1)
    recall = tp / (tp + fn or 1)
    f1 = (2 * precision * recall) / ((precision + recall) or 1)
    return ConfusionStats(tp, fp, tn, fn, float(precision), float(recall), float(f1))


def compute_best_threshold(y_true: Sequence[float], y_prob: Sequence[float]) -> Tuple[float, Dict[str, float]]:
    """
    Find the threshold that maximizes F1 on the given labels.

    Uses scikit-learn's precision-recall curve, which evaluates every distinct
    predicted probability as a candidate cutoff. The result is a suggestion
    for the interactive threshold, not applied automatically.

    Returns:
        Tuple of (best_threshold, {"precision", "recall", "f1"} at that threshold).
        Falls back to 0.5 when the curve has no candidate thresholds.
    """
    yt, yp = _as_arrays(y_true, y_prob)
    precision, recall, thresholds = precision_recall_curve(yt, yp)

    # thresholds has one fewer element than precision/recall
    f1_scores = 2 * (precision[:-1] * recall[:-1]) / (precision[:-1] + recall[:-1] + 1e-12)

    if len(f1_scores) == 0:
        return 0.5, {"precision": 0.0, "recall": 0.0, "f1": 0.0}

    best_idx = int(np.nanargmax(f1_scores))
    return float(thresholds[best_idx]), {
        "precision": float(precision[best_idx]),
        "recall": float(recall[best_idx]),
        "f1": float(f1_scores[best_idx]),
    }


def evaluate_at_threshold(
    y_true: Sequence[float],
    y_prob: Sequence[float],
    threshold: float,
    roc_steps: int = 200,
) -> Dict[str, Any]:
    """
    Full evaluation report for a probability vector at one threshold.

    Returns:
        Dict with keys:
            - 'threshold': Threshold used
            - 'n_samples': Number of samples
            - 'confusion': ConfusionStats as dict (TP, FP, TN, FN, precision, recall, f1)
            - 'confusion_matrix': [[TN, FP], [FN, TP]]
            - 'auc': Grid AUC from roc_points
            - 'roc_auc_exact': scikit-learn rank AUC (None if one class only)
            - 'log_loss': Binary cross-entropy (None if one class only)
            - 'suggested_threshold': F1-optimal threshold and its metrics
    """
    yt, yp = _as_arrays(y_true, y_prob)
    stats = confusion_stats(yt, yp, threshold)
    curve = roc_points(yt, yp, roc_steps)

    both_classes = bool(np.any(yt == 0) and np.any(yt == 1))
    roc_exact = float(roc_auc_score(yt, yp)) if both_classes else None
    ll = float(log_loss(yt, np.clip(yp, 1e-7, 1 - 1e-7), labels=[0, 1])) if both_classes else None

    best_thr, best_metrics = compute_best_threshold(yt, yp) if both_classes else (threshold, {})

    report = {
        "threshold": float(threshold),
        "n_samples": int(yt.size),
        "confusion": stats.to_dict(),
        "confusion_matrix": [[stats.tn, stats.fp], [stats.fn, stats.tp]],
        "auc": curve.auc,
        "roc_auc_exact": roc_exact,
        "log_loss": ll,
        "suggested_threshold": {"threshold": best_thr, **best_metrics},
    }
    logger.info(
        f"Evaluation @ {threshold:.2f}: AUC={curve.auc:.4f} "
        f"P={stats.precision:.4f} R={stats.recall:.4f} F1={stats.f1:.4f}"
    )
    return report
