# titanic_workbench/train.py
"""
Model Training for the Titanic Survival Workbench.

The classifier is a small feed-forward network: one dense hidden layer of
ReLU units feeding a single sigmoid output, trained with Adam on binary
cross-entropy. It is scikit-learn's MLPClassifier driven one mini-batch at a
time through partial_fit, which lets the loop expose per-batch and per-epoch
hooks.

Training is modelled as a stream of per-epoch metric records:

    iter_epochs(...)  ->  EpochRecord, EpochRecord, ...
                                 |
                                 v
    EarlyStopController.observe(record, model)  ->  StopDecision

The controller snapshots the best weights on the monitored metric, restores
them when patience runs out, and honours an external cancellation flag
between epochs. Logging is a separate callback and never drives decisions.

Key Features:
    - Early stop with best-weight restore (patience on val_loss by default)
    - Cooperative cancellation, checked only at epoch boundaries
    - Per-batch hook for progress reporting
    - Reproducible batching and initialization via random_state

Example:
    >>> from titanic_workbench.train import build_model, fit
    >>> model = build_model(config)
    >>> result = fit(model, X_train, y_train, X_val, y_val, config)
    >>> print(result.history[-1].logs["val_loss"])
"""

# Standard library imports
import enum
import json
import logging
import math
import os
import threading
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence

# Third-party imports
import joblib
import numpy as np

# Scikit-learn imports
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import accuracy_score, log_loss
from sklearn.neural_network import MLPClassifier

# Local imports
from titanic_workbench.config import WorkbenchConfig
from titanic_workbench.errors import PreconditionError

logger = logging.getLogger(__name__)

CLASSES = np.array([0, 1])
MIN_DELTA = 1e-12


# ============================================================================
# MODEL FACTORY
# ============================================================================

def build_model(config: Optional[WorkbenchConfig] = None) -> MLPClassifier:
    """
    Create an untrained Dense(hidden, relu) -> Dense(1, sigmoid) network.

    For binary targets MLPClassifier uses a single logistic output unit and
    log-loss, so this matches a sigmoid/binary-cross-entropy network.
    """
    config = config or WorkbenchConfig()
    return MLPClassifier(
        hidden_layer_sizes=(config.hidden_units,),
        activation="relu",
        solver="adam",
        alpha=0.0,
        batch_size=config.batch_size,
        learning_rate_init=config.learning_rate,
        shuffle=False,
        random_state=config.random_state,
    )


def model_summary(model: MLPClassifier, n_features: int) -> str:
    """Layer table with output shapes and parameter counts."""
    units = list(model.hidden_layer_sizes) + [1]
    lines = [
        "Layer (activation)        Output shape    Param #",
        "=" * 50,
    ]
    fan_in, total = n_features, 0
    for i, n in enumerate(units):
        act = model.activation if i < len(units) - 1 else "sigmoid"
        params = fan_in * n + n
        total += params
        name = f"dense_{i + 1} ({act})"
        lines.append(f"{name.ljust(26)}{f'[None, {n}]'.ljust(16)}{params}")
        fan_in = n
    lines += ["=" * 50, f"Total params: {total}", f"Trained: {is_trained(model)}"]
    return "\n".join(lines)


def is_trained(model: MLPClassifier) -> bool:
    return hasattr(model, "coefs_")


# ============================================================================
# WEIGHT SNAPSHOTS
# ============================================================================

class WeightSnapshot(NamedTuple):
    coefs: List[np.ndarray]
    intercepts: List[np.ndarray]


def get_weights(model: MLPClassifier) -> WeightSnapshot:
    """Independent copy of the trainable weights (no aliasing with the live arrays)."""
    return WeightSnapshot(
        [w.copy() for w in model.coefs_],
        [b.copy() for b in model.intercepts_],
    )


def set_weights(model: MLPClassifier, snapshot: WeightSnapshot) -> None:
    # Adam updates the live arrays in place, so install copies
    model.coefs_ = [w.copy() for w in snapshot.coefs]
    model.intercepts_ = [b.copy() for b in snapshot.intercepts]


# ============================================================================
# EPOCH STREAM
# ============================================================================

@dataclass
class EpochRecord:
    """Metrics of one finished epoch (epoch is 1-based)."""
    epoch: int
    logs: Dict[str, Optional[float]] = field(default_factory=dict)

    def format(self) -> str:
        parts = [f"epoch {self.epoch}:"]
        for key in ("loss", "val_loss", "acc", "val_acc"):
            value = self.logs.get(key)
            if value is not None:
                parts.append(f"{key}={value:.4f}")
        return " ".join(parts)


def predict_proba(model: MLPClassifier, X: np.ndarray) -> np.ndarray:
    """Positive-class probabilities as a 1-D array."""
    if not is_trained(model):
        raise PreconditionError("Train the model first")
    return model.predict_proba(np.asarray(X, dtype=np.float64))[:, 1]


def _evaluate_split(model: MLPClassifier, X: np.ndarray, y: np.ndarray) -> Dict[str, float]:
    proba = predict_proba(model, X)
    loss = log_loss(y, np.clip(proba, 1e-7, 1 - 1e-7), labels=CLASSES)
    acc = accuracy_score(y, (proba >= 0.5).astype(int))
    return {"loss": float(loss), "acc": float(acc)}


def iter_epochs(
    model: MLPClassifier,
    X: np.ndarray,
    y: np.ndarray,
    X_val: Optional[np.ndarray] = None,
    y_val: Optional[np.ndarray] = None,
    epochs: int = 40,
    batch_size: int = 16,
    random_state: Optional[int] = None,
    on_batch_end: Optional[Callable[[int, Dict[str, float]], None]] = None,
) -> Iterator[EpochRecord]:
    """
    Train epoch by epoch, yielding one EpochRecord after each epoch.

    Each epoch shuffles the training rows and applies one Adam update per
    mini-batch. Closing the generator (e.g. breaking out of the consuming loop)
    stops training after the epoch that was just yielded.

    Logs:
        loss / acc: On the training rows after the epoch
        val_loss / val_acc: On the validation rows (None without validation data)
    """
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64).ravel().astype(int)
    has_val = X_val is not None and y_val is not None and len(X_val) > 0
    if has_val:
        X_val = np.asarray(X_val, dtype=np.float64)
        y_val = np.asarray(y_val, dtype=np.float64).ravel().astype(int)

    rng = np.random.default_rng(random_state)
    n = len(X)

    for epoch in range(1, epochs + 1):
        order = rng.permutation(n)
        for batch, start in enumerate(range(0, n, batch_size)):
            idx = order[start:start + batch_size]
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", category=ConvergenceWarning)
                # the last batch of an epoch is usually shorter than batch_size
                warnings.filterwarnings("ignore", message="Got `batch_size`", category=UserWarning)
                model.partial_fit(X[idx], y[idx], classes=CLASSES)
            if on_batch_end is not None:
                on_batch_end(batch, {"loss": float(model.loss_), "size": int(len(idx))})

        train_metrics = _evaluate_split(model, X, y)
        logs: Dict[str, Optional[float]] = {
            "loss": train_metrics["loss"],
            "acc": train_metrics["acc"],
            "val_loss": None,
            "val_acc": None,
        }
        if has_val:
            val_metrics = _evaluate_split(model, X_val, y_val)
            logs["val_loss"] = val_metrics["loss"]
            logs["val_acc"] = val_metrics["acc"]

        yield EpochRecord(epoch, logs)


# ============================================================================
# EARLY-STOP CONTROLLER
# ============================================================================

class ControllerState(enum.Enum):
    RUNNING = "running"
    BETTER_FOUND = "better_found"
    PATIENCE_WAITING = "patience_waiting"
    STOPPED = "stopped"


class StopDecision(NamedTuple):
    stop: bool
    restored: bool = False
    reason: Optional[str] = None


class EarlyStopController:
    """
    Early stop with best-weight restore.

    On every epoch record:
        - monitored value < best - 1e-12: remember it, reset the wait counter,
          replace the weight snapshot with a fresh copy (BETTER_FOUND)
        - otherwise: wait += 1 (PATIENCE_WAITING); at wait >= patience restore
          the snapshot into the model and stop (STOPPED)
        - a missing or NaN value changes nothing
        - the cancellation event, checked every epoch, stops without restoring
          and drops the snapshot

    Args:
        patience: Non-improving epochs tolerated before stopping
        monitor: Key of EpochRecord.logs to watch (lower is better)
        stop_event: Optional cancellation flag set from outside the loop
    """

    def __init__(
        self,
        patience: int = 5,
        monitor: str = "val_loss",
        stop_event: Optional[threading.Event] = None,
    ):
        self.patience = patience
        self.monitor = monitor
        self.stop_event = stop_event
        self.state = ControllerState.RUNNING
        self.best = math.inf
        self.best_epoch: Optional[int] = None
        self.wait = 0
        self.snapshot: Optional[WeightSnapshot] = None
        self.restored = False
        self.cancelled = False

    def observe(self, record: EpochRecord, model: MLPClassifier) -> StopDecision:
        if self.state is ControllerState.STOPPED:
            return StopDecision(True, False, "already stopped")

        decision = StopDecision(False)
        cur = record.logs.get(self.monitor)

        if cur is not None and not math.isnan(cur):
            if cur < self.best - MIN_DELTA:
                self.best = cur
                self.best_epoch = record.epoch
                self.wait = 0
                self.snapshot = get_weights(model)
                self.state = ControllerState.BETTER_FOUND
            else:
                self.wait += 1
                self.state = ControllerState.PATIENCE_WAITING
                if self.wait >= self.patience:
                    restored = False
                    if self.snapshot is not None:
                        set_weights(model, self.snapshot)
                        self.snapshot = None
                        restored = True
                    self.restored = restored
                    self.state = ControllerState.STOPPED
                    logger.info(
                        f"Early stop at epoch {record.epoch}: no {self.monitor} improvement "
                        f"for {self.wait} epochs; restored best epoch {self.best_epoch}"
                        if restored else
                        f"Early stop at epoch {record.epoch}: patience exhausted, no snapshot"
                    )
                    decision = StopDecision(True, restored, "patience")

        if self.stop_event is not None and self.stop_event.is_set():
            self.cancelled = True
            self.state = ControllerState.STOPPED
            self.snapshot = None
            if not decision.stop:
                logger.info(f"Training cancelled after epoch {record.epoch}")
                decision = StopDecision(True, False, "cancelled")

        return decision


# ============================================================================
# FIT LOOP
# ============================================================================

class TrainingCallback:
    """Hooks called by fit(); override what you need."""

    def on_batch_end(self, batch: int, logs: Dict[str, float]) -> None:
        pass

    def on_epoch_end(self, record: EpochRecord) -> None:
        pass


class LoggingCallback(TrainingCallback):
    """Logs one line per epoch and keeps the lines for display."""

    def __init__(self):
        self.lines: List[str] = []

    def on_epoch_end(self, record: EpochRecord) -> None:
        line = record.format()
        self.lines.append(line)
        logger.info(line)


@dataclass
class TrainingResult:
    model: MLPClassifier
    history: List[EpochRecord]
    stop_reason: Optional[str]
    restored: bool
    best_epoch: Optional[int]
    best_value: Optional[float]

    @property
    def epochs_run(self) -> int:
        return len(self.history)


def fit(
    model: MLPClassifier,
    X: np.ndarray,
    y: np.ndarray,
    X_val: Optional[np.ndarray] = None,
    y_val: Optional[np.ndarray] = None,
    config: Optional[WorkbenchConfig] = None,
    callbacks: Sequence[TrainingCallback] = (),
    controller: Optional[EarlyStopController] = None,
    stop_event: Optional[threading.Event] = None,
) -> TrainingResult:
    """
    Train model in place, guided by an EarlyStopController.

    Args:
        model: Network from build_model (may already be partly trained)
        X, y: Training matrix and labels (y of shape (n,) or (n, 1))
        X_val, y_val: Validation data feeding val_loss / val_acc
        config: epochs, batch_size, patience, monitor, random_state
        callbacks: Batch/epoch hooks (logging, progress)
        controller: Custom controller; built from config when None
        stop_event: Cancellation flag for the default controller

    Returns:
        TrainingResult with the epoch history and how training ended
    """
    config = config or WorkbenchConfig()
    if controller is None:
        controller = EarlyStopController(config.patience, config.monitor, stop_event)

    def _on_batch_end(batch: int, logs: Dict[str, float]) -> None:
        for cb in callbacks:
            cb.on_batch_end(batch, logs)

    history: List[EpochRecord] = []
    stop_reason: Optional[str] = None
    stream = iter_epochs(
        model, X, y, X_val, y_val,
        epochs=config.epochs,
        batch_size=config.batch_size,
        random_state=config.random_state,
        on_batch_end=_on_batch_end,
    )
    try:
        for record in stream:
            history.append(record)
            for cb in callbacks:
                cb.on_epoch_end(record)
            decision = controller.observe(record, model)
            if decision.stop:
                stop_reason = decision.reason
                break
    finally:
        stream.close()

    best_value = controller.best if math.isfinite(controller.best) else None
    logger.info(
        f"Training finished after {len(history)} epoch(s)"
        + (f" ({stop_reason})" if stop_reason else "")
    )
    return TrainingResult(model, history, stop_reason, controller.restored,
                          controller.best_epoch, best_value)


# ============================================================================
# MODEL PERSISTENCE
# ============================================================================

def save_model_bundle(
    path: str,
    model: MLPClassifier,
    preprocessor: Any,
    threshold: float,
    config: Optional[WorkbenchConfig] = None,
) -> Dict[str, str]:
    """
    Save model + preprocessor + threshold as one joblib bundle.

    A threshold.json is written next to the bundle so the decision threshold
    can be read without unpickling anything.

    Returns:
        Dict with 'model_path' and 'threshold_path'
    """
    if not is_trained(model):
        raise PreconditionError("Train the model first")

    folder = os.path.dirname(path) or "."
    os.makedirs(folder, exist_ok=True)
    bundle = {
        "model": model,
        "preprocessor": preprocessor,
        "threshold": float(threshold),
        "config": (config or WorkbenchConfig()).model_dump(),
    }
    joblib.dump(bundle, path)

    threshold_path = os.path.join(folder, "threshold.json")
    with open(threshold_path, "w") as fh:
        json.dump({"threshold": float(threshold)}, fh)

    logger.info(f"Saved model bundle to {path} (threshold {threshold:.4f})")
    return {"model_path": path, "threshold_path": threshold_path}


def load_model_bundle(path: str) -> Dict[str, Any]:
    """Load a bundle written by save_model_bundle."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model bundle not found: {path}")
    return joblib.load(path)
