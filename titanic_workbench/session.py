# titanic_workbench/session.py
"""
Workbench session and pipeline stages.

A WorkbenchSession is an immutable snapshot of everything computed so far.
Each stage takes a session and returns a new one; a stage that fails raises
a WorkbenchError and the caller keeps its previous session, so a failed step
never leaves half-updated state behind.

Stage order:
    load_files -> preprocess -> build_model -> train -> update_threshold
               -> predict -> write_submission / write_probabilities / save_model

Example:
    >>> session = WorkbenchSession.from_config(WorkbenchConfig())
    >>> session = load_files(session, "data/train.csv", "data/test.csv")
    >>> session = preprocess(session)
    >>> session = train(build_model(session))
    >>> session = predict(update_threshold(session, 0.45))
    >>> write_submission(session, "out/submission.csv")
"""

# Standard library imports
import copy
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

# Third-party imports
import numpy as np
from sklearn.neural_network import MLPClassifier

# Local imports
from titanic_workbench import data_prep, evaluate
from titanic_workbench import train as trainer
from titanic_workbench.config import WorkbenchConfig
from titanic_workbench.data_prep import Preprocessor, TensorizedRows
from titanic_workbench.errors import InputMissingError, PreconditionError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


@dataclass(frozen=True)
class WorkbenchSession:
    config: WorkbenchConfig = field(default_factory=WorkbenchConfig)
    raw_train: List[Row] = field(default_factory=list)
    raw_test: List[Row] = field(default_factory=list)
    pre: Optional[Preprocessor] = None
    train_data: Optional[TensorizedRows] = None
    val_data: Optional[TensorizedRows] = None
    model: Optional[MLPClassifier] = None
    training: Optional[trainer.TrainingResult] = None
    train_log: List[str] = field(default_factory=list)
    val_probs: Optional[np.ndarray] = None
    test_probs: Optional[np.ndarray] = None
    threshold: float = 0.5

    @classmethod
    def from_config(cls, config: Optional[WorkbenchConfig] = None) -> "WorkbenchSession":
        config = config or WorkbenchConfig()
        return cls(config=config, threshold=config.threshold)

    @property
    def is_trained(self) -> bool:
        return self.model is not None and trainer.is_trained(self.model)


# ============================================================================
# LOADING
# ============================================================================

def load_files(
    session: WorkbenchSession, train_path: Optional[str], test_path: Optional[str] = None
) -> WorkbenchSession:
    """Parse, normalize and repair the training file and the optional test file."""
    if not train_path:
        raise InputMissingError("Please choose train.csv")

    raw_train = data_prep.load_rows(train_path)
    raw_test = data_prep.load_rows(test_path) if test_path else []

    logger.info(f"Loaded train={len(raw_train)} rows, test={len(raw_test)} rows")
    return replace(
        session,
        raw_train=raw_train,
        raw_test=raw_test,
        pre=None, train_data=None, val_data=None,
        model=None, training=None, train_log=[],
        val_probs=None, test_probs=None,
    )


def data_summary(session: WorkbenchSession, limit: int = 8) -> Dict[str, Any]:
    return {
        "n_train": len(session.raw_train),
        "n_test": len(session.raw_test),
        "missing_pct": data_prep.rough_missing_pct(session.raw_train),
        "preview": [dict(r) for r in session.raw_train[:limit]],
    }


# ============================================================================
# PREPROCESSING
# ============================================================================

def preprocess(session: WorkbenchSession) -> WorkbenchSession:
    """
    Fit the preprocessor on ALL training rows, then split and tensorize.

    The split happens after fitting so train and validation rows are mapped
    with identical statistics.
    """
    if not session.raw_train:
        raise PreconditionError("Load train.csv first")

    config = session.config
    pre = data_prep.build_preprocessor(session.raw_train, config)
    train_rows, val_rows = data_prep.stratified_split(
        session.raw_train, config.val_ratio, config.random_state
    )
    train_data = data_prep.tensorize(train_rows, pre)
    val_data = data_prep.tensorize(val_rows, pre)
    if train_data.y is None or val_data.y is None:
        raise PreconditionError("Training file has no Survived labels")

    logger.info(
        f"Preprocessed: train {train_data.X.shape} | val {val_data.X.shape}\n{pre.describe()}"
    )
    return replace(
        session,
        pre=pre, train_data=train_data, val_data=val_data,
        model=None, training=None, train_log=[],
        val_probs=None, test_probs=None,
    )


# ============================================================================
# MODEL
# ============================================================================

def build_model(session: WorkbenchSession) -> WorkbenchSession:
    if session.train_data is None:
        raise PreconditionError("Run Preprocessing first")
    model = trainer.build_model(session.config)
    logger.info("Model built")
    return replace(session, model=model, training=None, train_log=[],
                   val_probs=None, test_probs=None)


def model_summary(session: WorkbenchSession) -> str:
    if session.model is None or session.pre is None:
        raise PreconditionError("Build the model first")
    return trainer.model_summary(session.model, session.pre.feat_len)


def train(
    session: WorkbenchSession,
    stop_event: Optional[threading.Event] = None,
    callbacks: Sequence[trainer.TrainingCallback] = (),
) -> WorkbenchSession:
    """
    Train a copy of the session's model and score the validation rows.

    The session's own model is left untouched, so a failure mid-training
    keeps the previous session usable.
    """
    if session.model is None:
        raise PreconditionError("Build the model first")
    if session.train_data is None or session.val_data is None:
        raise PreconditionError("Run Preprocessing first")

    model = copy.deepcopy(session.model)
    log_cb = trainer.LoggingCallback()
    result = trainer.fit(
        model,
        session.train_data.X, session.train_data.y,
        session.val_data.X, session.val_data.y,
        config=session.config,
        callbacks=[log_cb, *callbacks],
        stop_event=stop_event,
    )
    val_probs = trainer.predict_proba(model, session.val_data.X)

    return replace(session, model=model, training=result, train_log=log_cb.lines,
                   val_probs=val_probs, test_probs=None)


# ============================================================================
# EVALUATION
# ============================================================================

def _val_labels(session: WorkbenchSession) -> np.ndarray:
    if session.val_probs is None or session.val_data is None:
        raise PreconditionError("Train the model first")
    return session.val_data.y.ravel()


def roc_curve(session: WorkbenchSession) -> evaluate.RocCurve:
    y_true = _val_labels(session)
    return evaluate.roc_points(y_true, session.val_probs, session.config.roc_steps)


def threshold_stats(session: WorkbenchSession) -> Optional[evaluate.ConfusionStats]:
    """Validation confusion stats at the session threshold (None before training)."""
    if session.val_probs is None:
        return None
    y_true = _val_labels(session)
    return evaluate.confusion_stats(y_true, session.val_probs, session.threshold)


def validation_report(session: WorkbenchSession) -> Dict[str, Any]:
    y_true = _val_labels(session)
    return evaluate.evaluate_at_threshold(
        y_true, session.val_probs, session.threshold, session.config.roc_steps
    )


def update_threshold(session: WorkbenchSession, threshold: float) -> WorkbenchSession:
    """Move the decision threshold; predictions already made are re-thresholded on output."""
    threshold = float(threshold)
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be within [0, 1], got {threshold}")
    return replace(session, threshold=threshold)


# ============================================================================
# PREDICTION AND OUTPUT
# ============================================================================

def predict(session: WorkbenchSession) -> WorkbenchSession:
    if not session.is_trained or session.pre is None:
        raise PreconditionError("Train the model first")
    if not session.raw_test:
        raise PreconditionError("Load test.csv")

    X = session.pre.transform(session.raw_test)
    test_probs = trainer.predict_proba(session.model, X)
    logger.info(f"Predicted {len(session.raw_test)} rows")
    return replace(session, test_probs=test_probs)


def _ids(session: WorkbenchSession) -> List[Any]:
    id_col = data_prep.get_feature_lists()["id_column"]
    return [r.get(id_col) for r in session.raw_test]


def write_submission(session: WorkbenchSession, path: str) -> str:
    """PassengerId,Survived with 0/1 at the current threshold."""
    if session.test_probs is None:
        raise PreconditionError("Run Predict first")
    labels = (session.test_probs >= session.threshold).astype(int)
    return data_prep.write_prediction_csv(path, _ids(session), labels, "Survived")


def write_probabilities(session: WorkbenchSession, path: str) -> str:
    """PassengerId,ProbSurvived with the raw probabilities."""
    if session.test_probs is None:
        raise PreconditionError("Run Predict first")
    return data_prep.write_prediction_csv(
        path, _ids(session), session.test_probs.astype(float), "ProbSurvived"
    )


def save_model(session: WorkbenchSession, path: str) -> Dict[str, str]:
    if not session.is_trained:
        raise PreconditionError("Train the model first")
    return trainer.save_model_bundle(
        path, session.model, session.pre, session.threshold, session.config
    )
