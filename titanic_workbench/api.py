# titanic_workbench/api.py
"""
FastAPI Application for the Titanic Survival Workbench.

Exposes the workbench stages as HTTP endpoints so a browser front end can
drive the whole flow: load files, preprocess, build, train (with a stop
button), move the decision threshold and download predictions.

Core Endpoints:
    1. GET  /health                   - Service status and pipeline progress
    2. POST /load                     - Load + repair train.csv (and test.csv)
    3. GET  /data/preview             - Row counts, missing %, first rows
    4. POST /preprocess               - Fit preprocessor, split, tensorize
    5. POST /model/build              - Create the untrained network
    6. GET  /model/summary            - Layer table
    7. POST /train                    - Train with early stop, return AUC + stats
    8. POST /train/stop               - Request a stop after the current epoch
    9. GET  /metrics/roc              - ROC points and AUC on validation rows
   10. POST /threshold                - Move threshold, return confusion stats
   11. POST /predict                  - Score test rows
   12. GET  /download/submission      - submission.csv
   13. GET  /download/probabilities   - probabilities.csv
   14. POST /model/save               - Persist model bundle

Run locally:
    uvicorn titanic_workbench.api:app --reload

Environment:
    WORKBENCH_CONFIG: Optional JSON config file
    WORKBENCH_OUTPUT_DIR: Where downloads and bundles are written (default: out)

Notes:
    - One session per process; each successful stage replaces it, a failed
      stage leaves it as it was
    - /train runs in the worker thread pool, so /train/stop can be served
      while training; the flag is read at the next epoch end
"""

# Standard library imports
import logging
import os
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

# FastAPI imports
from fastapi import FastAPI, Request, status
from fastapi.responses import FileResponse, JSONResponse

# Pydantic for data validation
from pydantic import BaseModel, Field

# Local imports
from titanic_workbench import session as wb
from titanic_workbench.config import WorkbenchConfig, load_config
from titanic_workbench.errors import (
    EmptyInputError,
    InputMissingError,
    ParseFailure,
    PreconditionError,
    WorkbenchError,
)

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ============================================================================
# PYDANTIC MODELS FOR REQUEST/RESPONSE VALIDATION
# ============================================================================

class LoadRequest(BaseModel):
    """
    Paths of the CSV files to load.

    Attributes:
        train_path: Kaggle train.csv (required; empty reports InputMissing)
        test_path: Kaggle test.csv (optional)
    """
    train_path: Optional[str] = Field(None, description="Path to train.csv")
    test_path: Optional[str] = Field(None, description="Path to test.csv")

    class Config:
        json_schema_extra = {
            "example": {"train_path": "data/train.csv", "test_path": "data/test.csv"}
        }


class ThresholdRequest(BaseModel):
    threshold: float = Field(..., ge=0, le=1, description="Decision threshold (0-1)")


class SaveRequest(BaseModel):
    filename: str = Field("model.joblib", description="Bundle file name inside the output dir")


class ConfusionResponse(BaseModel):
    """Confusion matrix and ratios on the validation rows."""
    threshold: float = Field(..., description="Threshold used")
    TP: int
    FP: int
    TN: int
    FN: int
    precision: float
    recall: float
    f1: float


class TrainResponse(BaseModel):
    epochs_run: int = Field(..., description="Epochs actually trained")
    stop_reason: Optional[str] = Field(None, description="patience, cancelled or None")
    restored: bool = Field(..., description="Best weights restored by early stop")
    auc: float = Field(..., description="Validation AUC on the threshold grid")
    log: List[str] = Field(..., description="One line per epoch")
    stats: ConfusionResponse


class HealthResponse(BaseModel):
    status: str = Field(..., description="API status")
    loaded: bool
    preprocessed: bool
    model_built: bool
    trained: bool
    predicted: bool
    threshold: float
    timestamp: str


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

_STATUS_BY_ERROR = {
    InputMissingError: status.HTTP_400_BAD_REQUEST,
    PreconditionError: status.HTTP_400_BAD_REQUEST,
    ParseFailure: 422,
    EmptyInputError: 422,
}


def _confusion_response(session: wb.WorkbenchSession) -> Dict[str, Any]:
    st = wb.threshold_stats(session)
    if st is None:
        raise PreconditionError("Train the model first")
    return {
        "threshold": session.threshold,
        "TP": st.tp, "FP": st.fp, "TN": st.tn, "FN": st.fn,
        "precision": st.precision, "recall": st.recall, "f1": st.f1,
    }


def _jsonable_row(row: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for k, v in row.items():
        out[k] = v if v is None or isinstance(v, (str, int, float, bool)) else str(v)
    return out


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(
    config: Optional[WorkbenchConfig] = None, output_dir: Optional[str] = None
) -> FastAPI:
    """
    Build a FastAPI app holding one workbench session.

    Args:
        config: Workbench settings (WORKBENCH_CONFIG env file when None)
        output_dir: Directory for downloads and bundles (WORKBENCH_OUTPUT_DIR, default 'out')
    """
    if config is None:
        config = load_config(os.environ.get("WORKBENCH_CONFIG"))
    output_dir = output_dir or os.environ.get("WORKBENCH_OUTPUT_DIR", "out")

    app = FastAPI(
        title="Titanic Survival Workbench API",
        description="Repair, preprocess, train and evaluate a Titanic survival classifier",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.session = wb.WorkbenchSession.from_config(config)
    app.state.stop_event = threading.Event()
    app.state.output_dir = output_dir

    def current() -> wb.WorkbenchSession:
        return app.state.session

    def commit(new_session: wb.WorkbenchSession) -> wb.WorkbenchSession:
        app.state.session = new_session
        return new_session

    # -------------------------
    # Error Handlers
    # -------------------------

    @app.exception_handler(WorkbenchError)
    async def workbench_error_handler(request: Request, exc: WorkbenchError):
        code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
        logger.error(f"{request.url.path} failed: {type(exc).__name__}: {exc}")
        return JSONResponse(
            status_code=code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        logger.error(f"{request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "error": "ValueError"},
        )

    # -------------------------
    # API Endpoints
    # -------------------------

    @app.get("/health", response_model=HealthResponse, tags=["Monitoring"])
    async def health_check():
        s = current()
        return {
            "status": "healthy",
            "loaded": bool(s.raw_train),
            "preprocessed": s.pre is not None,
            "model_built": s.model is not None,
            "trained": s.is_trained,
            "predicted": s.test_probs is not None,
            "threshold": s.threshold,
            "timestamp": datetime.now().isoformat(),
        }

    @app.post("/load", tags=["Data"])
    def load(request: LoadRequest):
        s = commit(wb.load_files(current(), request.train_path, request.test_path))
        summary = wb.data_summary(s, limit=0)
        logger.info(f"Loaded {summary['n_train']} train / {summary['n_test']} test rows")
        return {k: v for k, v in summary.items() if k != "preview"}

    @app.get("/data/preview", tags=["Data"])
    async def preview(limit: int = 8):
        summary = wb.data_summary(current(), limit=limit)
        summary["preview"] = [_jsonable_row(r) for r in summary["preview"]]
        return summary

    @app.post("/preprocess", tags=["Data"])
    def preprocess():
        s = commit(wb.preprocess(current()))
        return {
            "features": s.pre.feat_len,
            "feature_names": s.pre.feature_names(),
            "train_shape": list(s.train_data.X.shape),
            "val_shape": list(s.val_data.X.shape),
            "age_median": s.pre.age_median,
            "embarked_mode": s.pre.embarked_mode,
            "use_family": s.pre.use_family,
            "use_alone": s.pre.use_alone,
        }

    @app.post("/model/build", tags=["Model"])
    async def build():
        commit(wb.build_model(current()))
        return {"message": 'Model built. Call GET /model/summary to view layers.'}

    @app.get("/model/summary", tags=["Model"])
    async def summary():
        return {"summary": wb.model_summary(current())}

    @app.post("/train", response_model=TrainResponse, tags=["Model"])
    def train():
        app.state.stop_event.clear()
        s = commit(wb.train(current(), stop_event=app.state.stop_event))
        result = s.training
        return {
            "epochs_run": result.epochs_run,
            "stop_reason": result.stop_reason,
            "restored": result.restored,
            "auc": wb.roc_curve(s).auc,
            "log": s.train_log,
            "stats": _confusion_response(s),
        }

    @app.post("/train/stop", tags=["Model"])
    async def stop():
        app.state.stop_event.set()
        logger.info("Stop requested; training will stop after the current epoch")
        return {"message": "Early stop requested (will stop after this epoch)."}

    @app.get("/metrics/roc", tags=["Metrics"])
    async def roc():
        curve = wb.roc_curve(current())
        return {
            "auc": curve.auc,
            "points": [{"fpr": p.fpr, "tpr": p.tpr, "threshold": p.threshold} for p in curve.points],
        }

    @app.post("/threshold", response_model=ConfusionResponse, tags=["Metrics"])
    async def threshold(request: ThresholdRequest):
        s = wb.update_threshold(current(), request.threshold)
        response = _confusion_response(s)
        commit(s)
        return response

    @app.post("/predict", tags=["Prediction"])
    def predict():
        s = commit(wb.predict(current()))
        return {"message": f"Predicted {len(s.raw_test)} rows. You can now download CSVs."}

    @app.get("/download/submission", tags=["Prediction"])
    def download_submission():
        path = wb.write_submission(current(), os.path.join(app.state.output_dir, "submission.csv"))
        return FileResponse(path, media_type="text/csv", filename="submission.csv")

    @app.get("/download/probabilities", tags=["Prediction"])
    def download_probabilities():
        path = wb.write_probabilities(current(), os.path.join(app.state.output_dir, "probabilities.csv"))
        return FileResponse(path, media_type="text/csv", filename="probabilities.csv")

    @app.post("/model/save", tags=["Model"])
    def save(request: SaveRequest):
        name = os.path.basename(request.filename) or "model.joblib"
        return wb.save_model(current(), os.path.join(app.state.output_dir, name))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
