# titanic_workbench/config.py
"""
Workbench configuration.

All tunables that the pipeline reads live here, in one validated object that
is passed explicitly into each stage (preprocessor toggles, split ratio,
early-stop policy, training schedule, decision threshold).

Usage Example:
    from titanic_workbench.config import WorkbenchConfig, load_config

    config = WorkbenchConfig(patience=8, use_alone=False)
    config = load_config("configs/workbench.json")
"""

# Standard library imports
import json
import logging
import os
from typing import Any, Dict, Optional

# Pydantic for validation
from pydantic import BaseModel, Field, ValidationError

# Local imports
from titanic_workbench.errors import ParseFailure

logger = logging.getLogger(__name__)


class WorkbenchConfig(BaseModel):
    """
    Validated settings for one workbench run.

    Attributes:
        val_ratio: Share of each class held out for validation
        patience: Epochs without improvement before early stop restores weights
        monitor: Epoch-record key watched by the early-stop controller
        roc_steps: Number of threshold intervals on the ROC grid (steps + 1 points)
        use_family: Append the derived FamilySize feature
        use_alone: Append the derived IsAlone feature
        threshold: Decision threshold for binary predictions (mutable after training)
        epochs: Maximum training epochs
        batch_size: Mini-batch size
        hidden_units: Width of the hidden dense layer
        learning_rate: Adam step size
        random_state: Seed for split shuffling and weight init (None = unseeded)
    """
    val_ratio: float = Field(0.2, gt=0, lt=1, description="Validation share per class")
    patience: int = Field(5, ge=1, description="Early-stop patience in epochs")
    monitor: str = Field("val_loss", description="Monitored epoch metric")
    roc_steps: int = Field(200, ge=1, description="ROC threshold resolution")
    use_family: bool = Field(True, description="Add FamilySize feature")
    use_alone: bool = Field(True, description="Add IsAlone feature")
    threshold: float = Field(0.5, ge=0, le=1, description="Decision threshold")
    epochs: int = Field(40, ge=1, description="Training epochs")
    batch_size: int = Field(16, ge=1, description="Mini-batch size")
    hidden_units: int = Field(16, ge=1, description="Hidden layer units")
    learning_rate: float = Field(0.001, gt=0, description="Adam learning rate")
    random_state: Optional[int] = Field(42, description="Random seed")

    model_config = {"frozen": True}


def load_config(path: Optional[str] = None, **overrides: Any) -> WorkbenchConfig:
    """
    Build a WorkbenchConfig from an optional JSON file plus keyword overrides.

    Keys missing from the file take their defaults; overrides whose value is
    None are ignored so argparse namespaces can be passed straight through.

    Raises:
        ParseFailure: If the file is not valid JSON or fails validation
    """
    data: Dict[str, Any] = {}
    if path:
        if not os.path.exists(path):
            raise ParseFailure(f"Config file not found: {path}")
        try:
            with open(path, "r") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as e:
            raise ParseFailure(f"Config file {path} is not valid JSON: {e}") from e
        logger.info(f"Loaded config from {path}")

    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return WorkbenchConfig(**data)
    except ValidationError as e:
        raise ParseFailure(f"Invalid configuration: {e}") from e
