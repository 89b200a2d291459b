# titanic_workbench/cli.py
"""
Command-line pipeline for the Titanic Survival Workbench.

Runs every stage in order: load + repair -> preprocess -> build -> train
(early stop with restore) -> validation report -> predict -> write files.

Usage:
    # Train on train.csv, predict test.csv, write outputs to out/
    python -m titanic_workbench.cli --train-path data/train.csv --test-path data/test.csv

    # Custom schedule and threshold
    python -m titanic_workbench.cli --train-path data/train.csv \
        --epochs 80 --patience 8 --threshold 0.45 --no-alone

Output Files:
    - <out-dir>/submission.csv: PassengerId, Survived (0/1 at threshold)
    - <out-dir>/probabilities.csv: PassengerId, ProbSurvived
    - <out-dir>/model.joblib + threshold.json: Model bundle
    - <out-dir>/evaluation.json: Validation report and training history
"""

# Standard library imports
import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

# Local imports
from titanic_workbench import session as wb
from titanic_workbench.config import WorkbenchConfig, load_config
from titanic_workbench.errors import WorkbenchError

logger = logging.getLogger(__name__)


def run_workbench(
    train_path: str,
    test_path: Optional[str] = None,
    config: Optional[WorkbenchConfig] = None,
    out_dir: str = "out",
) -> Dict[str, Any]:
    """
    Run the full pipeline and write its artifacts.

    Returns:
        Dict with 'report' (validation evaluation), 'epochs_run', 'stop_reason'
        and the paths of every file written.
    """
    config = config or WorkbenchConfig()
    os.makedirs(out_dir, exist_ok=True)

    session = wb.WorkbenchSession.from_config(config)
    session = wb.load_files(session, train_path, test_path)
    summary = wb.data_summary(session)
    print(f"Loaded train={summary['n_train']} rows | test={summary['n_test'] or '-'} rows "
          f"| missing={summary['missing_pct']}%")

    session = wb.preprocess(session)
    print(session.pre.describe())
    print(f"Train: {session.train_data.X.shape} | Val: {session.val_data.X.shape}")

    session = wb.build_model(session)
    print(wb.model_summary(session))

    session = wb.train(session)
    result = session.training
    print(f"\nTrained {result.epochs_run} epoch(s)"
          + (f", stopped: {result.stop_reason}" if result.stop_reason else ""))

    report = wb.validation_report(session)
    stats = report["confusion"]
    print(f"\nValidation @ threshold {session.threshold:.2f}:")
    print(f"  AUC:       {report['auc']:.4f}")
    print(f"  Precision: {stats['precision'] * 100:.2f}%")
    print(f"  Recall:    {stats['recall'] * 100:.2f}%")
    print(f"  F1:        {stats['f1']:.4f}")
    print(f"  TP={stats['tp']} FN={stats['fn']} FP={stats['fp']} TN={stats['tn']}")

    outputs: Dict[str, Any] = {}
    if session.raw_test:
        session = wb.predict(session)
        outputs["submission"] = wb.write_submission(session, os.path.join(out_dir, "submission.csv"))
        outputs["probabilities"] = wb.write_probabilities(
            session, os.path.join(out_dir, "probabilities.csv")
        )
    outputs.update(wb.save_model(session, os.path.join(out_dir, "model.joblib")))

    evaluation_path = os.path.join(out_dir, "evaluation.json")
    with open(evaluation_path, "w") as fh:
        json.dump({
            "report": report,
            "history": [{"epoch": r.epoch, **r.logs} for r in result.history],
            "stop_reason": result.stop_reason,
            "restored": result.restored,
            "best_epoch": result.best_epoch,
            "config": config.model_dump(),
        }, fh, indent=2)
    outputs["evaluation"] = evaluation_path

    print("\nArtifacts:")
    for name, path in outputs.items():
        print(f"  - {name}: {path}")

    return {
        "report": report,
        "epochs_run": result.epochs_run,
        "stop_reason": result.stop_reason,
        "outputs": outputs,
    }


# ============================================================================
# COMMAND-LINE INTERFACE
# ============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Train the Titanic survival classifier with early stopping and threshold reporting"
    )
    parser.add_argument("--train-path", type=str, required=True, help="Path to train.csv")
    parser.add_argument("--test-path", type=str, default=None, help="Path to test.csv (optional)")
    parser.add_argument("--config", type=str, default=None, help="JSON config file")
    parser.add_argument("--out-dir", type=str, default="out", help="Output directory (default: out)")

    parser.add_argument("--val-ratio", type=float, default=None, help="Validation share per class (default: 0.2)")
    parser.add_argument("--epochs", type=int, default=None, help="Training epochs (default: 40)")
    parser.add_argument("--batch-size", type=int, default=None, help="Mini-batch size (default: 16)")
    parser.add_argument("--patience", type=int, default=None, help="Early-stop patience (default: 5)")
    parser.add_argument("--threshold", type=float, default=None, help="Decision threshold (default: 0.5)")
    parser.add_argument("--roc-steps", type=int, default=None, help="ROC grid resolution (default: 200)")
    parser.add_argument("--random-state", type=int, default=None, help="Random seed (default: 42)")
    parser.add_argument("--no-family", dest="use_family", action="store_false", default=None,
                        help="Drop the FamilySize feature")
    parser.add_argument("--no-alone", dest="use_alone", action="store_false", default=None,
                        help="Drop the IsAlone feature")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)
    try:
        config = load_config(
            args.config,
            val_ratio=args.val_ratio,
            epochs=args.epochs,
            batch_size=args.batch_size,
            patience=args.patience,
            threshold=args.threshold,
            roc_steps=args.roc_steps,
            random_state=args.random_state,
            use_family=args.use_family,
            use_alone=args.use_alone,
        )
        run_workbench(args.train_path, args.test_path, config, args.out_dir)
    except WorkbenchError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
