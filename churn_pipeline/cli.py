"""
Training CLI
============

Command-line entry point to train churn prediction models.

Usage:
    churn-train train --config config/config.yaml
    churn-train --sample 5000 --output-dir artifacts/demo

Exit status is 0 whenever a model is selected (even below target) and the
error's ``exit_code`` for every fatal pipeline failure.
"""

import argparse
import copy
import signal
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from config import load_config, parse_config

from .context import RunContext
from .data import generate_sample_data
from .exceptions import ChurnPipelineError, ConfigurationError, PipelineCancelled
from .pipeline import TrainingPipeline
from .utils import format_metrics, setup_logging

SAMPLE_FILE = "sample_churn.csv"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="churn-train", description="Train churn prediction models")

    parser.add_argument(
        "command",
        nargs="?",
        default="train",
        choices=["train"],
        help="Pipeline command to run"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the YAML configuration (defaults to config/config.yaml)"
    )
    parser.add_argument(
        "--data",
        type=str,
        default=None,
        help="Raw data file, overrides data.source"
    )
    parser.add_argument(
        "--sample",
        type=int,
        default=None,
        metavar="N",
        help="Generate N synthetic customers and train on them"
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Artifact directory, overrides artifacts.output_dir"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file, overrides logging.log_file"
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace):
    """Load the configuration file and apply command-line overrides."""
    raw = copy.deepcopy(load_config(args.config))

    if args.output_dir:
        raw.setdefault("artifacts", {})["output_dir"] = args.output_dir

    if args.data:
        raw.setdefault("data", {})["source"] = args.data

    if args.sample:
        output_dir = Path(raw.get("artifacts", {}).get("output_dir", "artifacts"))
        sample_path = output_dir / "data" / SAMPLE_FILE
        try:
            sample_path.parent.mkdir(parents=True, exist_ok=True)
            generate_sample_data(args.sample).to_csv(sample_path, index=False)
        except OSError as exc:
            raise ConfigurationError(f"Cannot write sample data to {sample_path}: {exc}") from exc
        logger.info(f"Created {args.sample} sample customers at {sample_path}")
        raw.setdefault("data", {})["source"] = str(sample_path)

    return parse_config(raw)


def main(argv: Optional[List[str]] = None) -> int:
    """Main training function."""
    args = parse_args(argv)
    setup_logging(level=args.log_level or "INFO")

    try:
        config = build_config(args)
    except ConfigurationError as exc:
        logger.error(f"Configuration error: {exc}")
        return exc.exit_code

    setup_logging(
        level=args.log_level or config.logging.level,
        log_file=args.log_file or config.logging.log_file,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
    )

    context = RunContext(config=config)
    previous_handler = _install_interrupt_handler(context)
    try:
        result = TrainingPipeline(config).run(context)
    except ChurnPipelineError as exc:
        context.log.error(f"{type(exc).__name__}: {exc}")
        return exc.exit_code
    except KeyboardInterrupt:
        context.log.error("Interrupted")
        return PipelineCancelled.exit_code
    except Exception:
        context.log.exception("Unexpected error during training")
        return ChurnPipelineError.exit_code
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    selection = result.selection
    context.log.info(
        f"Selected {selection.selected_backend} "
        f"({selection.policy.primary_metric}={selection.metrics.get(selection.policy.primary_metric):.4f})"
    )
    headline = {name: selection.metrics.get(name) for name in ("accuracy", "precision", "recall", "f1", "roc_auc")}
    context.log.info(" ".join(f"{k}={v}" for k, v in format_metrics(headline).items()))
    if selection.below_target:
        context.log.warning("Selected model is below the configured targets")
    return 0


def _install_interrupt_handler(context: RunContext):
    """First Ctrl+C cancels at the next stage boundary, the second aborts."""
    try:
        previous = signal.getsignal(signal.SIGINT)

        def handler(signum, frame):
            if context.cancelled:
                raise KeyboardInterrupt
            context.cancel()

        signal.signal(signal.SIGINT, handler)
        return previous
    except ValueError:
        # not on the main thread
        return None


if __name__ == "__main__":
    sys.exit(main())
