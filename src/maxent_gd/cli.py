"""
Train a maximum-entropy classifier from a JSON corpus.

Reads the corpus (see ``maxent_gd.corpus``), minimizes the negated conditional
log-likelihood with batch gradient descent from the all-zeros point, and
writes a JSON object mapping each feature name to its learned weight.

Usage:
    maxent-gd < corpus.json > weights.json
    maxent-gd corpus.json                   # weights to stdout
    maxent-gd corpus.json weights.json 8    # 8 worker threads

Environment Variables:
    MAXENT_LEARNING_RATE=0.1
    MAXENT_THRESHOLD=0.01
    MAXENT_MAX_ITER=-1   # negative = no cap
    MAXENT_THREADS=0     # 0 = auto (CPU count)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import IO

from maxent_gd.cloglik import ConditionalLogLikelihood
from maxent_gd.corpus import Corpus, InvalidCorpus, load_corpus
from maxent_gd.optimizer import GradientDescent
from maxent_gd.parallel import DEFAULT_NUM_WORKERS

LOGGER = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

DEFAULT_LEARNING_RATE = float(os.environ.get("MAXENT_LEARNING_RATE", "0.1"))
DEFAULT_THRESHOLD = float(os.environ.get("MAXENT_THRESHOLD", "0.01"))
DEFAULT_MAX_ITER = int(os.environ.get("MAXENT_MAX_ITER", "-1"))
DEFAULT_THREADS = int(os.environ.get("MAXENT_THREADS", "0")) or DEFAULT_NUM_WORKERS


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _read_corpus(path: str | None) -> Corpus:
    if path is None or path == "-":
        return load_corpus(sys.stdin.buffer)
    return load_corpus(path)


def _write_weights(weights: dict[str, float], path: str | None, stdout: IO[str]) -> None:
    payload = json.dumps(weights)
    if path is None or path == "-":
        stdout.write(payload)
        stdout.flush()
        return
    LOGGER.info("Writing %d weights to %s", len(weights), path)
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(payload)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="maxent-gd",
        description="Train a maximum-entropy text classifier with batch gradient descent.",
    )
    parser.add_argument("input", nargs="?", default=None, help="Corpus JSON file (default: stdin).")
    parser.add_argument("output", nargs="?", default=None, help="Weights JSON file (default: stdout).")
    parser.add_argument(
        "threads",
        nargs="?",
        type=_positive_int,
        default=DEFAULT_THREADS,
        help=f"Number of worker threads (default: {DEFAULT_THREADS}).",
    )
    parser.add_argument(
        "--learning-rate",
        type=float,
        default=DEFAULT_LEARNING_RATE,
        help=f"Gradient descent step size (default: {DEFAULT_LEARNING_RATE}).",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_THRESHOLD,
        help=f"Stop once every |gradient| coordinate is below this (default: {DEFAULT_THRESHOLD}).",
    )
    parser.add_argument(
        "--max-iter",
        type=int,
        default=DEFAULT_MAX_ITER,
        help=f"Iteration cap, negative for none (default: {DEFAULT_MAX_ITER}).",
    )
    parser.add_argument(
        "--log-every",
        type=int,
        default=0,
        help="Log the log-likelihood every N iterations (default: 0 = never).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        optimizer = GradientDescent(
            learning_rate=args.learning_rate,
            threshold=args.threshold,
            max_iter=args.max_iter,
            threads=args.threads,
            log_every=args.log_every,
        )
    except ValueError as e:
        parser.error(str(e))

    try:
        corpus = _read_corpus(args.input)
    except OSError as e:
        print(f"Error: cannot read corpus: {e}", file=sys.stderr)
        return 1
    except InvalidCorpus as e:
        print(f"Error: invalid corpus: {e}", file=sys.stderr)
        return 1

    objective = ConditionalLogLikelihood(corpus, threads=args.threads)
    LOGGER.info("Training with %d thread(s)", args.threads)
    xmin = optimizer.optimize(objective, objective.zeros())

    print(f"Loglikelihood: {objective.value(xmin)}", file=sys.stderr)

    try:
        _write_weights(corpus.weights_by_name(xmin), args.output, sys.stdout)
    except OSError as e:
        print(f"Error: cannot write weights: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
