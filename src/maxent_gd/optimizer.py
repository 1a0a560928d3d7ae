"""
Batch gradient descent.

The simplest optimization algorithm there is: ``x <- x - learning_rate * grad(x)``
until every gradient coordinate is below the threshold or the iteration cap
is reached. The per-coordinate update is split across a worker pool that is
also lent to the objective for its own gradient computation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from maxent_gd.parallel import WorkerPool

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

LOGGER = logging.getLogger(__name__)


# =============================================================================
# Protocol for objectives (duck typing)
# =============================================================================


class Objective(Protocol):
    """A differentiable function of an n-dimensional point."""

    def value(self, x: NDArray[np.float64]) -> float: ...

    def grad(
        self,
        x: NDArray[np.float64],
        out: NDArray[np.float64],
        pool: WorkerPool | None = None,
    ) -> None: ...


# =============================================================================
# Gradient Descent
# =============================================================================


@dataclass(frozen=True)
class GradientDescent:
    """
    Batch gradient descent configuration.

    Args:
        learning_rate: Step size applied to the gradient.
        threshold: A point is optimal once every ``|grad[i]| < threshold``.
        max_iter: Iteration cap; negative means no cap.
        threads: Workers used for the update and lent to the objective.
        log_every: Log the objective value every this many iterations (0 = never).
    """

    learning_rate: float = 0.1
    threshold: float = 0.01
    max_iter: int = -1
    threads: int = 1
    log_every: int = 0

    def __post_init__(self) -> None:
        if not self.learning_rate > 0.0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if not self.threshold > 0.0:
            raise ValueError(f"threshold must be positive, got {self.threshold}")
        if self.threads < 1:
            raise ValueError(f"threads must be at least 1, got {self.threads}")
        if self.log_every < 0:
            raise ValueError(f"log_every must be non-negative, got {self.log_every}")

    def optimize(self, f: Objective, x0: ArrayLike) -> NDArray[np.float64]:
        """
        Minimize ``f`` starting from ``x0``.

        ``x0`` is updated in place when it is already a ``float64`` array and
        returned; any other sequence is converted first.

        Args:
            f: Objective exposing ``value`` and ``grad``.
            x0: Starting point.

        Returns:
            The final point.
        """
        x = np.asarray(x0, dtype=np.float64)
        dim = len(x)
        fp = np.zeros(dim, dtype=np.float64)

        iteration = 0
        converged = False
        with WorkerPool(self.threads) as pool:

            def update_block(start: int, end: int) -> bool:
                block = fp[start:end]
                x[start:end] -= self.learning_rate * block
                return bool(np.all(np.abs(block) < self.threshold))

            while self.max_iter < 0 or iteration < self.max_iter:
                f.grad(x, fp, pool=pool)
                converged = all(pool.map_blocks(update_block, dim))
                iteration += 1

                if LOGGER.isEnabledFor(logging.DEBUG):
                    max_abs = float(np.max(np.abs(fp))) if dim else 0.0
                    LOGGER.debug("iteration %d: max |gradient| = %.6g", iteration, max_abs)
                if self.log_every and iteration % self.log_every == 0:
                    LOGGER.info("iteration %d: value = %.6f", iteration, f.value(x))
                if converged:
                    break

        if converged:
            LOGGER.info("Converged after %d iteration(s)", iteration)
        else:
            LOGGER.info("Stopped at iteration cap (%d) without converging", iteration)
        return x


__all__ = ["GradientDescent", "Objective"]
