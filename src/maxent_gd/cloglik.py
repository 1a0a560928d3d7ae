"""
Conditional log-likelihood of a linear feature-based model.

For document ``d`` and class ``c`` the linear score is
``s(d, c) = sum(x[i] for i in F[d][c])`` and

    P(c | d; x) = exp(s(d, c)) / sum(exp(s(d, c')) for c' in classes)

The objective handed to the optimizer is the negated log-likelihood, whose
partial derivatives are (see the Stanford maxent tutorial slides, p. 24)

    d(-LL)/dx[i] = -numerators[i] + sum(P(c | d; x) for (d, c) where i fires)

Probabilities are computed with the per-document maximum score subtracted,
so large weights never overflow.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import logsumexp, softmax

from maxent_gd.parallel import WorkerPool, partition

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from scipy.sparse import csr_matrix

    from maxent_gd.corpus import Corpus

    _Block = tuple[int, int]
    _DocumentSlices = dict[_Block, list[csr_matrix]]
    _FeatureSlices = dict[_Block, csr_matrix]

LOGGER = logging.getLogger(__name__)


class ConditionalLogLikelihood:
    """
    Negated conditional log-likelihood objective over a ``Corpus``.

    ``value`` returns the log-likelihood itself (for progress reports), while
    ``grad`` returns the gradient of its negation, which is what gradient
    descent drives to zero.

    Each gradient coordinate is accumulated as ``-numerators[i]`` plus the sum
    of its posting list, which the sparse row product adds up in stored order
    (document, then class, then list position). Results are deterministic for
    fixed inputs, independent of the thread count, and equal to
    ``-numerators + inverted @ P.ravel()`` bit for bit for the same ``P``.

    Args:
        corpus: Integer-encoded training documents.
        threads: Workers used by ``grad`` when no pool is lent to it.
    """

    def __init__(self, corpus: Corpus, threads: int = 1):
        if threads < 1:
            raise ValueError(f"threads must be at least 1, got {threads}")
        self.corpus = corpus
        self.threads = threads
        # P[c, d] = P(c | d; x); flattened row-major it is indexed by c*N + d
        self._P = np.zeros((corpus.num_classes, len(corpus)), dtype=np.float64)
        self._block_slices: dict[int, tuple[_DocumentSlices, _FeatureSlices]] = {}

    @property
    def dim(self) -> int:
        """Dimension of the weight space (number of features)."""
        return self.corpus.dim

    def zeros(self) -> NDArray[np.float64]:
        """All-zeros starting point."""
        return np.zeros(self.dim, dtype=np.float64)

    def score(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        """Linear scores ``s(d, c)`` as a ``(C, N)`` matrix."""
        return np.vstack([features @ x for features in self.corpus.class_features])

    def probabilities(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        """Conditional class probabilities ``P(c | d; x)`` as a ``(C, N)`` matrix."""
        return softmax(self.score(x), axis=0)

    def value(self, x: NDArray[np.float64]) -> float:
        """Log-likelihood ``sum_d log P(label_d | d; x)``."""
        scores = self.score(x)
        gold = scores[self.corpus.labels, np.arange(len(self.corpus))]
        return float(np.sum(gold - logsumexp(scores, axis=0)))

    def grad(
        self,
        x: NDArray[np.float64],
        out: NDArray[np.float64],
        pool: WorkerPool | None = None,
    ) -> None:
        """
        Fill ``out`` with the gradient of the negated log-likelihood at ``x``.

        Documents are split across the workers to fill the probability matrix,
        then features are split across them to scatter it into ``out``
        through the inverted index. Each phase only writes its own block.

        Args:
            x: Current weights (read only).
            out: Gradient buffer of length ``dim``.
            pool: Worker pool to run on; a scoped one is created otherwise.
        """
        if pool is None:
            with WorkerPool(self.threads) as scoped:
                self._fill_gradient(x, out, scoped)
        else:
            self._fill_gradient(x, out, pool)

    def _fill_gradient(
        self,
        x: NDArray[np.float64],
        out: NDArray[np.float64],
        pool: WorkerPool,
    ) -> None:
        corpus = self.corpus
        P = self._P
        P_flat = P.reshape(-1)
        document_slices, feature_slices = self.block_slices(pool.threads)

        out[:] = -corpus.numerators

        def probability_block(start: int, end: int) -> None:
            if start == end:
                return
            scores = np.vstack([features @ x for features in document_slices[start, end]])
            P[:, start:end] = softmax(scores, axis=0)

        def scatter_block(start: int, end: int) -> None:
            if start == end:
                return
            out[start:end] += feature_slices[start, end] @ P_flat

        pool.map_blocks(probability_block, len(corpus))
        pool.map_blocks(scatter_block, corpus.dim)

    def block_slices(self, threads: int) -> tuple[_DocumentSlices, _FeatureSlices]:
        """
        Per-block row slices of the corpus matrices for a pool of ``threads``.

        Block boundaries only depend on the pool size, so the slices are cut
        once per size and reused by every later gradient call.

        Returns:
            ``(document_slices, feature_slices)`` keyed by ``(start, end)``:
            the per-class ``class_features`` rows of each document block, and
            the ``inverted`` rows of each feature block.
        """
        cached = self._block_slices.get(threads)
        if cached is None:
            corpus = self.corpus
            document_slices = {
                (start, end): [features[start:end] for features in corpus.class_features]
                for start, end in partition(len(corpus), threads)
                if start < end
            }
            feature_slices = {
                (start, end): corpus.inverted[start:end]
                for start, end in partition(corpus.dim, threads)
                if start < end
            }
            cached = self._block_slices[threads] = (document_slices, feature_slices)
        return cached


__all__ = ["ConditionalLogLikelihood"]
