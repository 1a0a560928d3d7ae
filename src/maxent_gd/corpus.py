"""
Training corpus for the maximum-entropy classifier.

Feature extraction is easier in dynamic, string-oriented tooling, so the
trainer consumes documents that already list, for every class, the feature
names firing for that (document, class) pair:

    [
        {
            "class1": ["feature1", "feature2", ..., "featuren"],
            ...
            "classn": ["feature1", "feature2", ..., "featuren"],
            "__label__": "classk"
        },
        ...
    ]

The class set is given by the first document. Features and classes are mapped
to integer ids, and the statistics the gradient needs (gold-class feature
counts and the feature -> (class, document) inverted index) are computed once.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

import numpy as np
from scipy.sparse import csr_matrix

if TYPE_CHECKING:
    from numpy.typing import NDArray

LOGGER = logging.getLogger(__name__)

# Key holding the gold class name in each document
LABEL_KEY = "__label__"


class InvalidCorpus(ValueError):
    """The training corpus cannot be decoded or is inconsistent."""


@dataclass
class Document:
    """
    A labeled document in integer-encoded form.

    Attributes:
        features: One list of feature ids per class. Duplicates are allowed
            and add up in the linear score.
        label: Index of the gold class.
    """

    features: list[list[int]]
    label: int

    @property
    def gold_features(self) -> list[int]:
        """Features firing for the gold class."""
        return self.features[self.label]


class Corpus:
    """
    Integer-encoded documents with pre-computed gradient statistics.

    Not meant to be built by hand; use ``from_json``, ``from_records`` or
    ``load_corpus``.

    Attributes:
        documents: The documents, in input order.
        feature_names: Feature id -> feature name.
        class_names: Class id -> class name.
        labels: Gold class id of each document.
        numerators: For each feature, how often it fires for the gold class.
        inverted: ``(D, C*N)`` CSR matrix; row ``i`` lists the combined index
            ``class*N + doc`` of every occurrence of feature ``i``.
        class_features: Per class, an ``(N, D)`` CSR matrix of feature counts.
    """

    def __init__(
        self,
        documents: list[Document],
        feature_names: list[str],
        class_names: list[str],
    ):
        self.documents = documents
        self.feature_names = feature_names
        self.class_names = class_names
        self._feature_ids = {name: i for i, name in enumerate(feature_names)}
        self._class_ids = {name: c for c, name in enumerate(class_names)}

        self.N = len(documents)
        self.dim = len(feature_names)
        self.num_classes = len(class_names)
        self.labels = np.array([doc.label for doc in documents], dtype=np.int64)

        self.numerators = self._compute_numerators()
        self.inverted = self._build_inverted_index()
        self.class_features = self._build_class_features()

    def __len__(self) -> int:
        return self.N

    def _compute_numerators(self) -> NDArray[np.float64]:
        numerators = np.zeros(self.dim, dtype=np.float64)
        for doc in self.documents:
            for feature_id in doc.gold_features:
                numerators[feature_id] += 1
        return numerators

    def _build_inverted_index(self) -> csr_matrix:
        # Posting lists keep every occurrence, in document then class order
        postings: list[list[int]] = [[] for _ in range(self.dim)]
        for doc_idx, doc in enumerate(self.documents):
            for class_idx, feature_ids in enumerate(doc.features):
                combined = class_idx * self.N + doc_idx
                for feature_id in feature_ids:
                    postings[feature_id].append(combined)

        indptr = np.zeros(self.dim + 1, dtype=np.int64)
        indptr[1:] = np.cumsum([len(p) for p in postings], dtype=np.int64)
        indices = np.fromiter(
            (k for posting in postings for k in posting),
            dtype=np.int64,
            count=int(indptr[-1]),
        )
        data = np.ones(len(indices), dtype=np.float64)
        # Built from raw CSR arrays so duplicate entries stay unsummed and in order
        return csr_matrix(
            (data, indices, indptr),
            shape=(self.dim, self.num_classes * self.N),
        )

    def _build_class_features(self) -> list[csr_matrix]:
        matrices = []
        for class_idx in range(self.num_classes):
            rows: list[int] = []
            cols: list[int] = []
            for doc_idx, doc in enumerate(self.documents):
                feature_ids = doc.features[class_idx]
                rows.extend([doc_idx] * len(feature_ids))
                cols.extend(feature_ids)
            data = np.ones(len(cols), dtype=np.float64)
            # COO construction sums duplicates into counts
            matrices.append(
                csr_matrix(
                    (data, (np.asarray(rows, dtype=np.int64), np.asarray(cols, dtype=np.int64))),
                    shape=(self.N, self.dim),
                )
            )
        return matrices

    @classmethod
    def from_records(cls, records: Any) -> Corpus:
        """
        Build a corpus from decoded JSON documents.

        Args:
            records: Sequence of mappings ``class name -> feature names`` plus
                the ``__label__`` key.

        Raises:
            InvalidCorpus: If the records are empty or inconsistent.
        """
        if not isinstance(records, list):
            raise InvalidCorpus("Corpus must be a JSON array of documents")
        if not records:
            raise InvalidCorpus("Corpus is empty")

        first = records[0]
        if not isinstance(first, Mapping):
            raise InvalidCorpus("Document 0 is not an object")
        class_names = [key for key in first if key != LABEL_KEY]
        if not class_names:
            raise InvalidCorpus("Document 0 has no class feature lists")
        class_ids = {name: c for c, name in enumerate(class_names)}
        expected_keys = set(class_names)

        feature_ids: dict[str, int] = {}
        documents = []
        for doc_idx, record in enumerate(records):
            if not isinstance(record, Mapping):
                raise InvalidCorpus(f"Document {doc_idx} is not an object")

            keys = {key for key in record if key != LABEL_KEY}
            if keys != expected_keys:
                missing = sorted(expected_keys - keys)
                extra = sorted(keys - expected_keys)
                raise InvalidCorpus(
                    f"Document {doc_idx} class keys differ from document 0 "
                    f"(missing: {missing}, unexpected: {extra})"
                )

            label = record.get(LABEL_KEY)
            if not isinstance(label, str):
                raise InvalidCorpus(f"Document {doc_idx} has no {LABEL_KEY!r} string")
            if label not in class_ids:
                raise InvalidCorpus(f"Document {doc_idx} has unknown label {label!r}")

            features = []
            for class_name in class_names:
                names = record[class_name]
                if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
                    raise InvalidCorpus(
                        f"Document {doc_idx} features for class {class_name!r} "
                        "must be an array of strings"
                    )
                ids = []
                for name in names:
                    if name not in feature_ids:
                        feature_ids[name] = len(feature_ids)
                    ids.append(feature_ids[name])
                features.append(ids)

            documents.append(Document(features=features, label=class_ids[label]))

        corpus = cls(documents, list(feature_ids), class_names)
        LOGGER.info(
            "Loaded corpus: %d documents, %d classes, %d features",
            len(corpus),
            corpus.num_classes,
            corpus.dim,
        )
        return corpus

    @classmethod
    def from_json(cls, raw: str | bytes) -> Corpus:
        """
        Build a corpus from JSON text.

        Raises:
            InvalidCorpus: If ``raw`` is not valid JSON or not a valid corpus.
        """
        try:
            records = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
            raise InvalidCorpus(f"Corpus is not valid JSON: {e}") from e
        return cls.from_records(records)

    def feature_id(self, name: str) -> int | None:
        """Get feature id (None if unknown)."""
        return self._feature_ids.get(name)

    def class_id(self, name: str) -> int | None:
        """Get class id (None if unknown)."""
        return self._class_ids.get(name)

    def posting_list(self, feature_id: int) -> NDArray[np.integer]:
        """Combined ``class*N + doc`` indices at which a feature fires."""
        start, end = self.inverted.indptr[feature_id], self.inverted.indptr[feature_id + 1]
        return self.inverted.indices[start:end]

    def weights_by_name(self, weights: Iterable[float]) -> dict[str, float]:
        """Map a weight vector onto feature names."""
        return {name: float(w) for name, w in zip(self.feature_names, weights)}


def load_corpus(source: str | Path | IO[str] | IO[bytes]) -> Corpus:
    """
    Read a corpus from a path or an open file.

    Raises:
        OSError: If the file cannot be read.
        InvalidCorpus: If its contents are not a valid corpus.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        LOGGER.info("Reading corpus from %s", path)
        raw = path.read_bytes()
    else:
        raw = source.read()
    return Corpus.from_json(raw)


__all__ = [
    "LABEL_KEY",
    "Corpus",
    "Document",
    "InvalidCorpus",
    "load_corpus",
]
