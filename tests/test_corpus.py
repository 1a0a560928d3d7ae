import io
import json

import numpy as np
import pytest

from maxent_gd.corpus import LABEL_KEY, Corpus, InvalidCorpus, load_corpus


@pytest.fixture
def records():
    return [
        {"pos": ["good", "fun", "good"], "neg": ["bad"], "__label__": "pos"},
        {"pos": ["bad"], "neg": ["good", "dull"], "__label__": "neg"},
        {"pos": ["fun"], "neg": [], "__label__": "pos"},
    ]


def test_ids_follow_first_occurrence(records) -> None:
    corpus = Corpus.from_records(records)

    assert corpus.class_names == ["pos", "neg"]
    assert corpus.feature_names == ["good", "fun", "bad", "dull"]
    assert len(corpus) == 3
    assert corpus.dim == 4
    assert corpus.num_classes == 2
    assert corpus.feature_id("dull") == 3
    assert corpus.feature_id("missing") is None
    assert corpus.class_id("neg") == 1


def test_documents_are_integer_encoded(records) -> None:
    corpus = Corpus.from_records(records)

    first = corpus.documents[0]
    assert first.features == [[0, 1, 0], [2]]
    assert first.label == 0
    assert first.gold_features == [0, 1, 0]
    assert corpus.documents[1].gold_features == [0, 3]
    assert corpus.documents[2].features == [[1], []]
    np.testing.assert_array_equal(corpus.labels, [0, 1, 0])


def test_numerators_count_gold_class_occurrences(records) -> None:
    corpus = Corpus.from_records(records)
    # good: 2 (doc 0) + 1 (doc 1), fun: 1 + 1, bad: 0, dull: 1
    np.testing.assert_array_equal(corpus.numerators, [3.0, 2.0, 0.0, 1.0])


def test_inverted_index_keeps_every_occurrence_in_order(records) -> None:
    corpus = Corpus.from_records(records)
    n = len(corpus)

    # combined index is class * N + doc
    assert corpus.posting_list(0).tolist() == [0, 0, 1 * n + 1]
    assert corpus.posting_list(1).tolist() == [0, 2]
    assert corpus.posting_list(2).tolist() == [1 * n + 0, 1]
    assert corpus.posting_list(3).tolist() == [1 * n + 1]
    assert corpus.inverted.shape == (4, 2 * n)


def test_class_features_count_duplicates(records) -> None:
    corpus = Corpus.from_records(records)

    pos = corpus.class_features[0].toarray()
    neg = corpus.class_features[1].toarray()
    np.testing.assert_array_equal(pos[0], [2, 1, 0, 0])
    np.testing.assert_array_equal(neg[1], [1, 0, 0, 1])
    np.testing.assert_array_equal(neg[2], [0, 0, 0, 0])


def test_from_json_accepts_text_and_bytes(records) -> None:
    raw = json.dumps(records)
    from_text = Corpus.from_json(raw)
    from_bytes = Corpus.from_json(raw.encode("utf-8"))
    assert from_text.feature_names == from_bytes.feature_names


def test_load_corpus_from_path_and_stream(tmp_path, records) -> None:
    path = tmp_path / "corpus.json"
    path.write_text(json.dumps(records), encoding="utf-8")

    assert load_corpus(path).feature_names == ["good", "fun", "bad", "dull"]
    assert len(load_corpus(str(path))) == 3
    assert len(load_corpus(io.BytesIO(path.read_bytes()))) == 3


def test_load_corpus_missing_file(tmp_path) -> None:
    with pytest.raises(OSError):
        load_corpus(tmp_path / "missing.json")


def test_documents_without_features() -> None:
    corpus = Corpus.from_records([{"A": [], "B": [], LABEL_KEY: "B"}])
    assert corpus.dim == 0
    assert corpus.inverted.shape == (0, 2)


def test_weights_by_name(records) -> None:
    corpus = Corpus.from_records(records)
    weights = corpus.weights_by_name(np.array([0.5, -1.0, 2.0, 0.0]))
    assert weights == {"good": 0.5, "fun": -1.0, "bad": 2.0, "dull": 0.0}
    assert all(type(w) is float for w in weights.values())


@pytest.mark.parametrize(
    "raw, message",
    [
        ("", "not valid JSON"),
        ("[{", "not valid JSON"),
        pytest.param("[" * 100_000, "not valid JSON", id="deeply-nested"),
        ("[]", "empty"),
        ('{"A": ["a"], "__label__": "A"}', "JSON array"),
        ("[1, 2]", "not an object"),
        ('[{"__label__": "A"}]', "no class"),
        ('[{"A": ["a"]}]', "__label__"),
        ('[{"A": ["a"], "__label__": 3}]', "__label__"),
        ('[{"A": ["a"], "__label__": "B"}]', "unknown label"),
        ('[{"A": "a", "__label__": "A"}]', "array of strings"),
        ('[{"A": [1], "__label__": "A"}]', "array of strings"),
        (
            '[{"A": ["a"], "B": ["b"], "__label__": "A"}, {"A": ["a"], "__label__": "A"}]',
            "differ",
        ),
        (
            '[{"A": ["a"], "__label__": "A"}, {"A": ["a"], "C": ["c"], "__label__": "A"}]',
            "differ",
        ),
        ('[{"A": ["a"], "__label__": "A"}, "doc"]', "Document 1"),
    ],
)
def test_invalid_corpus(raw: str, message: str) -> None:
    with pytest.raises(InvalidCorpus, match=message):
        Corpus.from_json(raw)


def test_invalid_corpus_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        Corpus.from_records([])
