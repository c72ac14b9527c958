"""Sentence chunker tests."""
import pytest

from rag_pipeline.chunking import (
    SentenceChunker,
    estimate_tokens,
    overlap_seed,
    split_sentences,
    validate_chunk_params,
)
from rag_pipeline.errors import ValidationError

FILLER = ["alpha", "beta", "gamma", "delta", "omega"]


def make_sentence(i: int, length: int = 150) -> str:
    """Sentence of roughly ``length`` characters made of short words."""
    text = f"Sentence{i:02d}"
    j = 0
    while len(text) + 1 + len(FILLER[j % len(FILLER)]) < length:
        text += " " + FILLER[j % len(FILLER)]
        j += 1
    return text + "."


@pytest.fixture
def chunker() -> SentenceChunker:
    return SentenceChunker()


def test_split_sentences_requires_capital_after_punctuation():
    text = "Hello world. this stays. Next one! Really? yes"
    assert split_sentences(text) == ["Hello world. this stays.", "Next one!", "Really? yes"]


def test_short_sentences_fit_in_one_chunk(chunker):
    text = "The cat sat. The dog ran. The bird flew."
    chunks = chunker.chunk(text, chunk_size=1000, chunk_overlap=0)

    assert len(chunks) == 1
    assert chunks[0].text == "The cat sat. The dog ran. The bird flew."
    assert chunks[0].index == 0


def test_long_text_chunks_are_seeded_with_word_aligned_overlap(chunker):
    text = " ".join(make_sentence(i) for i in range(10))
    chunks = chunker.chunk_texts(text, chunk_size=400, chunk_overlap=100)

    assert len(chunks) > 1
    assert all(len(c) <= 400 for c in chunks)

    for prev, current in zip(chunks, chunks[1:]):
        seed = overlap_seed(prev, 100)
        assert seed
        assert 85 <= len(seed) <= 100
        assert prev.endswith(seed)
        # Seed starts right after a space in the previous chunk
        assert prev[len(prev) - len(seed) - 1] == " "
        assert current.startswith(seed + " ")


def test_chunking_is_deterministic(chunker):
    text = " ".join(make_sentence(i) for i in range(12))
    first = chunker.chunk_texts(text, 300, 120)
    second = chunker.chunk_texts(text, 300, 120)
    assert first == second


@pytest.mark.parametrize("chunk_size,overlap", [(100, 0), (150, 49), (400, 100), (1000, 499), (5000, 200)])
def test_chunks_never_split_words(chunker, chunk_size, overlap):
    text = " ".join(make_sentence(i, length=90 + (i * 37) % 120) for i in range(25))
    words = set(text.split())

    for chunk in chunker.chunk_texts(text, chunk_size, overlap):
        assert set(chunk.split()) <= words


def test_oversized_sentence_becomes_its_own_chunk(chunker):
    long_sentence = "Word " * 120 + "end."
    long_sentence = long_sentence.strip()
    text = f"Short one. {long_sentence}"

    chunks = chunker.chunk_texts(text, chunk_size=200, chunk_overlap=50)

    assert chunks == ["Short one.", long_sentence]


def test_seed_is_dropped_when_it_does_not_fit_with_next_sentence(chunker):
    first, second = make_sentence(0), make_sentence(1)
    seed = overlap_seed(first, 100)
    assert seed
    assert len(seed) + 1 + len(second) > 200

    chunks = chunker.chunk_texts(f"{first} {second}", chunk_size=200, chunk_overlap=100)

    # Size bound wins over overlap: the second chunk starts at its sentence
    assert chunks == [first, second]
    assert all(len(c) <= 200 for c in chunks)


def test_single_oversized_sentence_is_not_split(chunker):
    sentence = "x" * 600 + "."
    assert chunker.chunk_texts(sentence, chunk_size=200, chunk_overlap=50) == [sentence]


@pytest.mark.parametrize("text", ["", "   ", "\n\t ", None])
def test_blank_input_yields_no_chunks(chunker, text):
    assert chunker.chunk(text, 1000, 200) == []


def test_token_counts_are_estimated(chunker):
    chunks = chunker.chunk("A" * 10 + ".", 1000, 0)
    assert chunks[0].token_count == estimate_tokens("A" * 10 + ".") == 3


@pytest.mark.parametrize("text,overlap,expected", [
    ("alpha beta gamma", 7, "gamma"),
    ("alpha beta gamma", 6, "gamma"),
    ("alpha beta gamma", 5, "gamma"),
    ("alpha beta gamma", 11, "beta gamma"),
    ("alpha beta gamma", 100, "alpha beta gamma"),
    ("abcdefgh", 3, ""),
    ("alpha beta", 0, ""),
])
def test_overlap_seed(text, overlap, expected):
    assert overlap_seed(text, overlap) == expected


@pytest.mark.parametrize("chunk_size,overlap", [
    (99, 10),
    (5001, 10),
    (1000, 500),
    (1000, 600),
    (1000, -1),
])
def test_invalid_parameters_are_rejected(chunk_size, overlap):
    with pytest.raises(ValidationError) as exc_info:
        validate_chunk_params(chunk_size, overlap)
    assert exc_info.value.errors


@pytest.mark.parametrize("chunk_size,overlap", [(100, 0), (1000, 200), (1000, 499), (5000, 2499)])
def test_valid_parameters_pass(chunk_size, overlap):
    validate_chunk_params(chunk_size, overlap)


def test_chunker_bounds_are_configurable():
    chunker = SentenceChunker(min_chunk_size=50, max_chunk_size=500)
    chunker.validate(50, 10)
    with pytest.raises(ValidationError):
        chunker.validate(600, 10)
