"""Tests for word-window chunking."""
import random

import pytest

from docsift.chunking import Chunker, window_starts
from docsift.models import chunk_id_for

from conftest import words


class TestWindowStarts:
    def test_exact_multiple(self):
        assert window_starts(1000, 200, 200) == [0, 200, 400, 600, 800]

    def test_trailing_partial(self):
        assert window_starts(1005, 200, 200) == [0, 200, 400, 600, 800, 1000]

    def test_overlap_stops_at_end(self):
        assert window_starts(10, 4, 3) == [0, 3, 6]

    def test_empty(self):
        assert window_starts(0, 200, 200) == []


class TestChunker:
    def test_thousand_words_make_five_chunks(self):
        chunks = Chunker(200).split(words(1000), "doc")
        assert [c.ordinal for c in chunks] == [0, 1, 2, 3, 4]
        assert all(len(c.text.split()) == 200 for c in chunks)

    def test_short_trailing_window_is_kept(self):
        chunks = Chunker(200).split(words(1003), "doc")
        assert len(chunks) == 6
        assert chunks[-1].text.split() == ["w1000", "w1001", "w1002"]

    def test_blank_input_has_no_chunks(self):
        assert Chunker().split("", "doc") == []
        assert Chunker().split("  \n\t ", "doc") == []

    def test_chunk_ids_are_deterministic(self):
        text = words(450)
        first = Chunker(200).split(text, "doc")
        second = Chunker(200).split(text, "doc")
        assert [(c.ordinal, c.id) for c in first] == [(c.ordinal, c.id) for c in second]
        assert first[1].id == chunk_id_for("doc", 1)

    def test_chunk_ids_differ_per_document(self):
        text = words(10)
        assert Chunker().split(text, "a")[0].id != Chunker().split(text, "b")[0].id

    def test_token_estimate(self):
        chunk = Chunker().split("abcd efgh", "doc")[0]
        assert chunk.token_count_estimate == 3  # ceil(9 / 4)

    def test_overlap_shares_words(self):
        chunks = Chunker(10, 4).split(words(30), "doc")
        assert [c.ordinal for c in chunks] == [0, 1, 2, 3, 4]
        assert chunks[0].text.split()[-4:] == chunks[1].text.split()[:4]

    def test_cached_windows_still_use_document_id(self):
        chunker = Chunker(5)
        text = words(12)
        chunker.split(text, "a")
        assert all(c.document_id == "b" for c in chunker.split(text, "b"))

    @pytest.mark.parametrize("window,overlap", [(200, 0), (7, 0), (7, 3), (1, 0), (50, 49)])
    def test_every_word_is_covered(self, window, overlap):
        rng = random.Random(window * 100 + overlap)
        chunker = Chunker(window, overlap)
        for _ in range(20):
            n = rng.randint(1, 700)
            source = words(n)
            chunks = chunker.split(source, "doc")
            covered = set()
            for c in chunks:
                assert c.end_word - c.start_word <= window
                assert c.text.split() == source.split()[c.start_word:c.end_word]
                covered.update(range(c.start_word, c.end_word))
            assert covered == set(range(n))

    def test_ordinal_for_word(self):
        chunker = Chunker(200)
        assert chunker.ordinal_for_word(0, 1000) == 0
        assert chunker.ordinal_for_word(399, 1000) == 1
        assert chunker.ordinal_for_word(999, 1000) == 4
        assert chunker.ordinal_for_word(5000, 1000) == 4

    def test_rejects_bad_overlap(self):
        with pytest.raises(ValueError):
            Chunker(10, 10)
