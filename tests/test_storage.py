"""Tests for the SQLite document store and text index."""
from datetime import datetime, timedelta, timezone

import pytest

from docsift.errors import DuplicateContentError, IndexReadError
from docsift.models import Document, IndexState
from docsift.storage import SQLiteDocumentStore, SQLiteTextIndex, build_fts5_query


def _doc(doc_id, owner="u1", content_hash=None, created_at=None, **kwargs):
    return Document(
        id=doc_id,
        owner_id=owner,
        display_name=f"{doc_id}.txt",
        original_name=f"{doc_id}.txt",
        mime_type="text/plain",
        byte_size=10,
        content_hash=content_hash or f"hash-{doc_id}",
        name_hash=f"name-{doc_id}",
        created_at=created_at or datetime.now(timezone.utc),
        **kwargs,
    )


def _meta(document_id, ordinal=0, owner="u1"):
    return {
        "document_id": document_id,
        "owner_id": owner,
        "ordinal": ordinal,
        "display_name": f"{document_id}.txt",
        "mime_type": "text/plain",
    }


@pytest.fixture
def store(tmp_path):
    s = SQLiteDocumentStore(str(tmp_path / "docs.db"))
    yield s
    s.close()


@pytest.fixture
def text_index(tmp_path):
    idx = SQLiteTextIndex(str(tmp_path / "docs.db"))
    yield idx
    idx.close()


class TestBuildFts5Query:
    def test_quotes_terms(self):
        assert build_fts5_query("refund policy") == '"refund" "policy"'

    def test_operators_are_literal(self):
        assert build_fts5_query('refund OR "NEAR"(x)') == '"refund" "OR" "NEAR" "x"'

    def test_no_words(self):
        assert build_fts5_query("?!  ") is None


class TestSQLiteDocumentStore:
    def test_create_and_get(self, store):
        store.create(_doc("d1", metadata={"source": "upload"}))
        doc = store.get("d1")
        assert doc.owner_id == "u1"
        assert doc.index_state == IndexState.PENDING
        assert doc.metadata == {"source": "upload"}

    def test_get_missing(self, store):
        assert store.get("nope") is None

    def test_content_hash_unique_per_owner(self, store):
        store.create(_doc("d1", content_hash="same"))
        with pytest.raises(DuplicateContentError) as exc:
            store.create(_doc("d2", content_hash="same"))
        assert exc.value.existing_document_id == "d1"

    def test_same_hash_other_owner(self, store):
        store.create(_doc("d1", content_hash="same"))
        store.create(_doc("d2", owner="u2", content_hash="same"))
        assert store.find_by_content_hash("u2", "same").id == "d2"

    def test_list_newest_first(self, store):
        now = datetime.now(timezone.utc)
        store.create(_doc("old", created_at=now - timedelta(days=1)))
        store.create(_doc("new", created_at=now))
        store.create(_doc("other", owner="u2", created_at=now))
        assert [d.id for d in store.list_documents("u1")] == ["new", "old"]
        assert len(store.list_documents()) == 3

    def test_update_index_state(self, store):
        store.create(_doc("d1"))
        store.update_index_state("d1", IndexState.PARTIAL, 3, 5)
        doc = store.get("d1")
        assert doc.index_state == IndexState.PARTIAL
        assert (doc.indexed_chunk_count, doc.total_chunk_count) == (3, 5)

    def test_delete(self, store):
        store.create(_doc("d1"))
        assert store.delete("d1") is True
        assert store.delete("d1") is False


class TestSQLiteTextIndex:
    def test_keyword_search(self, text_index):
        text_index.upsert("c1", "Our refund policy allows returns within 30 days", _meta("d1"))
        text_index.upsert("c2", "Shipping takes five days", _meta("d2"))
        rows = text_index.search("refund policy", k=5)
        assert [r["chunk_id"] for r in rows] == ["c1"]
        assert rows[0]["document_id"] == "d1"
        assert rows[0]["display_name"] == "d1.txt"

    def test_case_insensitive(self, text_index):
        text_index.upsert("c1", "REFUND Policy", _meta("d1"))
        assert len(text_index.search("refund policy", k=5)) == 1

    def test_substring_fallback(self, text_index):
        text_index.upsert("c1", "see the refundable deposit terms", _meta("d1"))
        rows = text_index.search("refundable dep", k=5)
        assert [r["chunk_id"] for r in rows] == ["c1"]

    def test_owner_scope(self, text_index):
        text_index.upsert("c1", "refund policy", _meta("d1", owner="u1"))
        text_index.upsert("c2", "refund policy", _meta("d2", owner="u2"))
        rows = text_index.search("refund", k=5, owner_id="u2")
        assert [r["chunk_id"] for r in rows] == ["c2"]

    def test_upsert_replaces(self, text_index):
        text_index.upsert("c1", "old words", _meta("d1"))
        text_index.upsert("c1", "new words", _meta("d1"))
        assert text_index.count() == 1
        assert text_index.search("old", k=5) == []
        assert len(text_index.search("new", k=5)) == 1

    def test_delete_document(self, text_index):
        for i in range(3):
            text_index.upsert(f"c{i}", f"refund chunk {i}", _meta("d1", i))
        text_index.upsert("x", "refund elsewhere", _meta("d2"))
        assert text_index.delete_document("d1") == 3
        assert text_index.count("d1") == 0
        assert [r["chunk_id"] for r in text_index.search("refund", k=5)] == ["x"]

    def test_limit(self, text_index):
        for i in range(10):
            text_index.upsert(f"c{i}", "refund", _meta("d1", i))
        assert len(text_index.search("refund", k=3)) == 3

    def test_read_error_is_wrapped(self, text_index):
        text_index.close()
        with pytest.raises(IndexReadError):
            text_index.search("refund", k=5)
