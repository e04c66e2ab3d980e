"""Tests for ingestion and purge."""
import logging
from pathlib import Path

import pytest

from docsift.errors import DocumentNotFoundError
from docsift.models import IndexState, IngestStatus
from docsift.index import USearchVectorIndex
from docsift.storage import SQLiteDocumentStore

from conftest import BrokenTextIndex, FailingEmbedder, FlakyEmbedder, SaveFailingVectorIndex, words


class BlindDocumentStore(SQLiteDocumentStore):
    """Never sees existing hashes, like a request that lost the dedup race."""

    def find_by_content_hash(self, owner_id, content_hash):
        return None


class TestIngest:
    def test_thousand_word_document(self, engine):
        result = engine.ingest("u1", words(1000), "handbook.txt")
        assert result.status == IngestStatus.CREATED
        assert (result.indexed_chunk_count, result.total_chunk_count) == (5, 5)
        assert result.warning_count == 0

        doc = engine.get_document(result.document_id)
        assert doc.index_state == IndexState.INDEXED
        assert engine.text_index.count(doc.id) == 5
        assert len(engine.vector_index) == 5
        assert Path(doc.source_path).read_text(encoding="utf-8") == words(1000)

    def test_result_dict(self, engine):
        data = engine.ingest("u1", "short text", "a.txt").to_dict()
        assert data["status"] == "created"
        assert set(data) == {
            "status", "documentId", "indexedChunkCount", "totalChunkCount", "similarDocuments"
        }

    def test_exact_duplicate_is_refused(self, engine):
        first = engine.ingest("u1", words(1000), "handbook.txt")
        second = engine.ingest("u1", words(1000) + "\n", "handbook-copy.txt")
        assert second.status == IngestStatus.DUPLICATE
        assert second.document_id == first.document_id
        assert len(engine.list_documents("u1")) == 1
        assert engine.text_index.count() == 5
        assert len(engine.vector_index) == 5

    def test_duplicate_discards_staged_file(self, engine, tmp_path):
        engine.ingest("u1", "policy text", "policy.txt")
        staged = tmp_path / "upload.tmp.txt"
        staged.write_text("policy text", encoding="utf-8")
        result = engine.ingest("u1", "policy text", "policy.txt", staged_path=staged)
        assert result.status == IngestStatus.DUPLICATE
        assert not staged.exists()

    def test_same_content_other_owner(self, engine):
        a = engine.ingest("u1", "shared text", "a.txt")
        b = engine.ingest("u2", "shared text", "a.txt")
        assert b.status == IngestStatus.CREATED
        assert a.document_id != b.document_id

    def test_similar_name_never_blocks(self, engine):
        first = engine.ingest("u1", "version one of the policy", "refund_policy_2023.pdf",
                              "application/pdf")
        second = engine.ingest("u1", "version two of the policy", "refund_policy_2024.pdf",
                               "application/pdf")
        assert second.status == IngestStatus.CREATED
        assert [d.id for d in second.similar_documents] == [first.document_id]

    def test_empty_text_is_valid(self, engine):
        result = engine.ingest("u1", "   ", "scan.png", "image/png")
        assert result.status == IngestStatus.CREATED
        assert (result.indexed_chunk_count, result.total_chunk_count) == (0, 0)
        assert engine.get_document(result.document_id).index_state == IndexState.INDEXED

    def test_race_on_same_content(self, make_engine, config):
        engine = make_engine(document_store=BlindDocumentStore(config.db_path))
        first = engine.ingest("u1", "raced text", "a.txt")
        second = engine.ingest("u1", "raced text", "a.txt")
        assert second.status == IngestStatus.DUPLICATE
        assert second.document_id == first.document_id
        assert len(engine.list_documents()) == 1

    def test_concurrent_embedding(self, make_engine, config):
        config.embed_concurrency = 8
        engine = make_engine()
        result = engine.ingest("u1", words(5000), "big.txt")
        assert (result.indexed_chunk_count, result.total_chunk_count) == (25, 25)


class TestIngestFailures:
    def test_provider_outage_marks_unindexed(self, make_engine):
        engine = make_engine(FailingEmbedder())
        result = engine.ingest("u1", words(400), "outage.txt")
        assert result.status == IngestStatus.PARTIAL
        assert (result.indexed_chunk_count, result.total_chunk_count) == (0, 2)
        doc = engine.get_document(result.document_id)
        assert doc is not None
        assert doc.index_state == IndexState.UNINDEXED
        assert engine.text_index.count() == 0

    def test_single_chunk_failure_is_skipped(self, make_engine, caplog):
        engine = make_engine(FlakyEmbedder())
        text = words(200, "a") + " poison " + words(199, "b") + " " + words(200, "c")
        with caplog.at_level(logging.WARNING, logger="docsift.pipeline"):
            result = engine.ingest("u1", text, "flaky.txt")
        assert result.status == IngestStatus.PARTIAL
        assert (result.indexed_chunk_count, result.total_chunk_count) == (2, 3)
        assert result.warning_count == 1
        assert engine.get_document(result.document_id).index_state == IndexState.PARTIAL
        assert "not indexed" in caplog.text

    def test_index_writes_are_retried(self, make_engine, config):
        config.index_write_attempts = 3
        broken = BrokenTextIndex(config.db_path, fail_upsert=True)
        engine = make_engine(text_index=broken)
        result = engine.ingest("u1", words(10), "x.txt")
        assert broken.upsert_attempts == 3
        assert result.indexed_chunk_count == 0
        assert result.status == IngestStatus.PARTIAL

    def test_unexpected_store_error_is_a_failed_chunk(self, make_engine, monkeypatch):
        engine = make_engine()

        def reset(*args, **kwargs):
            raise ConnectionResetError("vector store went away")

        monkeypatch.setattr(engine.vector_index, "upsert", reset)
        result = engine.ingest("u1", words(400), "reset.txt")
        assert result.status == IngestStatus.PARTIAL
        assert (result.indexed_chunk_count, result.total_chunk_count) == (0, 2)
        assert engine.get_document(result.document_id).index_state == IndexState.UNINDEXED

    def test_aborted_ingest_never_stays_pending(self, make_engine, monkeypatch):
        engine = make_engine()

        def broken_split(text, document_id):
            raise RuntimeError("chunker crashed")

        monkeypatch.setattr(engine.pipeline.chunker, "split", broken_split)
        with pytest.raises(RuntimeError):
            engine.ingest("u1", words(50), "crash.txt")
        (doc,) = engine.list_documents("u1")
        assert doc.index_state == IndexState.UNINDEXED


class TestSourceFiles:
    def test_staged_text_file_is_kept(self, engine, tmp_path):
        staged = tmp_path / "incoming.md"
        staged.write_text("# Notes\nrefund policy", encoding="utf-8")
        result = engine.ingest("u1", "# Notes\nrefund policy", "notes.md", "text/markdown",
                               staged_path=staged)
        doc = engine.get_document(result.document_id)
        assert not staged.exists()
        assert doc.source_path.endswith(".md")
        assert Path(doc.source_path).exists()
        assert doc.byte_size == len("# Notes\nrefund policy".encode())

    def test_unreadable_format_is_stored_as_text(self, engine, tmp_path):
        staged = tmp_path / "upload.docx"
        staged.write_bytes(b"PK\x03\x04 binary")
        result = engine.ingest(
            "u1", "extracted words", "contract.docx",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            staged_path=staged,
        )
        doc = engine.get_document(result.document_id)
        assert not staged.exists()
        assert doc.source_path.endswith(".txt")
        assert Path(doc.source_path).read_text(encoding="utf-8") == "extracted words"
        assert doc.byte_size == len(b"PK\x03\x04 binary")

    def test_owner_directory_is_sanitised(self, engine, config):
        result = engine.ingest("../evil owner", "text", "a.txt")
        path = Path(engine.get_document(result.document_id).source_path)
        assert path.parent.parent == Path(config.corpus_dir)
        assert path.parent.name == "___evil_owner"


class TestPurge:
    def test_purge_removes_everything(self, engine):
        result = engine.ingest("u1", words(1000), "handbook.txt")
        source = Path(result.document.source_path)
        purge = engine.purge(result.document_id)
        assert purge.ok and purge.document_deleted
        assert purge.to_dict() == {"vectorPurged": True, "textPurged": True}
        assert engine.get_document(result.document_id) is None
        assert engine.text_index.count() == 0
        assert len(engine.vector_index) == 0
        assert not source.exists()

    def test_purge_then_reingest(self, engine):
        first = engine.ingest("u1", "text to recycle", "a.txt")
        engine.purge(first.document_id)
        again = engine.ingest("u1", "text to recycle", "a.txt")
        assert again.status == IngestStatus.CREATED

    def test_purge_unknown(self, engine):
        with pytest.raises(DocumentNotFoundError):
            engine.purge("missing")

    def test_text_store_failure_keeps_record(self, make_engine, config, caplog):
        broken = BrokenTextIndex(config.db_path, fail_delete=True)
        engine = make_engine(text_index=broken)
        result = engine.ingest("u1", words(400), "a.txt")

        with caplog.at_level(logging.ERROR, logger="docsift.pipeline"):
            purge = engine.purge(result.document_id)

        assert purge.vector_purged is True
        assert purge.text_purged is False
        assert not purge.ok
        assert broken.delete_attempts == config.index_write_attempts
        assert engine.get_document(result.document_id) is not None
        assert "inconsistency" in caplog.text

        broken.fail_delete = False
        retry = engine.purge(result.document_id)
        assert retry.ok
        assert engine.get_document(result.document_id) is None
        assert broken.count() == 0

    def test_vector_save_failure_is_retried_before_success(self, make_engine, config):
        index = SaveFailingVectorIndex(config.index_path, config.embedding_dim, dtype=config.dtype)
        engine = make_engine(vector_index=index)
        result = engine.ingest("u1", words(400), "a.txt")
        assert len(index) == 2

        index.fail_saves = 1
        purge = engine.purge(result.document_id)

        assert purge.ok and purge.document_deleted
        reloaded = USearchVectorIndex(config.index_path, config.embedding_dim, dtype=config.dtype)
        assert len(reloaded) == 0

    def test_vector_save_outage_keeps_record(self, make_engine, config):
        index = SaveFailingVectorIndex(config.index_path, config.embedding_dim, dtype=config.dtype)
        engine = make_engine(vector_index=index)
        result = engine.ingest("u1", words(400), "a.txt")

        index.fail_saves = config.index_write_attempts
        purge = engine.purge(result.document_id)

        assert purge.vector_purged is False
        assert not purge.document_deleted
        assert engine.get_document(result.document_id) is not None
        reloaded = USearchVectorIndex(config.index_path, config.embedding_dim, dtype=config.dtype)
        assert len(reloaded) == 2

        retry = engine.purge(result.document_id)
        assert retry.ok
        assert len(USearchVectorIndex(config.index_path, config.embedding_dim, dtype=config.dtype)) == 0
