"""Tests for content and filename fingerprints."""
from docsift.hashing import ContentHasher, normalize_filename, normalize_text


class TestNormalizeText:
    def test_collapses_whitespace_runs(self):
        assert normalize_text("  a \t b\n\n c  ") == "a b c"

    def test_empty(self):
        assert normalize_text(" \n\t ") == ""


class TestNormalizeFilename:
    def test_drops_directory_and_extension(self):
        assert normalize_filename("uploads/Q3_Pricing-Sheet.v2.PDF") == "q3 pricing sheet v2"

    def test_windows_paths(self):
        assert normalize_filename("C:\\docs\\Refund_Policy.docx") == "refund policy"

    def test_dotfile_keeps_name(self):
        assert normalize_filename(".env") == "env"


class TestContentHasher:
    def test_deterministic(self):
        hasher = ContentHasher()
        assert hasher.hash("hello world") == hasher.hash("hello world")

    def test_whitespace_insensitive(self):
        hasher = ContentHasher()
        assert hasher.hash("hello   world\n") == hasher.hash("hello world")

    def test_order_sensitive(self):
        hasher = ContentHasher()
        assert hasher.hash("hello world") != hasher.hash("world hello")

    def test_case_sensitive(self):
        hasher = ContentHasher()
        assert hasher.hash("Refund") != hasher.hash("refund")

    def test_fingerprint_is_sha256_hex(self):
        digest = ContentHasher().hash("x")
        assert len(digest) == 64
        int(digest, 16)

    def test_name_hash_ignores_cosmetics(self):
        hasher = ContentHasher()
        assert hasher.name_hash("Refund_Policy.pdf") == hasher.name_hash("refund-policy.txt")

    def test_large_document(self):
        text = "lorem ipsum " * 100_000
        assert len(ContentHasher().hash(text)) == 64
