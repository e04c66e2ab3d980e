#!/usr/bin/env python3
"""
Example 1: Ingestion and Cascading Search with Docsift

This example demonstrates:
- Creating a Docsift instance
- Ingesting documents for an owner (and what happens to duplicates)
- Searching through the vector -> text -> live cascade
- Purging a document

Requirements:
    pip install docsift
    export OPENAI_API_KEY=sk-...
"""

import os

# Ensure API key is set
if not os.environ.get("OPENAI_API_KEY"):
    print("Set OPENAI_API_KEY environment variable")
    print("   export OPENAI_API_KEY=sk-...")
    exit(1)

from docsift import create_docsift, get_cache
from docsift.logging_setup import setup_logging


HANDBOOK = """
Refund policy. Customers may return any product within thirty days of purchase
for a full refund. Items must be unused and in their original packaging.
Refunds are issued to the original payment method within five business days.

Shipping. Standard shipping takes three to five business days. Express shipping
is available for an additional fee and arrives within two business days.
"""

ONBOARDING = """
Welcome to the team. During your first week you will meet your mentor, set up
your development environment, and ship a small change to production.
"""


def main():
    setup_logging("warning")

    print("=" * 60)
    print("Example 1: Ingestion and Cascading Search")
    print("=" * 60)

    # ============================================================
    # Step 1: Create Docsift instance
    # ============================================================
    print("\nCreating Docsift instance...")
    engine = create_docsift(
        db_path="example.db",
        index_path="example.usearch",
        corpus_dir="example_corpus",
        chunk_words=120,
    )

    # ============================================================
    # Step 2: Ingest documents
    # ============================================================
    print("\nIngesting documents...")
    for text, name in ((HANDBOOK, "customer_handbook.txt"), (ONBOARDING, "onboarding.md")):
        result = engine.ingest("alice", text, name)
        print(f"   {name}: {result.status.value} "
              f"({result.indexed_chunk_count}/{result.total_chunk_count} chunks)")

    # Same content again is refused, a similar filename is only a hint
    again = engine.ingest("alice", HANDBOOK, "customer_handbook_copy.txt")
    print(f"   customer_handbook_copy.txt: {again.status.value}")
    revised = engine.ingest("alice", HANDBOOK + "\nUpdated March.", "customer_handbook_v2.txt")
    similar = ", ".join(d.display_name for d in revised.similar_documents)
    print(f"   customer_handbook_v2.txt: {revised.status.value} (similar to: {similar})")

    # ============================================================
    # Step 3: Search
    # ============================================================
    for query in ("Can I get my money back?", "express shipping fee", "mentor"):
        outcome = engine.search_outcome(query, k=3, owner_id="alice")
        tier = outcome.tier.value if outcome.tier else "none"
        print(f"\nQuery: {query!r} -> {tier} tier")
        for i, r in enumerate(outcome.results, 1):
            print(f"   {i}. [{r.score:.3f}] {r.display_name}: {r.snippet[:80].strip()}...")

    # ============================================================
    # Step 4: Purge and statistics
    # ============================================================
    purge = engine.purge(revised.document_id)
    print(f"\nPurged revised handbook: {purge.to_dict()}")

    stats = engine.get_stats()
    print(f"\nDocuments: {stats['documents']}, vectors: {stats['vector_entries']}")
    print(f"Cache: {get_cache().stats()}")

    engine.close()
    print("\nDone!")


if __name__ == "__main__":
    main()
