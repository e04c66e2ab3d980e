"""CLI for the Docsift engine."""

import argparse
import json
import os
import sys
from typing import Optional

from .config import DocsiftConfig
from .errors import CorpusScanError, DocumentNotFoundError
from .logging_setup import setup_logging

# Set USER_AGENT to suppress langchain warning
if not os.environ.get("USER_AGENT"):
    os.environ["USER_AGENT"] = "docsift/1.0.0"


def _config(args: argparse.Namespace) -> DocsiftConfig:
    overrides = {}
    if args.db:
        overrides["db_path"] = args.db
    if args.index:
        overrides["index_path"] = args.index
    if args.corpus:
        overrides["corpus_dir"] = args.corpus
    return DocsiftConfig.from_env(**overrides)


def _engine(args: argparse.Namespace):
    from .engine import Docsift

    return Docsift(_config(args))


def ingest(args: argparse.Namespace) -> int:
    """Ingest files and directories for one owner."""
    from .loaders import load_sources

    sources = load_sources(args.paths, recursive=not args.no_recursive)
    if not sources:
        print("No readable documents found", file=sys.stderr)
        return 1

    counts = {"created": 0, "duplicate": 0, "partial": 0}
    with _engine(args) as engine:
        for src in sources:
            result = engine.ingest(
                args.owner,
                src.text,
                src.path.name,
                src.mime_type,
                byte_size=src.byte_size,
                metadata={"source": str(src.path)},
            )
            counts[result.status.value] += 1
            line = (
                f"{result.status.value:<9} {src.path}  "
                f"{result.indexed_chunk_count}/{result.total_chunk_count} chunks"
            )
            if result.similar_documents:
                names = ", ".join(d.display_name for d in result.similar_documents)
                line += f"  (similar: {names})"
            print(line)

    print(
        f"\n{counts['created']} created, {counts['partial']} partial, "
        f"{counts['duplicate']} duplicate"
    )
    return 0


def search(args: argparse.Namespace) -> int:
    """Run a cascading search."""
    with _engine(args) as engine:
        try:
            outcome = engine.search_outcome(args.query, args.k, owner_id=args.owner)
        except (CorpusScanError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2))
        return 0

    if not outcome.results:
        tried = ", ".join(t.value for t in outcome.attempted) or "none"
        print(f"No results (tiers tried: {tried})")
        return 0

    print(f"=== {outcome.tier.value} tier ===")
    for i, r in enumerate(outcome.results, 1):
        print(f"{i}. [{r.score:.3f}] {r.display_name} #{r.ordinal}: {r.snippet[:100]}...")
    return 0


def purge(args: argparse.Namespace) -> int:
    """Remove a document from both indexes."""
    with _engine(args) as engine:
        try:
            result = engine.purge(args.document_id)
        except DocumentNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.ok else 1


def list_documents(args: argparse.Namespace) -> int:
    """List documents, newest first."""
    with _engine(args) as engine:
        docs = engine.list_documents(args.owner)
    for doc in docs:
        print(
            f"{doc.id}  {doc.index_state.value:<9} "
            f"{doc.indexed_chunk_count}/{doc.total_chunk_count}  "
            f"{doc.owner_id}  {doc.display_name}"
        )
    return 0


def stats(args: argparse.Namespace) -> int:
    """Show engine statistics."""
    with _engine(args) as engine:
        info = engine.get_stats()
    print(json.dumps(info, indent=2))
    return 0


def serve(args: argparse.Namespace) -> int:
    """Start the REST API server."""
    try:
        import uvicorn
        from .api import create_app
    except ImportError:
        print("Error: API dependencies not installed.", file=sys.stderr)
        print("  Run: pip install 'docsift[api]'", file=sys.stderr)
        return 1

    config = _config(args)
    app = create_app(config)

    print(f"Starting Docsift API server on http://{args.host}:{args.port}")
    print(f"  Database: {config.db_path}")
    print(f"  Index: {config.index_path}")
    print(f"  Docs: http://{args.host}:{args.port}/docs\n")

    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsift",
        description="Docsift - document indexing and cascading retrieval",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  docsift ingest ./docs --owner alice
  docsift search "refund policy" --owner alice -k 3
  docsift purge 3f9c0a...
  docsift serve

Environment variables:
  OPENAI_API_KEY    Required for OpenAI embeddings
  HF_TOKEN          Optional for HuggingFace models
  JINA_API_KEY      Required for Jina AI embeddings
  DOCSIFT_*         Any DocsiftConfig field, e.g. DOCSIFT_CHUNK_WORDS=150
  LOG_LEVEL         debug, info, warning, error
"""
    )

    parser.add_argument(
        "--version", action="version", version="%(prog)s 1.0.0"
    )
    parser.add_argument("--db", type=str, help="Database path (default: docsift.db)")
    parser.add_argument("--index", type=str, help="Index path (default: docsift.usearch)")
    parser.add_argument("--corpus", type=str, help="Stored sources directory (default: docsift_corpus)")
    parser.add_argument("--log-level", type=str, default=None, help="Log level (default: $LOG_LEVEL or info)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest files or directories")
    ingest_parser.add_argument("paths", nargs="+", help="Files or directories (.txt, .md, .mdx, .pdf)")
    ingest_parser.add_argument("--owner", required=True, help="Owner id")
    ingest_parser.add_argument("--no-recursive", action="store_true", help="Do not descend into subdirectories")
    ingest_parser.set_defaults(func=ingest)

    search_parser = subparsers.add_parser("search", help="Search documents")
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument("--owner", default=None, help="Restrict to one owner")
    search_parser.add_argument("-k", type=int, default=None, help="Number of results")
    search_parser.add_argument("--json", action="store_true", help="Print JSON")
    search_parser.set_defaults(func=search)

    purge_parser = subparsers.add_parser("purge", help="Delete a document and its chunks")
    purge_parser.add_argument("document_id", help="Document id")
    purge_parser.set_defaults(func=purge)

    list_parser = subparsers.add_parser("list", help="List documents")
    list_parser.add_argument("--owner", default=None, help="Restrict to one owner")
    list_parser.set_defaults(func=list_documents)

    stats_parser = subparsers.add_parser("stats", help="Show engine statistics")
    stats_parser.set_defaults(func=stats)

    serve_parser = subparsers.add_parser("serve", help="Start REST API server")
    serve_parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="Host to bind (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=8000, help="Port to bind (default: 8000)"
    )
    serve_parser.set_defaults(func=serve)

    return parser


def main(argv: Optional[list] = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    setup_logging(args.log_level)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
