#!/usr/bin/env python3
"""
Command-line interface for agent-contextgraph.

Usage:
    ctxgraph init
    ctxgraph extract transcript.md --chat c1 --project my-app
    ctxgraph import export.json --project my-app
    ctxgraph search "session storage" -n 5
    ctxgraph related ctx_1234
    ctxgraph evolution ctx_1234 --depth 5
    ctxgraph inject "how do we store sessions?" --max-tokens 1500
    ctxgraph chats --project my-app
    ctxgraph link ctx_a ctx_b REFERENCES
    ctxgraph graph --project my-app --format mermaid
    ctxgraph stats
"""

import argparse
import json
import sys
from pathlib import Path

from .config import Config
from .errors import ContextGraphError
from .graph import ContextGraph


def _open(args) -> ContextGraph:
    if Path(args.config).exists():
        return ContextGraph(Config.load(args.config))
    return ContextGraph(Config.default("."))


def _read_input(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text()


def _parse_props(pairs) -> dict:
    """Parse key=value pairs; values are JSON when they parse as JSON."""
    props = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ContextGraphError(f"Property must be key=value: {pair}")
        key, value = pair.split("=", 1)
        try:
            props[key] = json.loads(value)
        except json.JSONDecodeError:
            props[key] = value
    return props


def cmd_init(args):
    """Initialize contextgraph in current directory."""
    config_path = Path(args.output or "contextgraph.yaml")

    if config_path.exists() and not args.force:
        print(f"Config already exists: {config_path}")
        print("Use --force to overwrite.")
        return

    config = Config.default(".")
    config.save(str(config_path))
    print(f"✓ Created config: {config_path}")

    graph = ContextGraph(config)
    try:
        print(f"✓ Database: {config.db_path}")
    finally:
        graph.close()


def cmd_extract(args):
    """Extract context from a transcript file."""
    graph = _open(args)
    try:
        summary = graph.extract_context(
            _read_input(args.file),
            chat_id=args.chat,
            project_id=args.project,
            max_items=args.max_items,
            chat_title=args.title,
        )
        print(f"✓ Extracted {summary.contexts_extracted} contexts, "
              f"{summary.relationships_created} relationships "
              f"({summary.total_tokens} tokens, {summary.elapsed_ms:.1f}ms)")
        for context_type, count in sorted(summary.by_type.items()):
            print(f"  {context_type:<12} {count}")
    finally:
        graph.close()


def cmd_import(args):
    """Import an exported chat (JSON with messages)."""
    graph = _open(args)
    try:
        summary = graph.import_export(_read_input(args.file), project_id=args.project, max_items=args.max_items)
        print(f"✓ Imported chat {summary.chat_id}: {summary.contexts_extracted} contexts, "
              f"{summary.relationships_created} relationships")
    finally:
        graph.close()


def cmd_search(args):
    """Search stored context."""
    graph = _open(args)
    try:
        results = graph.search_context(
            " ".join(args.query),
            types=args.type,
            limit=args.limit,
            project_id=args.project,
            use_semantic=not args.keyword,
        )
        if results:
            print(f"Strategy: {graph.search.last_strategy}\n")
            for r in results:
                print(r)
                for h in r.highlights:
                    print(f"    * {h}")
                print()
        else:
            print("No results found.")
    finally:
        graph.close()


def cmd_related(args):
    """Show items related to a context item."""
    graph = _open(args)
    try:
        results = graph.find_related(args.id, limit=args.limit)
        if results:
            for r in results:
                print(r)
                print()
        else:
            print("No related contexts found.")
    finally:
        graph.close()


def cmd_evolution(args):
    """Show the evolution chain of a context item."""
    graph = _open(args)
    try:
        chain = graph.get_evolution_chain(args.id, depth=args.depth)
        if not chain.items:
            print(f"Context not found: {args.id}")
        else:
            print(f"{len(chain.items)} versions, {chain.total_evolutions} evolutions\n")
            for item in chain.items:
                snippet = item.content[:120].replace("\n", " ")
                print(f"[{item.timestamp.isoformat()}] {item.id}")
                print(f"  > {snippet}")
    finally:
        graph.close()


def cmd_inject(args):
    """Print a token-budgeted context block for a query."""
    graph = _open(args)
    try:
        response = graph.inject_context(
            " ".join(args.query),
            max_tokens=args.max_tokens,
            format=args.format,
            project_id=args.project,
        )
        if args.json:
            print(json.dumps({
                "context": response.text,
                "tokens_used": response.tokens_used,
                "max_tokens": response.selection.max_tokens,
                "strategy": response.strategy,
                "contexts": [
                    {"id": e.context.id, "format": e.format, "tokens": e.tokens, "score": round(e.score, 4)}
                    for e in response.selection.entries
                ],
            }, indent=2))
        else:
            print(response.text)
            print(f"({response.tokens_used}/{response.selection.max_tokens} tokens, strategy: {response.strategy})")
    finally:
        graph.close()


def cmd_chats(args):
    """List chats."""
    graph = _open(args)
    try:
        chats = graph.list_chats(project_id=args.project, limit=args.limit, offset=args.offset)
        if chats:
            print(f"{'Chat':<28} {'Project':<16} {'Contexts':>8} {'Tokens':>8}  Title")
            print("-" * 80)
            for c in chats:
                print(f"{c.id:<28} {c.project_id:<16} {c.context_count:>8} {c.token_count:>8}  {c.title}")
        else:
            print("No chats found.")
    finally:
        graph.close()


def cmd_link(args):
    """Create, update or delete a relationship."""
    graph = _open(args)
    try:
        props = _parse_props(args.prop)
        rel = graph.manage_relationship(args.from_id, args.to_id, args.type, action=args.action, properties=props)
        if rel is None:
            print(f"✓ Deleted {args.from_id} -[{args.type.upper()}]-> {args.to_id}")
        else:
            print(f"✓ {args.action.capitalize()}d {rel.from_id} -[{rel.type.value}]-> {rel.to_id} {rel.properties}")
    finally:
        graph.close()


def cmd_graph(args):
    """Render part of the graph."""
    graph = _open(args)
    try:
        viz = graph.visualize_graph(
            project_id=args.project,
            chat_id=args.chat,
            depth=args.depth,
            format=args.format,
        )
        print(viz.content)
        print(f"({viz.nodes} nodes, {viz.edges} edges)", file=sys.stderr)
    finally:
        graph.close()


def cmd_stats(args):
    """Show graph statistics."""
    graph = _open(args)
    try:
        stats = graph.stats()
        print(f"Database: {stats['db_path']}")
        print(f"Embedder: {stats['embedder']}")
        print(f"Vector search: {'yes' if stats['vector_search'] else 'no (keyword only)'}")
        print(f"Tokenizer: {stats['tokenizer']}")
        print(f"Chats: {stats['chats']}")
        print(f"Contexts: {stats['contexts']}")
        print(f"Relationships: {stats['relationships']}")
    finally:
        graph.close()


def main():
    parser = argparse.ArgumentParser(
        description="Cross-session context graph for AI agents",
        prog="ctxgraph"
    )
    parser.add_argument(
        "-c", "--config",
        default="contextgraph.yaml",
        help="Path to config file (default: contextgraph.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    p_init = subparsers.add_parser("init", help="Initialize contextgraph")
    p_init.add_argument("-o", "--output", help="Config file path")
    p_init.add_argument("-f", "--force", action="store_true", help="Overwrite existing")
    p_init.set_defaults(func=cmd_init)

    # extract
    p_extract = subparsers.add_parser("extract", help="Extract context from a transcript")
    p_extract.add_argument("file", help="Transcript file ('-' for stdin)")
    p_extract.add_argument("--chat", required=True, help="Chat ID")
    p_extract.add_argument("--project", required=True, help="Project ID")
    p_extract.add_argument("--title", help="Chat title")
    p_extract.add_argument("-n", "--max-items", type=int, help="Max contexts to keep")
    p_extract.set_defaults(func=cmd_extract)

    # import
    p_import = subparsers.add_parser("import", help="Import an exported chat (JSON)")
    p_import.add_argument("file", help="Export file ('-' for stdin)")
    p_import.add_argument("--project", required=True, help="Project ID")
    p_import.add_argument("-n", "--max-items", type=int, help="Max contexts to keep")
    p_import.set_defaults(func=cmd_import)

    # search
    p_search = subparsers.add_parser("search", help="Search stored context")
    p_search.add_argument("query", nargs="+", help="Search query")
    p_search.add_argument("-n", "--limit", type=int, help="Max results (default: search.default_limit)")
    p_search.add_argument("-t", "--type", action="append", help="Context type filter (repeatable)")
    p_search.add_argument("-p", "--project", help="Project ID")
    p_search.add_argument("-k", "--keyword", action="store_true", help="Keyword search only")
    p_search.set_defaults(func=cmd_search)

    # related
    p_related = subparsers.add_parser("related", help="Show related contexts")
    p_related.add_argument("id", help="Context ID")
    p_related.add_argument("-n", "--limit", type=int, help="Max results (default: search.default_limit)")
    p_related.set_defaults(func=cmd_related)

    # evolution
    p_evolution = subparsers.add_parser("evolution", help="Show how a context evolved")
    p_evolution.add_argument("id", help="Context ID")
    p_evolution.add_argument("-d", "--depth", type=int, default=5, help="Max hops (1-10)")
    p_evolution.set_defaults(func=cmd_evolution)

    # inject
    p_inject = subparsers.add_parser("inject", help="Build a context block for a query")
    p_inject.add_argument("query", nargs="+", help="Query to inject context for")
    p_inject.add_argument("-b", "--max-tokens", type=int, help="Token budget")
    p_inject.add_argument("-f", "--format", choices=["full", "summary", "reference"], default="full",
                          help="Preferred format")
    p_inject.add_argument("-p", "--project", help="Project ID")
    p_inject.add_argument("--json", action="store_true", help="Output as JSON")
    p_inject.set_defaults(func=cmd_inject)

    # chats
    p_chats = subparsers.add_parser("chats", help="List chats")
    p_chats.add_argument("-p", "--project", help="Project ID")
    p_chats.add_argument("-n", "--limit", type=int, default=20, help="Max chats (1-50)")
    p_chats.add_argument("--offset", type=int, default=0, help="Skip this many chats")
    p_chats.set_defaults(func=cmd_chats)

    # link
    p_link = subparsers.add_parser("link", help="Create, update or delete a relationship")
    p_link.add_argument("from_id", help="Source node ID")
    p_link.add_argument("to_id", help="Target node ID")
    p_link.add_argument("type", help="Relationship type (e.g. REFERENCES)")
    p_link.add_argument("-a", "--action", choices=["create", "update", "delete"], default="create")
    p_link.add_argument("--prop", action="append", help="Property key=value (repeatable)")
    p_link.set_defaults(func=cmd_link)

    # graph
    p_graph = subparsers.add_parser("graph", help="Render the graph")
    p_graph.add_argument("-p", "--project", help="Project ID")
    p_graph.add_argument("--chat", help="Chat ID")
    p_graph.add_argument("-d", "--depth", type=int, default=2, help="Hops to follow (1-3)")
    p_graph.add_argument("-f", "--format", choices=["mermaid", "graphviz", "json"], default="mermaid")
    p_graph.set_defaults(func=cmd_graph)

    # stats
    p_stats = subparsers.add_parser("stats", help="Show statistics")
    p_stats.set_defaults(func=cmd_stats)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except ContextGraphError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nAborted.")
        sys.exit(1)


if __name__ == "__main__":
    main()
