"""lorekeeper CLI — inspect memories and run the periodic maintenance jobs.

    lorekeeper decay            # cron: multiply every frecency by the decay factor
    lorekeeper cleanup          # cron: drop memories that faded out
    lorekeeper search 7 "what does Alice like?"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from lorekeeper.config import ENCODERS, Settings
from lorekeeper.debug import embedding_coverage, embedding_status
from lorekeeper.errors import LorekeeperError
from lorekeeper.memory import MemoryStore
from lorekeeper.models import MemoryScope


def cmd_add(store: MemoryStore, args) -> None:
    mem = asyncio.run(store.add_memory(
        args.entity, args.text,
        source_channel_id=args.channel, source_guild_id=args.guild,
    ))
    print(f"Added memory {mem.id} for entity {mem.entity_id}")


def cmd_list(store: MemoryStore, args) -> None:
    memories = store.get_memories_for_entity(args.entity)
    if not memories:
        print(f"No memories for entity {args.entity}")
        return
    for m in memories:
        print(f"  [{m.id:>5}] {m.frecency:6.3f} | {m.content[:70]}")


def cmd_search(store: MemoryStore, args) -> None:
    results = asyncio.run(store.search_memories_by_similarity(
        args.entity, args.query, args.scope, args.channel, args.guild,
        min_similarity=args.min_similarity, limit=args.limit,
    ))
    if not results:
        print("No matching memories")
        return
    for r in results:
        print(f"  {r.similarity:.3f} [{r.memory.id:>5}] {r.memory.content[:70]}")


def cmd_decay(store: MemoryStore, args) -> None:
    count = store.decay_all_frecency(args.factor)
    print(f"Decayed {count} memories")


def cmd_cleanup(store: MemoryStore, args) -> None:
    count = store.cleanup_low_frecency_memories(args.threshold)
    print(f"Removed {count} memories")


def cmd_status(store: MemoryStore, args) -> None:
    status = embedding_status(store.embedder)
    print(f"Database:   {store.storage.path}")
    print(f"Memories:   {store.count}")
    print(f"Encoder:    {status.model_name} ({status.dimensions}d)")
    if status.cache is not None:
        print(f"Cache:      max {status.cache.max_size} entries, ttl {status.cache.ttl:.0f}s")
    if args.entity is not None:
        cov = embedding_coverage(store.storage, args.entity)
        print(f"Coverage:   {cov.with_embedding}/{cov.total} embedded for entity {args.entity}")
        if cov.missing_ids:
            print(f"Missing:    {', '.join(str(i) for i in cov.missing_ids)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lorekeeper",
        description="lorekeeper — semantic memory for roleplay entities",
    )
    parser.add_argument("--db", help="SQLite file (default: $LOREKEEPER_DB_PATH or lorekeeper.db)")
    parser.add_argument("--encoder", choices=ENCODERS, help="Text encoder to use")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    add_parser = subparsers.add_parser("add", help="Add a memory to an entity")
    add_parser.add_argument("entity", type=int)
    add_parser.add_argument("text")
    add_parser.add_argument("--channel", help="Source channel id")
    add_parser.add_argument("--guild", help="Source guild id")

    list_parser = subparsers.add_parser("list", help="List an entity's memories by frecency")
    list_parser.add_argument("entity", type=int)

    search_parser = subparsers.add_parser("search", help="Rank memories against query texts")
    search_parser.add_argument("entity", type=int)
    search_parser.add_argument("query", nargs="+", help="One or more query texts")
    search_parser.add_argument("--scope", default=MemoryScope.GLOBAL.value,
                               choices=[s.value for s in MemoryScope])
    search_parser.add_argument("--channel", help="Channel id for --scope channel")
    search_parser.add_argument("--guild", help="Guild id for --scope guild")
    search_parser.add_argument("--min-similarity", type=float, default=None)
    search_parser.add_argument("--limit", type=int, default=None)

    decay_parser = subparsers.add_parser("decay", help="Decay every memory's frecency")
    decay_parser.add_argument("--factor", type=float, default=None)

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete low-frecency memories")
    cleanup_parser.add_argument("--threshold", type=float, default=None)

    status_parser = subparsers.add_parser("status", help="Show store and encoder status")
    status_parser.add_argument("--entity", type=int, default=None,
                               help="Also report embedding coverage for this entity")
    return parser


COMMANDS = {
    "add": cmd_add,
    "list": cmd_list,
    "search": cmd_search,
    "decay": cmd_decay,
    "cleanup": cmd_cleanup,
    "status": cmd_status,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command not in COMMANDS:
        parser.print_help()
        return 0

    try:
        overrides = {}
        if args.db:
            overrides["db_path"] = args.db
        if args.encoder:
            overrides["encoder"] = args.encoder
        settings = Settings(**overrides)
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        with MemoryStore(settings=settings) as store:
            COMMANDS[args.command](store, args)
    except (LorekeeperError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
