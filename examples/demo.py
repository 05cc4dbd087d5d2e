#!/usr/bin/env python3
"""
lorekeeper demo: an NPC remembers, recalls, and slowly forgets.

No model download. Uses the built-in hashing encoder.
"""

import asyncio
import os
import tempfile

from lorekeeper import MemoryStore, format_memories_for_context

INNKEEPER = 1


def header(text):
    print(f"\n{'='*64}")
    print(f"  {text}")
    print(f"{'='*64}\n")


def show(store, label=""):
    memories = store.get_memories_for_entity(INNKEEPER)
    if label:
        print(f"  [{label}] {len(memories)} memories:")
    for m in memories:
        n = min(20, int(m.frecency * 10))
        bar = "█" * n + "░" * (20 - n)
        print(f"    {bar} {m.frecency:.3f} | {m.content[:55]}")
    print()


async def run(store):
    header("LOREKEEPER: the innkeeper's memory")

    await store.add_memory(INNKEEPER, "Alice the ranger drinks green tea every morning",
                           source_channel_id="tavern", source_guild_id="realm")
    await store.add_memory(INNKEEPER, "Bob the smith owes three silver for his room",
                           source_channel_id="tavern", source_guild_id="realm")
    await store.add_memory(INNKEEPER, "A dragon was seen over the northern ridge",
                           source_channel_id="watchtower", source_guild_id="realm")
    show(store, "after a week")

    header("Conversation: the last few chat turns")
    turns = [
        "Alice: Morning! The usual, please.",
        "Innkeeper: Of course. Anything else?",
        "Alice: Any news of the dragon on the ridge?",
    ]
    for t in turns:
        print(f"    {t}")
    memories = await store.retrieve_relevant_memories(INNKEEPER, turns, "global")
    print()
    print(format_memories_for_context("Innkeeper", INNKEEPER, memories))
    show(store, "retrieved memories got a boost")

    header("Only what was said in the tavern")
    results = await store.search_memories_by_similarity(
        INNKEEPER, turns, "channel", channel_id="tavern", min_similarity=0.0,
    )
    for r in results:
        print(f"    {r.similarity:.3f} | {r.memory.content}")

    header("A hundred quiet days")
    for _ in range(100):
        store.decay_all_frecency(0.96)
    show(store, "decayed")
    removed = store.cleanup_low_frecency_memories()
    print(f"  Forgotten: {removed}")
    show(store, "what is left")


def main():
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    try:
        with MemoryStore(db_path) as store:
            asyncio.run(run(store))
    finally:
        for suffix in ("", "-wal", "-shm"):
            if os.path.exists(db_path + suffix):
                os.unlink(db_path + suffix)


if __name__ == "__main__":
    main()
