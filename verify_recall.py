"""
verify_recall.py: Memory Retrieval Verification

Indexes a short exchange for a throwaway owner against the live Gemini
embedding model, retrieves it back, shows the injected history, and
deletes the owner again.

Run:  python verify_recall.py
"""

import asyncio
import sys
import uuid
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))

from recall.src.core.memory_service import build_memory_service


async def main():
    memory = build_memory_service()
    owner_id = str(uuid.uuid4())
    conversation_id = str(uuid.uuid4())

    print(f"Store: {memory.stats()}\n")

    await memory.add_message(owner_id, conversation_id, str(uuid.uuid4()), "user", "My favorite animal is dogs, especially beagles.", "Pets")
    await memory.add_message(owner_id, conversation_id, str(uuid.uuid4()), "agent", "Beagles are wonderful, curious dogs!", "Pets")

    # -- Query --
    query = "what is my favorite animal?"
    print(f"Query: {query}")
    print(f"Triggers retrieval: {memory.should_retrieve(query)}")
    print("=" * 60)

    results = await memory.retrieve(owner_id, query, 5)
    for i, result in enumerate(results, 1):
        print(f"\n--- Result {i} ({result.source}) ---")
        print(f"  Role:   {result.role.value}")
        print(f"  Score:  {result.score:.4f}")
        print(f"  Title:  {result.conversation_title}")
        print(f"  Text:   {result.text}")

    print("\n" + "=" * 60)
    print("TOOL OUTPUT:")
    print(await memory.search_chat_history(owner_id, query))

    print("\n" + "=" * 60)
    print("INJECTED HISTORY:")
    for turn in memory.inject([], results):
        print(f"\n[{turn['role']}]\n{turn['text']}")

    # -- Cleanup --
    removed = await memory.delete_owner(owner_id)
    print(f"\nCleanup: deleted {removed} record(s).")


if __name__ == "__main__":
    asyncio.run(main())
