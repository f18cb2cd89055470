from __future__ import annotations

import atexit
import os
import threading
from typing import Any, Dict, Optional

try:
    from mcp.server.fastmcp import FastMCP
except Exception as exc:  # pragma: no cover
    raise SystemExit(
        "mcp package is required for the MCP server. Install with `pip install -e .`"
    ) from exc

from .store import MemoryStore


def build_store() -> MemoryStore:
    return MemoryStore(os.environ.get("ASSISTMEM_DB") or None, check_same_thread=False)


def _fact_dict(fact) -> Dict[str, Any]:
    return {
        "id": fact.id,
        "category": fact.category,
        "subject": fact.subject,
        "content": fact.content,
        "updated_at": fact.updated_at,
    }


def build_server(store_factory=build_store) -> FastMCP:
    mcp = FastMCP("assistmem")
    store_lock = threading.Lock()
    holder: Dict[str, MemoryStore] = {}

    def get_store() -> MemoryStore:
        with store_lock:
            store = holder.get("store")
            if store is None:
                store = store_factory()
                holder["store"] = store
            return store

    def close_store() -> None:
        with store_lock:
            store = holder.pop("store", None)
        if store is not None:
            store.close()

    atexit.register(close_store)

    @mcp.tool()
    async def remember(category: str, subject: str, content: str) -> Dict[str, Any]:
        """Save or update a long-term fact about the user (category + subject is the key)."""

        fact_id = get_store().save_fact(category, subject, content)
        return {"id": fact_id, "category": category, "subject": subject}

    @mcp.tool()
    def forget(
        fact_id: Optional[int] = None,
        category: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Delete a fact by id, or by category and subject."""

        store = get_store()
        if fact_id is not None:
            return {"deleted": store.delete_fact(fact_id)}
        if category is not None and subject is not None:
            return {"deleted": store.delete_fact_by_subject(category, subject)}
        return {"deleted": False, "error": "fact_id or category+subject required"}

    @mcp.tool()
    def list_facts(category: Optional[str] = None) -> Dict[str, Any]:
        store = get_store()
        facts = store.get_facts_by_category(category) if category else store.get_all_facts()
        return {"items": [_fact_dict(fact) for fact in facts]}

    @mcp.tool()
    async def memory_search(query: str, limit: int = 6) -> Dict[str, Any]:
        """Hybrid semantic + keyword search over stored facts."""

        results = await get_store().search_facts_hybrid(query, limit=limit)
        return {
            "items": [
                {**_fact_dict(item.fact), "score": round(item.score, 4)} for item in results
            ]
        }

    @mcp.tool()
    def soul_set(aspect: str, content: str) -> Dict[str, Any]:
        return {"id": get_store().set_soul_aspect(aspect, content), "aspect": aspect}

    @mcp.tool()
    def soul_get(aspect: str) -> Dict[str, Any]:
        item = get_store().get_soul_aspect(aspect)
        if item is None:
            return {"item": None}
        return {"item": {"id": item.id, "aspect": item.aspect, "content": item.content}}

    @mcp.tool()
    def soul_list() -> Dict[str, Any]:
        return {
            "items": [
                {"id": item.id, "aspect": item.aspect, "content": item.content}
                for item in get_store().list_soul_aspects()
            ]
        }

    @mcp.tool()
    def soul_delete(aspect_id: int) -> Dict[str, Any]:
        return {"deleted": get_store().delete_soul_aspect(aspect_id)}

    return mcp


def run() -> None:
    server = build_server()
    server.run()


if __name__ == "__main__":
    run()
