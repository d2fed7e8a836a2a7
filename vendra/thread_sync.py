"""Client-side thread synchronisation.

``ThreadStore`` is the local view of one conversation. Realtime events and
reconciliation batches are merged into it by message id, so a message that
arrives over the socket and again through polling is stored once.

``ThreadPoller`` runs the reconciliation pass against
``GET /api/v1/messages`` every few seconds. Its cursor only advances from
server responses, never from socket events, so an event delivered out of
order cannot hide an earlier message the socket dropped.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

logger = logging.getLogger("vendra.thread_sync")

POLL_INTERVAL_SECONDS = 4.0


def _sort_key(message: Dict[str, Any]):
    return (message.get("created_at") or "", message["id"])


class ThreadStore:
    def __init__(self) -> None:
        self._by_id: Dict[int, Dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._by_id

    def add(self, message: Dict[str, Any]) -> bool:
        """Insert or refresh a message; True only when the id was not known yet."""
        message_id = message["id"]
        is_new = message_id not in self._by_id
        if is_new:
            self._by_id[message_id] = dict(message)
        else:
            # Later copies may carry read_at; keep the newest field values
            self._by_id[message_id].update(message)
        return is_new

    def merge(self, batch: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Merge a batch, returning the messages that were new, in thread order."""
        added = [m for m in batch if self.add(m)]
        return sorted(added, key=_sort_key)

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return sorted(self._by_id.values(), key=_sort_key)

    @property
    def last_id(self) -> Optional[int]:
        return max(self._by_id) if self._by_id else None


class ThreadPoller:
    """Keeps a ThreadStore in sync with the server for one counterpart user."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        with_user_id: int,
        store: Optional[ThreadStore] = None,
        interval: float = POLL_INTERVAL_SECONDS,
        page_size: int = 100,
    ) -> None:
        self.client = client
        self.with_user_id = with_user_id
        self.store = store or ThreadStore()
        self.interval = interval
        self.page_size = page_size
        # Highest id confirmed by a reconciliation response
        self.synced_id: Optional[int] = None

    def on_event(self, event: Dict[str, Any]) -> bool:
        """Apply a realtime message event; returns True when it was new."""
        if event.get("type", "message") != "message":
            return False
        return self.store.add(event)

    async def poll_once(self) -> List[Dict[str, Any]]:
        """Fetch every page after the cursor and merge it; returns new messages."""
        added: List[Dict[str, Any]] = []
        while True:
            params: Dict[str, Any] = {"with_user_id": self.with_user_id, "limit": self.page_size}
            if self.synced_id is not None:
                params["since_id"] = self.synced_id
            response = await self.client.get("/api/v1/messages", params=params)
            response.raise_for_status()
            page = response.json()
            if not page:
                break
            added.extend(self.store.merge(page))
            self.synced_id = max(m["id"] for m in page)
            if len(page) < self.page_size:
                break
        return sorted(added, key=_sort_key)

    async def send(self, content: str) -> Dict[str, Any]:
        """
        Send a message and append it once the server confirms it.

        Failures raise httpx.HTTPStatusError and leave the store untouched, so the
        caller keeps the draft text for a manual retry.
        """
        response = await self.client.post(
            "/api/v1/messages",
            json={"recipient_id": self.with_user_id, "content": content},
        )
        response.raise_for_status()
        message = response.json()
        self.store.add(message)
        return message

    async def mark_read(self) -> int:
        """Best-effort read receipt for inbound messages; failures are logged only."""
        try:
            response = await self.client.post("/api/v1/messages/read", params={"with_user_id": self.with_user_id})
            response.raise_for_status()
            return response.json().get("updated", 0)
        except httpx.HTTPError as exc:
            logger.warning("thread_sync.mark_read.failed", extra={"with_user_id": self.with_user_id, "error": str(exc)})
            return 0

    async def run(self, stop: asyncio.Event) -> None:
        """Reconcile until stop is set; transient HTTP errors wait for the next tick."""
        while not stop.is_set():
            try:
                await self.poll_once()
            except httpx.HTTPError as exc:
                logger.warning("thread_sync.poll.failed", extra={"with_user_id": self.with_user_id, "error": str(exc)})
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
