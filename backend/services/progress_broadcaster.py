"""
Progress Broadcaster
One-way, fire-and-forget progress events on the per-job topic
``analysis:<job_id>`` (event ``progress``, payload ``{stage, percent}``).

publish() never raises: a lost progress event must not fail the job.
"""
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

PROGRESS_EVENT = "progress"

ProgressCallback = Callable[["ProgressEvent"], None]


def topic_for(job_id: str) -> str:
    return f"analysis:{job_id}"


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    percent: int

    def to_payload(self) -> Dict[str, Any]:
        return {"stage": self.stage, "percent": self.percent}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProgressEvent":
        return cls(stage=str(payload.get("stage", "")), percent=int(payload.get("percent") or 0))


class Subscription:
    """Handle for a live subscription; close() is idempotent"""

    def __init__(self, on_close: Optional[Callable[[], Awaitable[None]]] = None):
        self._on_close = on_close
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            await self._on_close()


class ProgressBroadcaster(ABC):
    """Transport-agnostic progress channel"""

    async def publish(self, job_id: str, stage: str, percent: int) -> None:
        event = ProgressEvent(stage=stage, percent=percent)
        try:
            await self._deliver(job_id, event)
        except Exception as e:
            logger.warning(f"Broadcast failed for {topic_for(job_id)} ({stage} {percent}%): {e}")

    @abstractmethod
    async def _deliver(self, job_id: str, event: ProgressEvent) -> None:
        ...

    @abstractmethod
    async def subscribe(self, job_id: str, callback: ProgressCallback) -> Subscription:
        ...

    async def aclose(self) -> None:
        """Release transport resources"""


class RealtimeBroadcaster(ProgressBroadcaster):
    """
    Supabase Realtime broadcast

    Publishing goes through the REST broadcast endpoint with the service role
    key; subscribing uses a realtime channel on the async Supabase client.
    """

    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        supabase_factory: Optional[Callable[[], Awaitable[Any]]] = None,
        timeout: float = 5.0,
    ):
        self.endpoint = f"{supabase_url.rstrip('/')}/realtime/v1/api/broadcast"
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._supabase_factory = supabase_factory

    async def _deliver(self, job_id: str, event: ProgressEvent) -> None:
        body = {
            "messages": [
                {
                    "topic": topic_for(job_id),
                    "event": PROGRESS_EVENT,
                    "payload": event.to_payload(),
                }
            ]
        }
        response = await self.http_client.post(self.endpoint, json=body, headers=self.headers)
        response.raise_for_status()
        logger.debug(f"Broadcast {topic_for(job_id)}: {event.stage} {event.percent}%")

    async def subscribe(self, job_id: str, callback: ProgressCallback) -> Subscription:
        if self._supabase_factory is None:
            from supabase_client import get_supabase
            self._supabase_factory = get_supabase
        client = await self._supabase_factory()
        channel = client.channel(topic_for(job_id))

        def on_message(message: Dict[str, Any]) -> None:
            payload = message.get("payload", message) if isinstance(message, dict) else {}
            if not isinstance(payload, dict) or not payload.get("stage"):
                logger.debug(f"Ignoring progress message without a stage on {topic_for(job_id)}")
                return
            callback(ProgressEvent.from_payload(payload))

        channel.on_broadcast(PROGRESS_EVENT, on_message)
        await channel.subscribe()
        logger.info(f"Subscribed to {topic_for(job_id)}")

        async def close() -> None:
            await client.remove_channel(channel)
            logger.info(f"Unsubscribed from {topic_for(job_id)}")

        return Subscription(close)

    async def aclose(self) -> None:
        await self.http_client.aclose()


class LocalBroadcaster(ProgressBroadcaster):
    """
    In-process fan-out, used without Supabase and in tests

    Published events are kept in ``history`` only when ``record`` is set.
    """

    def __init__(self, record: bool = False):
        self._subscribers: Dict[str, List[ProgressCallback]] = defaultdict(list)
        self.record = record
        self.history: List[Tuple[str, ProgressEvent]] = []

    async def _deliver(self, job_id: str, event: ProgressEvent) -> None:
        if self.record:
            self.history.append((job_id, event))
        for callback in list(self._subscribers.get(job_id, [])):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Progress subscriber failed on {topic_for(job_id)} ({event.stage}): {e}")

    async def subscribe(self, job_id: str, callback: ProgressCallback) -> Subscription:
        self._subscribers[job_id].append(callback)

        async def close() -> None:
            callbacks = self._subscribers.get(job_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(job_id, None)

        return Subscription(close)

    def events_for(self, job_id: str) -> List[ProgressEvent]:
        return [event for topic_job, event in self.history if topic_job == job_id]

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, []))
