"""
Tests for progress broadcasters.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from services.progress_broadcaster import LocalBroadcaster, ProgressEvent, RealtimeBroadcaster, topic_for


def realtime(handler):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RealtimeBroadcaster("https://proj.supabase.co/", "service-key", http_client=http_client)


class TestRealtimeBroadcaster:
    """Supabase Realtime broadcast over REST."""

    @pytest.mark.asyncio
    async def test_publish_posts_broadcast_message(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(202)

        broadcaster = realtime(handler)
        await broadcaster.publish("job-1", "collecting_tier_2", 20)
        await broadcaster.aclose()

        assert len(requests) == 1
        request = requests[0]
        assert str(request.url) == "https://proj.supabase.co/realtime/v1/api/broadcast"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["authorization"] == "Bearer service-key"
        assert json.loads(request.content) == {
            "messages": [
                {
                    "topic": "analysis:job-1",
                    "event": "progress",
                    "payload": {"stage": "collecting_tier_2", "percent": 20},
                }
            ]
        }

    @pytest.mark.asyncio
    async def test_publish_swallows_http_errors(self):
        broadcaster = realtime(lambda request: httpx.Response(500))

        await broadcaster.publish("job-1", "extracting", 50)

    @pytest.mark.asyncio
    async def test_publish_swallows_transport_errors(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        broadcaster = realtime(handler)

        await broadcaster.publish("job-1", "error", 100)

    @pytest.mark.asyncio
    async def test_subscribe_and_close(self):
        channel = MagicMock()
        channel.subscribe = AsyncMock()
        client = MagicMock()
        client.channel.return_value = channel
        client.remove_channel = AsyncMock()

        broadcaster = RealtimeBroadcaster(
            "https://proj.supabase.co",
            "service-key",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(202))),
            supabase_factory=AsyncMock(return_value=client),
        )
        received = []

        subscription = await broadcaster.subscribe("job-9", received.append)

        client.channel.assert_called_once_with("analysis:job-9")
        event_name, handler = channel.on_broadcast.call_args.args
        assert event_name == "progress"
        handler({"event": "progress", "payload": {"stage": "extracting", "percent": 50}})
        assert received == [ProgressEvent("extracting", 50)]

        handler({"event": "progress", "payload": {"percent": 60}})
        handler({"event": "progress", "payload": {"stage": "", "percent": 70}})
        assert received == [ProgressEvent("extracting", 50)]

        await subscription.close()
        await subscription.close()
        client.remove_channel.assert_awaited_once_with(channel)


class TestLocalBroadcaster:
    """In-process broadcaster."""

    def test_topic_name(self):
        assert topic_for("abc") == "analysis:abc"

    @pytest.mark.asyncio
    async def test_fan_out_and_unsubscribe(self):
        broadcaster = LocalBroadcaster(record=True)
        received = []

        subscription = await broadcaster.subscribe("job-1", received.append)
        await broadcaster.publish("job-1", "collecting", 5)
        await broadcaster.publish("job-2", "collecting", 5)
        await subscription.close()
        await broadcaster.publish("job-1", "complete", 100)

        assert received == [ProgressEvent("collecting", 5)]
        assert broadcaster.subscriber_count("job-1") == 0
        assert [e.stage for e in broadcaster.events_for("job-1")] == ["collecting", "complete"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_raise(self):
        broadcaster = LocalBroadcaster()

        def explode(event):
            raise RuntimeError("subscriber bug")

        await broadcaster.subscribe("job-1", explode)

        await broadcaster.publish("job-1", "collecting", 5)

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self):
        broadcaster = LocalBroadcaster()
        received = []

        def explode(event):
            raise RuntimeError("subscriber bug")

        await broadcaster.subscribe("job-1", explode)
        await broadcaster.subscribe("job-1", received.append)

        await broadcaster.publish("job-1", "collecting", 5)

        assert received == [ProgressEvent("collecting", 5)]

    @pytest.mark.asyncio
    async def test_history_is_off_by_default(self):
        broadcaster = LocalBroadcaster()

        for percent in (5, 10, 20, 100):
            await broadcaster.publish("job-1", "collecting", percent)

        assert broadcaster.history == []
        assert broadcaster.events_for("job-1") == []
