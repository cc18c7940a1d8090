"""Tests for service wiring and lifecycle."""

import httpx
from conftest import OWNER_ID, RECEIVER_URL, Receiver

from hookrelay.service import HookRelayService


class TestHookRelayService:
    async def test_end_to_end(self, test_settings):
        receiver = Receiver(httpx.Response(202))

        async with HookRelayService.create(
            test_settings, location=":memory:", transport=receiver.transport
        ) as relay:
            subscription, _ = await relay.registry.create(
                OWNER_ID, "Posts", url=RECEIVER_URL, events=["post.created"]
            )
            summary = await relay.trigger.trigger(OWNER_ID, "post.created", {"post_id": "p1"})

            assert summary.successful == 1
            history, total = await relay.registry.list_deliveries(subscription.id, OWNER_ID)
            assert total == 1
            assert history[0].response_status == 202

        assert not relay.storage.is_initialized

    async def test_worker_started_only_in_queued_mode(self, test_settings, queued_settings):
        inline = HookRelayService.create(test_settings, location=":memory:")
        await inline.initialize(start_worker=True)
        assert not inline.worker.is_running
        await inline.close()

        queued = HookRelayService.create(queued_settings, location=":memory:")
        await queued.initialize(start_worker=True)
        assert queued.worker.is_running
        await queued.close()
        assert not queued.worker.is_running
