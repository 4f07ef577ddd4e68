"""Order intake, fulfillment and analytics wired together on one broker."""

import asyncio

import pytest

from ticket_pipeline.errors import PublishFailure
from ticket_pipeline.pipeline import Pipeline


@pytest.fixture
def pipeline(config, make_broker, recording_sleep):
    return Pipeline(config, broker=make_broker(), sleep=recording_sleep)


@pytest.mark.integration
class TestEndToEnd:
    def test_order_reaches_analytics(self, pipeline, rabbit, recording_sleep):
        async def scenario():
            await pipeline.connect_and_subscribe()
            order = await pipeline.intake.submit_order("movie", "Ann", 2)
            await pipeline.broker.drain()
            return order

        order = asyncio.run(scenario())

        assert order.id == 1
        stats = pipeline.stats
        assert stats.event_counts["movie"] == 2
        assert stats.total_revenue == 30
        assert recording_sleep.calls == [2.0]
        [recent] = stats.recent_orders(20)
        assert recent["id"] == 1
        assert recent["event"] == "movie"
        assert recent["customer"] == "Ann"
        assert recent["quantity"] == 2
        # Both messages settled
        assert rabbit.unacked == {}
        assert rabbit.acked == [1, 2]

    def test_several_orders(self, pipeline):
        orders = [("movie", "Ann", 2), ("game", "Bo", 1), ("concert", "Cy", 3), ("sports", "Di", 1)]

        async def scenario():
            await pipeline.connect_and_subscribe()
            for order in orders:
                await pipeline.intake.submit_order(*order)
            await pipeline.broker.drain()

        asyncio.run(scenario())

        stats = pipeline.stats
        assert stats.total_orders == 7
        assert stats.total_tickets == 7
        assert stats.total_revenue == 2 * 15 + 50 + 3 * 75 + 60
        assert sorted(o["id"] for o in stats.recent_orders(20)) == [1, 2, 3, 4]

    def test_order_status_stays_pending(self, pipeline):
        async def scenario():
            await pipeline.connect_and_subscribe()
            order = await pipeline.intake.submit_order("game", "Bo")
            await pipeline.broker.drain()
            return order

        order = asyncio.run(scenario())

        assert pipeline.intake.get_order(order.id).status == "pending"


@pytest.mark.integration
class TestRedelivery:
    def test_failed_fulfillment_is_redelivered(self, pipeline, rabbit, monkeypatch):
        broker = pipeline.broker
        publish = broker.publish
        failures = {"left": 1}

        async def flaky_publish(queue, body):
            if queue == "analytics" and failures["left"]:
                failures["left"] -= 1
                raise PublishFailure("analytics queue unavailable")
            await publish(queue, body)

        monkeypatch.setattr(broker, "publish", flaky_publish)

        async def scenario():
            await pipeline.connect_and_subscribe()
            await pipeline.intake.submit_order("concert", "Cy", 1)
            await broker.drain()
            # The nacked order waits at the head of the queue
            rabbit.dispatch()
            await broker.drain()

        asyncio.run(scenario())

        assert pipeline.worker.failed == 1
        assert pipeline.worker.processed == 1
        assert pipeline.stats.event_counts["concert"] == 1
        assert rabbit.unacked == {}

    def test_channel_loss_redelivers_after_keepalive(self, pipeline, rabbit):
        broker = pipeline.broker

        async def scenario():
            await pipeline.connect_and_subscribe()
            await pipeline.intake.submit_order("sports", "Di", 2)
            # The broker goes away before the worker gets to the message
            broker.channel.close("connection reset")
            await broker.drain()
            healthy = await pipeline.keepalive.sweep()
            await broker.drain()
            return healthy

        assert asyncio.run(scenario()) is True

        assert pipeline.fulfillment.state.running
        assert pipeline.analytics.state.running
        assert pipeline.stats.event_counts["sports"] == 2
        assert pipeline.worker.processed == 1
        assert len(rabbit.channels) == 2

    def test_orders_submitted_while_disconnected_are_not_queued(self, pipeline, rabbit):
        async def scenario():
            await pipeline.intake.submit_order("movie", "Ann")
            await pipeline.connect_and_subscribe()
            await pipeline.intake.submit_order("movie", "Bo")
            await pipeline.broker.drain()

        asyncio.run(scenario())

        assert pipeline.intake.unqueued == 1
        assert pipeline.stats.total_orders == 1
        assert pipeline.stats.recent_orders(1)[0]["customer"] == "Bo"


@pytest.mark.integration
class TestServiceSelection:
    def test_only_enabled_stages_are_built(self, config, make_broker):
        config = config.model_copy(update={"enabled_services": "fulfillment"})

        pipeline = Pipeline(config, broker=make_broker())

        assert pipeline.intake is None
        assert pipeline.stats is None
        assert [s.name for s in pipeline.supervisors] == ["fulfillment"]

    def test_unreachable_broker_does_not_raise(self, config, make_broker):
        pipeline = Pipeline(config, broker=make_broker(failures=100, max_attempts=3))

        asyncio.run(pipeline.connect_and_subscribe())

        assert pipeline.health() == {
            "broker": "failed",
            "consumers": {
                "fulfillment": {"running": False, "tag": None},
                "analytics": {"running": False, "tag": None},
            },
        }
