import asyncio

from events import UsageEvent, UsageEventQueue


def make_event(template_id="tpl-1"):
    return UsageEvent(template_id=template_id, document_type="purchase_order", user_email="ops@example.com")


def test_publish_never_blocks_and_drops_when_full():
    queue = UsageEventQueue(sink=None, maxsize=2)
    assert queue.publish(make_event("1"))
    assert queue.publish(make_event("2"))
    assert not queue.publish(make_event("3"))
    assert queue.dropped == 1
    assert queue.pending() == 2


def test_drain_delivers_and_isolates_sink_failures():
    delivered = []

    async def sink(template_id, payload):
        if template_id == "bad":
            raise ConnectionError("catalog down")
        delivered.append((template_id, payload["document_type"]))

    async def scenario():
        queue = UsageEventQueue(sink=sink)
        queue.publish(make_event("good"))
        queue.publish(make_event("bad"))
        queue.publish(make_event("also-good"))
        await queue.drain()
        return queue

    queue = asyncio.run(scenario())
    assert delivered == [("good", "purchase_order"), ("also-good", "purchase_order")]
    assert queue.failed == 1
    assert queue.delivered == 2


def test_background_worker_delivers_until_stopped():
    delivered = []

    async def sink(template_id, payload):
        delivered.append(template_id)

    async def scenario():
        queue = UsageEventQueue(sink=sink)
        queue.start()
        queue.publish(make_event("1"))
        await asyncio.sleep(0.01)
        queue.publish(make_event("2"))
        await queue.stop()

    asyncio.run(scenario())
    assert delivered == ["1", "2"]
