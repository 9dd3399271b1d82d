import asyncio
import json
import threading

from .changefeed import Change, ChangeFeed, Operation, format_sse


def change(id="b-1", collection="bookings", operation=Operation.CREATED):
    return Change(collection=collection, operation=operation, id=id)


async def never_disconnected():
    return False


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


def test_format_sse():
    frame = format_sse(change("b-1"))
    event, data, blank, end = frame.split("\n")
    assert event == "event: bookings"
    assert json.loads(data.removeprefix("data: "))["id"] == "b-1"
    assert json.loads(data.removeprefix("data: "))["operation"] == "created"
    assert blank == end == ""


def test_subscriber_receives_changes_in_order():
    feed = ChangeFeed()

    async def scenario():
        queue = feed.subscribe()
        for n in range(5):
            feed.publish(change(f"b-{n}"))
        await settle()
        return [queue.get_nowait().id for _ in range(queue.qsize())]

    assert asyncio.run(scenario()) == [f"b-{n}" for n in range(5)]


def test_every_subscriber_gets_a_copy():
    feed = ChangeFeed()

    async def scenario():
        first, second = feed.subscribe(), feed.subscribe()
        feed.publish(change("b-1"))
        await settle()
        return first.get_nowait().id, second.get_nowait().id

    assert asyncio.run(scenario()) == ("b-1", "b-1")


def test_unsubscribed_queue_gets_nothing():
    feed = ChangeFeed()

    async def scenario():
        queue = feed.subscribe()
        feed.unsubscribe(queue)
        feed.publish(change())
        await settle()
        return queue.empty()

    assert asyncio.run(scenario())
    assert feed.subscriber_count == 0


def test_publish_from_worker_thread():
    feed = ChangeFeed()

    async def scenario():
        queue = feed.subscribe()
        worker = threading.Thread(target=feed.publish, args=(change("l-1", "loans"),))
        worker.start()
        received = await asyncio.wait_for(queue.get(), timeout=5)
        worker.join()
        return received

    received = asyncio.run(scenario())
    assert (received.collection, received.id) == ("loans", "l-1")


def test_full_queue_drops_without_raising():
    feed = ChangeFeed(max_queue_size=1)

    async def scenario():
        queue = feed.subscribe()
        feed.publish(change("b-1"))
        feed.publish(change("b-2"))
        await settle()
        return queue.qsize(), queue.get_nowait().id

    assert asyncio.run(scenario()) == (1, "b-1")


def test_subscriber_on_closed_loop_is_dropped():
    feed = ChangeFeed()

    async def subscribe():
        feed.subscribe()

    asyncio.run(subscribe())
    assert feed.subscriber_count == 1
    feed.publish(change())
    assert feed.subscriber_count == 0


def test_stream_yields_frames_and_unsubscribes_on_close():
    feed = ChangeFeed()

    async def scenario():
        stream = feed.stream(never_disconnected)
        pending = asyncio.ensure_future(stream.__anext__())
        while feed.subscriber_count == 0:
            await asyncio.sleep(0)
        feed.publish(change("b-7"))
        frame = await asyncio.wait_for(pending, timeout=5)
        await stream.aclose()
        return frame

    frame = asyncio.run(scenario())
    assert frame.startswith("event: bookings\n")
    assert '"b-7"' in frame
    assert feed.subscriber_count == 0


def test_stream_stops_when_client_disconnects():
    feed = ChangeFeed()

    async def disconnected():
        return True

    async def scenario():
        return [frame async for frame in feed.stream(disconnected)]

    assert asyncio.run(scenario()) == []
    assert feed.subscriber_count == 0
