"""
Unit tests for the change feed hub.
"""
import anyio

from opsboard.services.change_feed import ChangeHub, publish_change


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def test_publish_reaches_only_subscribers():
    async def main():
        hub = ChangeHub()
        bookings, vehicles = FakeSocket(), FakeSocket()
        await hub.subscribe(bookings, ["bookings"])
        await hub.subscribe(vehicles, ["vehicles", "maintenance_bookings"])

        await hub.publish("bookings", {"collection": "bookings", "action": "create", "id": "1"})
        return bookings, vehicles

    bookings, vehicles = anyio.run(main)
    assert bookings.sent == [{"event": "change", "data": {"collection": "bookings", "action": "create", "id": "1"}}]
    assert vehicles.sent == []


def test_failed_sockets_are_dropped():
    async def main():
        hub = ChangeHub()
        good, bad = FakeSocket(), FakeSocket(fail=True)
        await hub.subscribe(good, ["holidays"])
        await hub.subscribe(bad, ["holidays"])
        await hub.publish("holidays", {"id": "h1"})
        return hub, good

    hub, good = anyio.run(main)
    assert len(good.sent) == 1
    assert hub.subscriber_count("holidays") == 1


def test_unsubscribe_removes_empty_collections():
    async def main():
        hub = ChangeHub()
        ws = FakeSocket()
        await hub.subscribe(ws, ["notes"])
        await hub.unsubscribe(ws)
        return hub

    assert anyio.run(main).subscriber_count("notes") == 0


def test_publish_change_outside_worker_thread_is_a_no_op():
    publish_change("bookings", "update", "abc", {"id": "abc"})
