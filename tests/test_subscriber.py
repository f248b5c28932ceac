"""Tests for the realtime subscription state machine."""

import random
import unittest
from unittest.mock import AsyncMock

from fake_backend import FakeBackend, settle

from oddsflow.backend import STATUS_CHANNEL_ERROR, STATUS_SUBSCRIBED, STATUS_TIMED_OUT
from oddsflow.feeds import get_feed
from oddsflow.subscriber import BackoffPolicy, ChangeSubscriber, SubscriptionState


class BackoffPolicyTest(unittest.TestCase):
    def test_exponential_growth_is_capped(self) -> None:
        policy = BackoffPolicy(base=1.0, factor=2.0, max_delay=5.0, jitter=0.0)

        self.assertEqual(
            [policy.delay(n) for n in range(1, 6)],
            [1.0, 2.0, 4.0, 5.0, 5.0],
        )

    def test_jitter_stays_within_bounds(self) -> None:
        policy = BackoffPolicy(base=2.0, factor=2.0, max_delay=30.0, jitter=0.2)
        rng = random.Random(7)

        for attempt in range(1, 6):
            raw = min(30.0, 2.0 * 2.0 ** (attempt - 1))
            delay = policy.delay(attempt, rng)
            self.assertGreaterEqual(delay, raw * 0.8)
            self.assertLessEqual(delay, raw * 1.2)


class ChangeSubscriberTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.backend = FakeBackend()
        self.rows = []
        self.delays = []
        self.now = [100.0]

    async def _sleep(self, delay: float) -> None:
        self.delays.append(delay)

    def _subscriber(self, scope=7, feed="war_room", **kwargs) -> ChangeSubscriber:
        kwargs.setdefault("policy", BackoffPolicy(base=1.0, factor=2.0, max_delay=30.0, jitter=0.0))
        return ChangeSubscriber(
            get_feed(feed),
            self.backend,
            scope,
            lambda event, row: self.rows.append((event, row)),
            clock=lambda: self.now[0],
            sleep=self._sleep,
            **kwargs,
        )

    async def test_start_subscribes_with_scope_filter(self) -> None:
        subscriber = self._subscriber()

        await subscriber.start()

        self.assertIs(subscriber.state, SubscriptionState.SUBSCRIBED)
        channel = self.backend.channel
        self.assertEqual(channel.name, "realtime-war_room-7")
        self.assertEqual(channel.table, "war_room_messages")
        self.assertEqual(channel.filter, "fixture_id=eq.7")
        self.assertEqual(channel.events, ("INSERT",))

    async def test_global_scope_subscribes_without_filter(self) -> None:
        subscriber = self._subscriber(scope=None)

        await subscriber.start()

        self.assertIsNone(self.backend.channel.filter)
        self.assertEqual(self.backend.channel.name, "realtime-war_room-global")

    async def test_events_are_normalized_and_scope_checked(self) -> None:
        subscriber = self._subscriber()
        await subscriber.start()
        channel = self.backend.channel

        channel.emit("INSERT", {"id": "1", "content": "in scope", "fixture_id": 7})
        channel.emit("INSERT", {"id": "2", "content": "other", "fixture_id": 8})
        channel.emit("INSERT", {"id": "3", "content": "global", "fixture_id": None})
        channel.emit("INSERT", {"id": "4", "content": "  ", "fixture_id": 7})
        channel.emit("DELETE", {"id": "1", "content": "in scope", "fixture_id": 7})

        self.assertEqual([(event, row.id) for event, row in self.rows], [("INSERT", "1")])

    async def test_channel_error_backs_off_and_reconnects(self) -> None:
        self.backend.auto_subscribe = False
        subscriber = self._subscriber()
        await subscriber.start()
        self.assertIs(subscriber.state, SubscriptionState.CONNECTING)
        first = self.backend.channel

        first.status(STATUS_CHANNEL_ERROR, RuntimeError("socket closed"))
        self.assertIs(subscriber.state, SubscriptionState.BACKOFF)
        self.assertEqual(subscriber.attempt, 1)

        await settle()
        self.assertEqual(self.delays, [1.0])
        self.assertTrue(first.closed)
        self.assertIsNot(self.backend.channel, first)
        self.assertIs(subscriber.state, SubscriptionState.CONNECTING)

        self.backend.channel.status(STATUS_SUBSCRIBED)
        self.assertIs(subscriber.state, SubscriptionState.SUBSCRIBED)
        self.assertEqual(subscriber.attempt, 0)

    async def test_consecutive_failures_grow_the_delay(self) -> None:
        self.backend.auto_subscribe = False
        subscriber = self._subscriber()
        await subscriber.start()

        for _ in range(3):
            self.backend.channel.status(STATUS_TIMED_OUT)
            await settle()

        self.assertEqual(self.delays, [1.0, 2.0, 4.0])
        self.assertEqual(subscriber.attempt, 3)

    async def test_duplicate_error_while_backing_off_is_ignored(self) -> None:
        self.backend.auto_subscribe = False
        subscriber = self._subscriber()
        await subscriber.start()

        self.backend.channel.status(STATUS_CHANNEL_ERROR)
        self.backend.channel.status(STATUS_CHANNEL_ERROR)

        self.assertEqual(subscriber.attempt, 1)

    async def test_resync_after_long_gap(self) -> None:
        resync = AsyncMock()
        self.backend.auto_subscribe = False
        subscriber = self._subscriber(on_resync=resync, resync_after=5.0)
        await subscriber.start()
        self.backend.channel.status(STATUS_SUBSCRIBED)
        resync.assert_not_called()

        self.backend.channel.status(STATUS_CHANNEL_ERROR)
        await settle()
        self.now[0] += 12.0
        self.backend.channel.status(STATUS_SUBSCRIBED)
        await settle()

        resync.assert_awaited_once()

    async def test_short_gap_does_not_resync(self) -> None:
        resync = AsyncMock()
        self.backend.auto_subscribe = False
        subscriber = self._subscriber(on_resync=resync, resync_after=5.0)
        await subscriber.start()
        self.backend.channel.status(STATUS_SUBSCRIBED)

        self.backend.channel.status(STATUS_CHANNEL_ERROR)
        await settle()
        self.now[0] += 1.0
        self.backend.channel.status(STATUS_SUBSCRIBED)
        await settle()

        resync.assert_not_called()

    async def test_gives_up_after_max_attempts(self) -> None:
        self.backend.auto_subscribe = False
        subscriber = self._subscriber(max_attempts=1)
        await subscriber.start()

        self.backend.channel.status(STATUS_CHANNEL_ERROR)
        await settle()
        self.backend.channel.status(STATUS_CHANNEL_ERROR)
        await settle()

        self.assertIs(subscriber.state, SubscriptionState.DISCONNECTED)
        self.assertEqual(self.delays, [1.0])

    async def test_subscribe_exception_is_treated_as_channel_error(self) -> None:
        self.backend.subscribe_error = RuntimeError("no socket")
        subscriber = self._subscriber()

        await subscriber.start()

        self.assertIs(subscriber.state, SubscriptionState.BACKOFF)
        self.assertEqual(subscriber.attempt, 1)
        await subscriber.stop()

    async def test_stop_releases_channel_and_ignores_late_callbacks(self) -> None:
        subscriber = self._subscriber()
        await subscriber.start()
        channel = self.backend.channel

        await subscriber.stop()
        channel.emit("INSERT", {"id": "1", "content": "late", "fixture_id": 7})
        channel.status(STATUS_CHANNEL_ERROR)

        self.assertTrue(channel.closed)
        self.assertIs(subscriber.state, SubscriptionState.DISCONNECTED)
        self.assertEqual(self.rows, [])
        self.assertEqual(self.delays, [])


if __name__ == "__main__":
    unittest.main()
