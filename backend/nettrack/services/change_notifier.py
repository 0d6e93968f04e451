"""
In-process publish/subscribe used to keep feed and chat views fresh.

Services publish after every committed write; synchronizers subscribe to the
channels they render. Whether an update arrives from a write in this process
or from the socket server's periodic refresh is invisible to subscribers.

Listeners run synchronously on the publishing thread, after the write has
committed. A listener that does real work (a refetch, a network push) should
hand it off instead of running it inline, or every writer pays for it.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from threading import Lock

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict], None]


def feed_channel(username: str) -> str:
    return f"feed:{username}"


def inbox_channel(username: str) -> str:
    """Per-user channel for DMs, group invites and session revocation."""
    return f"inbox:{username}"


@dataclass(eq=False)
class Subscription:
    channel: str
    listener: Listener
    notifier: "ChangeNotifier" = field(repr=False)
    active: bool = True

    def cancel(self) -> None:
        self.notifier.unsubscribe(self)


class ChangeNotifier:
    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._lock = Lock()

    def subscribe(self, channel: str, listener: Listener) -> Subscription:
        subscription = Subscription(channel=channel, listener=listener, notifier=self)
        with self._lock:
            self._subscriptions.setdefault(channel, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            listeners = self._subscriptions.get(subscription.channel)
            if not listeners:
                return
            remaining = [entry for entry in listeners if entry is not subscription]
            if remaining:
                self._subscriptions[subscription.channel] = remaining
            else:
                self._subscriptions.pop(subscription.channel, None)

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(channel, []))

    def channels(self) -> list[str]:
        with self._lock:
            return list(self._subscriptions.keys())

    def publish(self, channel: str, event: str, payload: dict | None = None) -> int:
        with self._lock:
            targets = list(self._subscriptions.get(channel, []))
        delivered = 0
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.listener(event, payload or {})
            except Exception:
                logger.exception("Listener on %s failed for event %s", channel, event)
                continue
            delivered += 1
        return delivered

    def publish_many(self, channels: list[str], event: str, payload: dict | None = None) -> int:
        delivered = 0
        for channel in dict.fromkeys(channels):
            delivered += self.publish(channel, event, payload)
        return delivered

    def clear(self) -> None:
        with self._lock:
            for listeners in self._subscriptions.values():
                for subscription in listeners:
                    subscription.active = False
            self._subscriptions.clear()


change_notifier = ChangeNotifier()
