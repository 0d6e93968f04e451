"""
Per-viewer state that keeps a chat pane or a friends feed current.

Both synchronizers follow the same lifecycle: entering/starting performs a
filtered read and subscribes to the matching change channel; every change
notification triggers a fresh read whose result replaces the previous one;
leaving/stopping cancels the subscription. Reads are not sequenced, so when
two refreshes race the last one to finish wins.

Change notifications arrive on the publisher's thread. The refetch they
trigger goes through ``dispatch``, which runs it inline by default; the
socket server hands it to a worker so writers never wait on readers.
"""

from collections.abc import Callable
import logging
from threading import Lock

from sqlalchemy.orm import Session, sessionmaker

from nettrack.core.errors import ValidationError
from nettrack.db.session import SessionLocal
from nettrack.services.change_notifier import (
    ChangeNotifier,
    Subscription,
    change_notifier,
    feed_channel,
)
from nettrack.services.chat_service import ChatService, Conversation, chat_service
from nettrack.services.feed_service import FeedService, feed_service

logger = logging.getLogger(__name__)

MessagesListener = Callable[[Conversation, list[dict]], None]
FeedListener = Callable[[list[dict]], None]
Dispatcher = Callable[[Callable[[], object]], None]


def run_inline(task: Callable[[], object]) -> None:
    task()


class ChatSynchronizer:
    """State machine over ``global``, ``dm:<user>`` and ``group:<id>``."""

    def __init__(
        self,
        username: str,
        on_messages: MessagesListener,
        *,
        session_factory: sessionmaker[Session] = SessionLocal,
        notifier: ChangeNotifier = change_notifier,
        chat: ChatService = chat_service,
        dispatch: Dispatcher = run_inline,
    ) -> None:
        self.username = username
        self.on_messages = on_messages
        self.session_factory = session_factory
        self.notifier = notifier
        self.chat = chat
        self.dispatch = dispatch
        self.active_conversation: Conversation | None = None
        self.messages: list[dict] = []
        self._subscription: Subscription | None = None
        self._lock = Lock()

    @property
    def state(self) -> str | None:
        conversation = self.active_conversation
        return conversation.ref if conversation else None

    def enter(self, ref: str) -> list[dict]:
        with self.session_factory() as db:
            conversation = self.chat.resolve_conversation(db, self.username, ref)

        if conversation == self.active_conversation:
            return self.refresh()

        with self._lock:
            previous = self._subscription
            self.active_conversation = conversation
            self.messages = []
            self._subscription = self.notifier.subscribe(conversation.channel, self._on_change)
        if previous:
            previous.cancel()
        logger.debug("%s entered %s", self.username, conversation.ref)
        return self.refresh()

    def leave(self) -> None:
        with self._lock:
            subscription = self._subscription
            self._subscription = None
            self.active_conversation = None
            self.messages = []
        if subscription:
            subscription.cancel()

    def refresh(self) -> list[dict]:
        conversation = self.active_conversation
        if conversation is None:
            return []
        with self.session_factory() as db:
            messages = self.chat.list_messages(db, conversation)
        with self._lock:
            if self.active_conversation != conversation:
                # Left or switched while the read was in flight.
                return []
            self.messages = messages
        self.on_messages(conversation, messages)
        return messages

    def send(self, text: str) -> dict:
        conversation = self.active_conversation
        if conversation is None:
            raise ValidationError("Enter a conversation first")
        with self.session_factory() as db:
            return self.chat.send_message(db, self.username, conversation, text)

    def _on_change(self, _event: str, _payload: dict) -> None:
        self.dispatch(self.refresh)


class FeedSynchronizer:
    def __init__(
        self,
        username: str,
        on_feed: FeedListener,
        *,
        session_factory: sessionmaker[Session] = SessionLocal,
        notifier: ChangeNotifier = change_notifier,
        feed: FeedService = feed_service,
        dispatch: Dispatcher = run_inline,
    ) -> None:
        self.username = username
        self.on_feed = on_feed
        self.session_factory = session_factory
        self.notifier = notifier
        self.feed = feed
        self.dispatch = dispatch
        self.entries: list[dict] = []
        self._subscription: Subscription | None = None
        self._lock = Lock()

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def start(self) -> list[dict]:
        with self._lock:
            if self._subscription is None:
                self._subscription = self.notifier.subscribe(feed_channel(self.username), self._on_change)
        return self.refresh()

    def stop(self) -> None:
        with self._lock:
            subscription = self._subscription
            self._subscription = None
            self.entries = []
        if subscription:
            subscription.cancel()

    def refresh(self) -> list[dict]:
        if self._subscription is None:
            return []
        with self.session_factory() as db:
            entries = self.feed.build_friends_feed(db, self.username)
        with self._lock:
            if self._subscription is None:
                return []
            self.entries = entries
        self.on_feed(entries)
        return entries

    def _on_change(self, _event: str, _payload: dict) -> None:
        self.dispatch(self.refresh)
