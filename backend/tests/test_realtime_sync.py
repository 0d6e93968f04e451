from contextlib import nullcontext
import threading
import unittest

from nettrack.core.errors import ValidationError
from nettrack.realtime.synchronizers import ChatSynchronizer, FeedSynchronizer
from nettrack.schemas.activity import ActivityCreateRequest
from nettrack.services.change_notifier import ChangeNotifier, feed_channel
from nettrack.services.chat_service import GLOBAL_CONVERSATION, ChatService, Conversation, conversation_key
from nettrack.services.feed_service import FeedService
from nettrack.services.friendship_service import FriendshipService
from support import create_user, make_friends, make_session_factory


class ChangeNotifierTests(unittest.TestCase):
    def test_publish_reaches_only_active_subscribers(self) -> None:
        notifier = ChangeNotifier()
        received: list[tuple[str, dict]] = []
        subscription = notifier.subscribe("feed:bob", lambda event, payload: received.append((event, payload)))

        self.assertEqual(notifier.publish("feed:bob", "activity_added", {"id": 1}), 1)
        self.assertEqual(notifier.publish("feed:alice", "activity_added"), 0)
        subscription.cancel()
        self.assertEqual(notifier.publish("feed:bob", "activity_added"), 0)

        self.assertEqual(received, [("activity_added", {"id": 1})])
        self.assertEqual(notifier.subscriber_count("feed:bob"), 0)
        self.assertEqual(notifier.channels(), [])

    def test_failing_listener_does_not_block_others(self) -> None:
        notifier = ChangeNotifier()
        received: list[str] = []

        def broken(_event: str, _payload: dict) -> None:
            raise RuntimeError("boom")

        notifier.subscribe("chat:global", broken)
        notifier.subscribe("chat:global", lambda event, _payload: received.append(event))

        with self.assertLogs("nettrack.services.change_notifier", level="ERROR"):
            delivered = notifier.publish("chat:global", "message")
        self.assertEqual(delivered, 1)
        self.assertEqual(received, ["message"])

    def test_publish_many_dedupes_channels(self) -> None:
        notifier = ChangeNotifier()
        received: list[str] = []
        notifier.subscribe("feed:bob", lambda event, _payload: received.append(event))

        notifier.publish_many(["feed:bob", "feed:bob", "feed:carol"], "friend_added")
        self.assertEqual(received, ["friend_added"])


class ChatSynchronizerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.notifier = ChangeNotifier()
        self.chat = ChatService(self.notifier)
        with self.session_factory() as db:
            for username in ("alice", "bob"):
                create_user(db, username)
        self.alice_updates: list[tuple[str, list[dict]]] = []
        self.alice = ChatSynchronizer(
            "alice",
            lambda conversation, messages: self.alice_updates.append((conversation.ref, messages)),
            session_factory=self.session_factory,
            notifier=self.notifier,
            chat=self.chat,
        )
        self.bob = ChatSynchronizer(
            "bob",
            lambda _conversation, _messages: None,
            session_factory=self.session_factory,
            notifier=self.notifier,
            chat=self.chat,
        )

    def tearDown(self) -> None:
        self.alice.leave()
        self.bob.leave()

    def test_enter_reads_history_and_follows_updates(self) -> None:
        self.assertEqual(self.alice.enter("dm:bob"), [])
        self.assertEqual(self.alice.state, "dm:alice:bob")

        self.bob.enter("dm:alice")
        self.bob.send("are you watching?")

        self.assertEqual([message["text"] for message in self.alice.messages], ["are you watching?"])
        self.assertEqual(self.alice_updates[-1][0], "dm:alice:bob")

    def test_leave_stops_updates(self) -> None:
        self.alice.enter("global")
        self.alice.leave()
        update_count = len(self.alice_updates)

        self.bob.enter("global")
        self.bob.send("anyone here?")

        self.assertEqual(len(self.alice_updates), update_count)
        self.assertIsNone(self.alice.state)
        self.assertEqual(self.notifier.subscriber_count(GLOBAL_CONVERSATION.channel), 1)

    def test_switching_conversation_moves_subscription(self) -> None:
        self.alice.enter("global")
        self.alice.enter("dm:bob")

        self.assertEqual(self.notifier.subscriber_count(GLOBAL_CONVERSATION.channel), 0)
        self.bob.enter("global")
        self.bob.send("not for the dm")
        self.assertEqual(self.alice.messages, [])

    def test_send_requires_conversation(self) -> None:
        with self.assertRaises(ValidationError):
            self.alice.send("hello")

    def test_failed_enter_keeps_previous_conversation(self) -> None:
        self.alice.enter("global")
        with self.assertRaises(ValidationError):
            self.alice.enter("dm:alice")
        self.assertEqual(self.alice.state, "global")

    def test_change_notifications_go_through_dispatch(self) -> None:
        deferred: list = []
        alice = ChatSynchronizer(
            "alice",
            lambda conversation, messages: self.alice_updates.append((conversation.ref, messages)),
            session_factory=self.session_factory,
            notifier=self.notifier,
            chat=self.chat,
            dispatch=deferred.append,
        )
        alice.enter("global")
        self.bob.enter("global")

        self.bob.send("queued")
        self.assertEqual(alice.messages, [])
        self.assertEqual(len(deferred), 1)

        deferred.pop()()
        self.assertEqual([message["text"] for message in alice.messages], ["queued"])
        alice.leave()


class StaticChat:
    """Conversation lookups without a database, so threads never share a connection."""

    def resolve_conversation(self, _db, username: str, ref: str) -> Conversation:
        if ref == "global":
            return GLOBAL_CONVERSATION
        return Conversation(type="dm", key=conversation_key(username, ref.partition(":")[2]))

    def list_messages(self, _db, _conversation, limit=None) -> list[dict]:
        return []


class ConcurrentEnterTests(unittest.TestCase):
    def test_racing_enters_keep_exactly_one_subscription(self) -> None:
        notifier = ChangeNotifier()
        synchronizer = ChatSynchronizer(
            "alice",
            lambda _conversation, _messages: None,
            session_factory=nullcontext,
            notifier=notifier,
            chat=StaticChat(),
        )
        refs = ["global", "dm:bob", "dm:carol"]
        workers = 12
        barrier = threading.Barrier(workers)
        errors: list[BaseException] = []

        def run(index: int) -> None:
            try:
                barrier.wait()
                for step in range(50):
                    synchronizer.enter(refs[(index + step) % len(refs)])
            except BaseException as exc:
                errors.append(exc)

        threads = [threading.Thread(target=run, args=(index,)) for index in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(notifier.channels(), [synchronizer.active_conversation.channel])
        self.assertEqual(notifier.subscriber_count(synchronizer.active_conversation.channel), 1)
        synchronizer.leave()
        self.assertEqual(notifier.channels(), [])


class FeedSynchronizerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.notifier = ChangeNotifier()
        self.friendships = FriendshipService(self.notifier)
        self.feed = FeedService(self.notifier, self.friendships)
        self.db = self.session_factory()
        self.alice = create_user(self.db, "alice")
        create_user(self.db, "bob")
        make_friends(self.db, self.friendships, "alice", "bob")
        self.snapshots: list[list[dict]] = []
        self.synchronizer = FeedSynchronizer(
            "bob",
            self.snapshots.append,
            session_factory=self.session_factory,
            notifier=self.notifier,
            feed=self.feed,
        )

    def tearDown(self) -> None:
        self.synchronizer.stop()
        self.db.close()

    def test_new_friend_activity_is_pushed(self) -> None:
        self.assertEqual(self.synchronizer.start(), [])
        self.feed.record_activity(
            self.db, self.alice, ActivityCreateRequest(title="Show X", timestamp_left_off="12:00")
        )

        self.assertEqual([entry["title"] for entry in self.snapshots[-1]], ["Show X"])
        self.assertEqual(self.synchronizer.entries, self.snapshots[-1])

    def test_stop_unsubscribes(self) -> None:
        self.synchronizer.start()
        self.synchronizer.stop()
        self.assertFalse(self.synchronizer.active)
        self.assertEqual(self.notifier.subscriber_count(feed_channel("bob")), 0)

        self.feed.record_activity(
            self.db, self.alice, ActivityCreateRequest(title="Show Y", timestamp_left_off="1:00")
        )
        self.assertEqual(self.snapshots, [[]])
        self.assertEqual(self.synchronizer.refresh(), [])


if __name__ == "__main__":
    unittest.main()
