import unittest

from nettrack.core.errors import ConflictError, NotFoundError, ValidationError
from nettrack.services.change_notifier import ChangeNotifier, feed_channel
from nettrack.services.friendship_service import FriendshipService
from support import create_user, make_friends, make_session_factory


class FriendshipServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.notifier = ChangeNotifier()
        self.friendships = FriendshipService(self.notifier)
        self.users = {username: create_user(self.db, username) for username in ("alice", "bob", "carol")}

    def tearDown(self) -> None:
        self.db.close()

    def test_accept_makes_friendship_symmetric_and_clears_request(self) -> None:
        self.friendships.send_request(self.db, "alice", "bob")
        self.assertEqual(self.friendships.list_friend_requests(self.db, "bob"), ["alice"])

        self.friendships.accept_request(self.db, "bob", "alice")

        self.assertIn("bob", self.friendships.friend_usernames(self.db, "alice"))
        self.assertIn("alice", self.friendships.friend_usernames(self.db, "bob"))
        self.assertEqual(self.friendships.list_friend_requests(self.db, "bob"), [])
        self.assertEqual(self.friendships.list_outgoing_requests(self.db, "alice"), [])

    def test_remove_friend_detaches_both_sides(self) -> None:
        make_friends(self.db, self.friendships, "alice", "bob")

        self.friendships.remove_friend(self.db, "alice", "bob")

        self.assertNotIn("bob", self.friendships.friend_usernames(self.db, "alice"))
        self.assertNotIn("alice", self.friendships.friend_usernames(self.db, "bob"))
        with self.assertRaises(NotFoundError):
            self.friendships.remove_friend(self.db, "alice", "bob")

    def test_duplicate_request_leaves_single_entry(self) -> None:
        self.friendships.send_request(self.db, "alice", "bob")
        with self.assertRaises(ConflictError):
            self.friendships.send_request(self.db, "alice", "bob")

        self.assertEqual(self.friendships.list_friend_requests(self.db, "bob"), ["alice"])

    def test_request_validation(self) -> None:
        with self.assertRaises(ValidationError):
            self.friendships.send_request(self.db, "alice", "alice")
        with self.assertRaises(NotFoundError):
            self.friendships.send_request(self.db, "alice", "nobody")

        make_friends(self.db, self.friendships, "alice", "bob")
        with self.assertRaises(ConflictError) as ctx:
            self.friendships.send_request(self.db, "alice", "bob")
        self.assertEqual(ctx.exception.message, "Already friends")

    def test_accept_without_request_fails(self) -> None:
        with self.assertRaises(NotFoundError):
            self.friendships.accept_request(self.db, "bob", "alice")
        self.assertEqual(self.friendships.friend_usernames(self.db, "bob"), [])

    def test_accept_clears_crossing_request(self) -> None:
        self.friendships.send_request(self.db, "alice", "bob")
        self.friendships.send_request(self.db, "bob", "alice")

        self.friendships.accept_request(self.db, "bob", "alice")

        self.assertEqual(self.friendships.list_friend_requests(self.db, "alice"), [])
        self.assertEqual(self.friendships.list_friend_requests(self.db, "bob"), [])

    def test_reject_drops_request_without_friendship(self) -> None:
        self.friendships.send_request(self.db, "carol", "alice")
        self.friendships.reject_request(self.db, "alice", "carol")

        self.assertEqual(self.friendships.list_friend_requests(self.db, "alice"), [])
        self.assertFalse(self.friendships.are_friends(self.db, "alice", "carol"))

    def test_inbound_requests_oldest_first_and_overview(self) -> None:
        self.friendships.send_request(self.db, "carol", "alice")
        self.friendships.send_request(self.db, "bob", "alice")

        alice = self.users["alice"]
        overview = self.friendships.get_overview(self.db, alice)
        self.assertEqual(overview["friend_requests"], ["carol", "bob"])
        self.assertEqual(overview["friends"], [])

        notifications = self.friendships.list_notifications(self.db, alice)
        self.assertEqual(len(notifications), 2)
        self.assertEqual({item["meta"]["username"] for item in notifications}, {"bob", "carol"})

    def test_changes_are_published_to_feed_channels(self) -> None:
        events: list[tuple[str, dict]] = []
        self.notifier.subscribe(feed_channel("bob"), lambda event, payload: events.append((event, payload)))

        make_friends(self.db, self.friendships, "alice", "bob")

        self.assertEqual([event for event, _ in events], ["friend_request", "friend_added"])
        self.assertEqual(events[1][1]["usernames"], ["alice", "bob"])


if __name__ == "__main__":
    unittest.main()
