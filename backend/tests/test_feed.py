import unittest

from nettrack.core.errors import ForbiddenError, NotFoundError, ValidationError
from nettrack.schemas.activity import ActivityCreateRequest, ActivityUpdateRequest
from nettrack.services.change_notifier import ChangeNotifier, feed_channel
from nettrack.services.feed_service import FeedService
from nettrack.services.friendship_service import FriendshipService
from support import create_user, make_friends, make_session_factory


class FeedServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.notifier = ChangeNotifier()
        self.friendships = FriendshipService(self.notifier)
        self.feed = FeedService(self.notifier, self.friendships)
        self.users = {username: create_user(self.db, username) for username in ("alice", "bob", "carol")}

    def tearDown(self) -> None:
        self.db.close()

    def _record(self, owner: str, title: str, position: str = "12:00", **extra) -> dict:
        payload = ActivityCreateRequest(title=title, timestamp_left_off=position, **extra)
        return self.feed.record_activity(self.db, self.users[owner], payload)

    def test_friend_sees_new_activity_in_feed(self) -> None:
        self.friendships.send_request(self.db, "alice", "bob")
        self.friendships.accept_request(self.db, "bob", "alice")
        self._record("alice", "Show X")

        entries = self.feed.build_friends_feed(self.db, "bob")

        self.assertEqual(len(entries), 1)
        entry = entries[0]
        self.assertEqual(entry["title"], "Show X")
        self.assertEqual(entry["timestamp_left_off"], "12:00")
        self.assertEqual(entry["friend_username"], "alice")
        self.assertEqual(entry["friend_name"], "Alice")
        self.assertEqual(entry["likes"], [])
        self.assertEqual(entry["comments"], [])

    def test_non_friend_feed_is_empty(self) -> None:
        self._record("alice", "Show X")
        self.assertEqual(self.feed.build_friends_feed(self.db, "carol"), [])

    def test_record_validation(self) -> None:
        with self.assertRaises(ValidationError):
            self._record("alice", "   ")
        with self.assertRaises(ValidationError):
            self._record("alice", "Show X", position=" ")
        with self.assertRaises(ValidationError) as ctx:
            self._record("alice", "Show X", media_type="tv", season=1)
        self.assertEqual(ctx.exception.message, "Season and episode are required for TV shows")

        self.assertEqual(self.feed.list_user_activities(self.db, "alice"), [])

    def test_activity_ids_unique_per_owner(self) -> None:
        ids = {self._record("alice", f"Title {index}")["id"] for index in range(5)}
        self.assertEqual(len(ids), 5)

    def test_profile_history_newest_first_feed_keeps_encounter_order(self) -> None:
        make_friends(self.db, self.friendships, "alice", "bob")
        first = self._record("alice", "First")
        second = self._record("alice", "Second")

        history = self.feed.list_user_activities(self.db, "alice")
        self.assertEqual([entry["id"] for entry in history], [second["id"], first["id"]])

        feed = self.feed.build_friends_feed(self.db, "bob")
        self.assertEqual([entry["id"] for entry in feed], [first["id"], second["id"]])

    def test_feed_walks_friends_in_friendship_order(self) -> None:
        make_friends(self.db, self.friendships, "carol", "alice")
        make_friends(self.db, self.friendships, "bob", "alice")
        self._record("bob", "From Bob")
        self._record("carol", "From Carol")

        feed = self.feed.build_friends_feed(self.db, "alice")
        self.assertEqual([entry["friend_username"] for entry in feed], ["carol", "bob"])

    def test_toggle_like_is_involution(self) -> None:
        make_friends(self.db, self.friendships, "alice", "bob")
        activity = self._record("alice", "Show X")

        first = self.feed.toggle_like(self.db, "alice", activity["id"], "bob")
        second = self.feed.toggle_like(self.db, "alice", activity["id"], "bob")

        self.assertEqual(first, {"liked": True, "likes": ["bob"]})
        self.assertEqual(second, {"liked": False, "likes": []})
        self.assertEqual(self.feed.get_activity(self.db, "alice", activity["id"])["likes"], [])

    def test_likes_from_different_actors_both_persist(self) -> None:
        make_friends(self.db, self.friendships, "alice", "bob")
        make_friends(self.db, self.friendships, "alice", "carol")
        activity = self._record("alice", "Show X")

        # Both sessions read the activity before either writes.
        with self.session_factory() as bob_db, self.session_factory() as carol_db:
            self.feed.get_activity(bob_db, "alice", activity["id"])
            self.feed.get_activity(carol_db, "alice", activity["id"])
            self.feed.toggle_like(bob_db, "alice", activity["id"], "bob")
            self.feed.toggle_like(carol_db, "alice", activity["id"], "carol")

        likes = self.feed.get_activity(self.db, "alice", activity["id"])["likes"]
        self.assertEqual(sorted(likes), ["bob", "carol"])

    def test_strangers_cannot_engage(self) -> None:
        activity = self._record("alice", "Show X")
        with self.assertRaises(ForbiddenError):
            self.feed.toggle_like(self.db, "alice", activity["id"], "carol")
        with self.assertRaises(ForbiddenError):
            self.feed.post_comment(self.db, "alice", activity["id"], "carol", "hi")

    def test_blank_comment_rejected_and_list_unchanged(self) -> None:
        make_friends(self.db, self.friendships, "alice", "bob")
        activity = self._record("alice", "Show X")
        self.feed.post_comment(self.db, "alice", activity["id"], "bob", "Great episode")

        with self.assertRaises(ValidationError):
            self.feed.post_comment(self.db, "alice", activity["id"], "bob", "   ")

        comments = self.feed.get_activity(self.db, "alice", activity["id"])["comments"]
        self.assertEqual([comment["text"] for comment in comments], ["Great episode"])

    def test_delete_comment_by_id_and_by_position(self) -> None:
        make_friends(self.db, self.friendships, "alice", "bob")
        activity = self._record("alice", "Show X")
        first = self.feed.post_comment(self.db, "alice", activity["id"], "bob", "one")
        self.feed.post_comment(self.db, "alice", activity["id"], "alice", "two")
        self.feed.post_comment(self.db, "alice", activity["id"], "bob", "three")

        with self.assertRaises(ForbiddenError):
            self.feed.delete_comment(self.db, "alice", activity["id"], first["id"], "alice")

        self.feed.delete_comment(self.db, "alice", activity["id"], first["id"], "bob")
        self.feed.delete_comment_at(self.db, "alice", activity["id"], 1, "bob")

        comments = self.feed.get_activity(self.db, "alice", activity["id"])["comments"]
        self.assertEqual([comment["text"] for comment in comments], ["two"])
        with self.assertRaises(NotFoundError):
            self.feed.delete_comment(self.db, "alice", activity["id"], first["id"], "bob")
        with self.assertRaises(NotFoundError):
            self.feed.delete_comment_at(self.db, "alice", activity["id"], 5, "alice")

    def test_update_and_delete_activity(self) -> None:
        activity = self._record("alice", "Show X", media_type="tv", season=1, episode=2)

        updated = self.feed.update_activity(
            self.db,
            self.users["alice"],
            activity["id"],
            ActivityUpdateRequest(timestamp_left_off="33:10", episode=3),
        )
        self.assertEqual(updated["timestamp_left_off"], "33:10")
        self.assertEqual((updated["season"], updated["episode"]), (1, 3))

        self.feed.delete_activity(self.db, self.users["alice"], activity["id"])
        with self.assertRaises(NotFoundError):
            self.feed.get_activity(self.db, "alice", activity["id"])

    def test_public_profile(self) -> None:
        self._record("alice", "Show X")
        profile = self.feed.get_public_profile(self.db, "alice")
        self.assertEqual(profile["username"], "alice")
        self.assertEqual([entry["title"] for entry in profile["history"]], ["Show X"])
        with self.assertRaises(NotFoundError):
            self.feed.get_public_profile(self.db, "nobody")

    def test_activity_changes_notify_owner_and_friends(self) -> None:
        make_friends(self.db, self.friendships, "alice", "bob")
        events: list[str] = []
        self.notifier.subscribe(feed_channel("bob"), lambda event, _payload: events.append(event))

        activity = self._record("alice", "Show X")
        self.feed.toggle_like(self.db, "alice", activity["id"], "bob")

        self.assertEqual(events, ["activity_added", "activity_liked"])


if __name__ == "__main__":
    unittest.main()
