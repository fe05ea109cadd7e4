import os
import sys
import unittest


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))


from mediafeed.models import FeedEvent, MediaDescriptor  # noqa: E402
from mediafeed.rules.filters import FeedFilter, filter_by_author, filter_by_tag  # noqa: E402


def _event(event_id: str, *, kind: int = 20, pubkey: str = "alice", tags=()) -> FeedEvent:  # noqa: ANN001
    return FeedEvent(
        id=event_id,
        pubkey=pubkey,
        created_at=1,
        kind=kind,
        content="",
        tags=tuple(tags),
        media=(MediaDescriptor(url=f"https://cdn.example/{event_id}.jpg", mime_type="image/jpeg"),),
    )


class TestFilters(unittest.TestCase):
    def setUp(self) -> None:
        self.events = [
            _event("1", tags=[("t", "Cats"), ("content-warning", "nsfw")]),
            _event("2", kind=22, pubkey="bob", tags=[("t", "skate")]),
            _event("3", pubkey="bob", tags=[("location", "Lisbon")]),
        ]

    def test_filter_by_tag_key_and_value(self) -> None:
        self.assertEqual([e.id for e in filter_by_tag(self.events, "t")], ["1", "2"])
        self.assertEqual([e.id for e in filter_by_tag(self.events, "t", "skate")], ["2"])
        self.assertEqual(filter_by_tag(self.events, "t", "dogs"), [])

    def test_filter_by_author(self) -> None:
        self.assertEqual([e.id for e in filter_by_author(self.events, "bob")], ["2", "3"])

    def test_hashtag_is_case_insensitive(self) -> None:
        self.assertEqual([e.id for e in FeedFilter(hashtag="#cats").apply(self.events)], ["1"])

    def test_combined_filter(self) -> None:
        flt = FeedFilter(kinds=(20,), authors=("bob",), tag_key="location")
        self.assertEqual([e.id for e in flt.apply(self.events)], ["3"])

    def test_empty_filter_keeps_order(self) -> None:
        self.assertEqual([e.id for e in FeedFilter().apply(self.events)], ["1", "2", "3"])
