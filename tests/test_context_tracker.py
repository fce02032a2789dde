# tests/test_context_tracker.py
import unittest

from fluidcontext import ContextTrackerRegistry, FileContextTracker, FileDelta, FileFingerprint


class TestFileFingerprint(unittest.TestCase):

    def test_matches(self):
        fp = FileFingerprint.of("hello")
        self.assertTrue(fp.matches("hello"))
        self.assertFalse(fp.matches("hellO"))
        self.assertFalse(fp.matches("hello!"))

    def test_dict_round_trip_keeps_hash(self):
        fp = FileFingerprint.of("x")
        restored = FileFingerprint.from_dict(fp.to_dict())
        self.assertEqual(restored.sha256, fp.sha256)
        self.assertEqual(restored.length, 1)


class TestFileContextTracker(unittest.TestCase):

    def setUp(self):
        self.tracker = FileContextTracker("chat-1")

    def test_everything_is_new_at_first(self):
        delta = self.tracker.delta({"b.ts": "2", "a.ts": "1"})
        self.assertEqual(delta.new, ["a.ts", "b.ts"])
        self.assertTrue(delta.has_changes)
        self.assertEqual(delta.to_send(), ["a.ts", "b.ts"])

    def test_classification_after_sharing(self):
        self.tracker.mark_shared({"a.ts": "1", "b.ts": "2", "c.ts": "3"})
        delta = self.tracker.delta({"a.ts": "1", "b.ts": "22", "d.ts": "4"})
        self.assertEqual(delta.unchanged, ["a.ts"])
        self.assertEqual(delta.changed, ["b.ts"])
        self.assertEqual(delta.new, ["d.ts"])
        self.assertEqual(delta.deleted, ["c.ts"])

    def test_delta_after_mark_shared_is_all_unchanged(self):
        files = {"a.ts": "1", "b.ts": "2"}
        self.tracker.mark_shared(files)
        delta = self.tracker.delta(files)
        self.assertEqual(delta, FileDelta(unchanged=["a.ts", "b.ts"]))
        self.assertFalse(delta.has_changes)

    def test_delta_does_not_mutate_inputs(self):
        files = {"a.ts": "1"}
        self.tracker.delta(files)
        self.assertEqual(files, {"a.ts": "1"})
        self.assertTrue(self.tracker.is_empty)

    def test_mark_shared_keeps_old_timestamp_for_unchanged(self):
        self.tracker.mark_shared({"a.ts": "1"}, now=100.0)
        self.tracker.mark_shared({"a.ts": "1", "b.ts": "2"}, now=200.0)
        self.assertEqual(self.tracker.fingerprint("a.ts").shared_at, 100.0)
        self.assertEqual(self.tracker.fingerprint("b.ts").shared_at, 200.0)

    def test_serialization(self):
        self.tracker.mark_shared({"a.ts": "1"})
        restored = FileContextTracker.from_dict(self.tracker.to_dict())
        self.assertEqual(restored.context_id, "chat-1")
        self.assertEqual(restored.tracked_paths, ["a.ts"])
        self.assertEqual(restored.delta({"a.ts": "1"}).unchanged, ["a.ts"])


class TestContextTrackerRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = ContextTrackerRegistry()

    def test_contexts_are_independent(self):
        self.registry.mark_shared("one", {"a.ts": "1"})
        self.assertEqual(self.registry.delta("one", {"a.ts": "1"}).unchanged, ["a.ts"])
        self.assertEqual(self.registry.delta("two", {"a.ts": "1"}).new, ["a.ts"])

    def test_clear_forgets_fingerprints(self):
        self.registry.mark_shared("one", {"a.ts": "1"})
        self.assertTrue(self.registry.clear("one"))
        self.assertNotIn("one", self.registry)
        self.assertEqual(self.registry.delta("one", {"a.ts": "1"}).new, ["a.ts"])
        self.assertFalse(self.registry.clear("missing"))

    def test_create_is_idempotent(self):
        first = self.registry.create("x")
        self.assertIs(self.registry.create("x"), first)
        self.assertIs(self.registry.get("x"), first)
        self.assertEqual(self.registry.contexts(), ["x"])

    def test_register_and_clear_all(self):
        tracker = FileContextTracker("restored")
        self.registry.register(tracker)
        self.assertIs(self.registry.get("restored"), tracker)
        self.registry.clear_all()
        self.assertEqual(self.registry.contexts(), [])


if __name__ == '__main__':
    unittest.main()
