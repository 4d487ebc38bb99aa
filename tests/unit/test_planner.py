import tempfile
import unittest
from pathlib import Path, PurePosixPath

from tidytree.classifier import Classifier
from tidytree.models import Batch, ConflictStrategy, Intent, OperationKind, PlannedOperation
from tidytree.planning.planner import Planner
from tidytree.planning.validator import validate_batch


class PlannerTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()
        self.classifier = Classifier()

    def tearDown(self):
        self._tmp.cleanup()

    def make(self, rel: str, content: str = "data") -> Path:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    def intent(self, rel_source: str, rel_dest: str | None, kind=OperationKind.MOVE) -> Intent:
        source = self.classifier.describe(self.root / rel_source)
        dest = PurePosixPath(rel_dest) if rel_dest else None
        return Intent(source=source, destination=dest, kind=kind, reason="test")

    def dests(self, batch: Batch) -> list[str]:
        return [op.destination.relative_to(self.root).as_posix() for op in batch.operations]


class TestPlanner(PlannerTestCase):
    def test_no_conflict(self):
        self.make("photo.jpg")
        batch = Planner(self.root).resolve([self.intent("photo.jpg", "Images/photo.jpg")])

        self.assertEqual(self.dests(batch), ["Images/photo.jpg"])
        op = batch.operations[0]
        self.assertFalse(op.replace)
        self.assertEqual(op.batch_id, batch.batch_id)
        self.assertEqual(op.strategy, ConflictStrategy.RENAME)

    def test_already_in_place_is_dropped(self):
        self.make("Images/photo.jpg")
        batch = Planner(self.root).resolve([self.intent("Images/photo.jpg", "Images/photo.jpg")])

        self.assertEqual(len(batch), 0)
        self.assertEqual(batch.dropped[0][1], "Already in place")

    def test_duplicate_source_dropped(self):
        self.make("a.txt")
        batch = Planner(self.root).resolve([
            self.intent("a.txt", "X/a.txt"),
            self.intent("a.txt", "Y/a.txt"),
        ])
        self.assertEqual(self.dests(batch), ["X/a.txt"])
        self.assertEqual(batch.dropped[0][1], "Duplicate source in batch")

    def test_rename_uses_lowest_free_suffix(self):
        """Images/photo.jpg exists: the next two collisions get _1 and _2."""
        self.make("Images/photo.jpg", "original")
        self.make("a/photo.jpg", "first")
        self.make("b/photo.jpg", "second")

        batch = Planner(self.root, ConflictStrategy.RENAME).resolve([
            self.intent("a/photo.jpg", "Images/photo.jpg"),
            self.intent("b/photo.jpg", "Images/photo.jpg"),
        ])

        self.assertEqual(self.dests(batch), ["Images/photo_1.jpg", "Images/photo_2.jpg"])

    def test_rename_skips_names_taken_on_disk(self):
        self.make("Images/photo.jpg")
        self.make("Images/photo_1.jpg")
        self.make("photo.jpg")

        batch = Planner(self.root).resolve([self.intent("photo.jpg", "Images/photo.jpg")])

        self.assertEqual(self.dests(batch), ["Images/photo_2.jpg"])

    def test_skip(self):
        self.make("Images/photo.jpg")
        self.make("photo.jpg")

        batch = Planner(self.root, ConflictStrategy.SKIP).resolve([self.intent("photo.jpg", "Images/photo.jpg")])

        self.assertEqual(len(batch), 0)
        self.assertTrue(batch.dropped[0][1].startswith("Destination exists"))

    def test_overwrite_replaces_existing_but_not_batch_claims(self):
        self.make("Images/photo.jpg")
        self.make("a/photo.jpg")
        self.make("b/photo.jpg")

        batch = Planner(self.root, ConflictStrategy.OVERWRITE).resolve([
            self.intent("a/photo.jpg", "Images/photo.jpg"),
            self.intent("b/photo.jpg", "Images/photo.jpg"),
        ])

        self.assertEqual(self.dests(batch), ["Images/photo.jpg", "Images/photo_1.jpg"])
        self.assertTrue(batch.operations[0].replace)
        self.assertFalse(batch.operations[1].replace)

    def test_overwrite_never_replaces_a_later_batch_source(self):
        self.make("a.txt", "new")
        self.make("Archive/a.txt", "old")

        batch = Planner(self.root, ConflictStrategy.OVERWRITE).resolve([
            self.intent("a.txt", "Archive/a.txt"),
            self.intent("Archive/a.txt", "Old/a.txt"),
        ])

        self.assertEqual(self.dests(batch), ["Archive/a_1.txt", "Old/a.txt"])
        self.assertFalse(batch.operations[0].replace)

    def test_backup(self):
        self.make("Images/photo.jpg")
        self.make("Images/photo.jpg.bak")
        self.make("photo.jpg")

        batch = Planner(self.root, ConflictStrategy.BACKUP).resolve([self.intent("photo.jpg", "Images/photo.jpg")])

        op = batch.operations[0]
        self.assertTrue(op.replace)
        self.assertEqual(op.destination, self.root / "Images/photo.jpg")
        self.assertEqual(op.backup, self.root / "Images/photo.jpg_1.bak")

    def test_deduplicate(self):
        self.make("Images/same.jpg", "identical")
        self.make("same.jpg", "identical")
        self.make("Images/diff.jpg", "one")
        self.make("diff.jpg", "two")

        batch = Planner(self.root, ConflictStrategy.DEDUPLICATE).resolve([
            self.intent("same.jpg", "Images/same.jpg"),
            self.intent("diff.jpg", "Images/diff.jpg"),
        ])

        self.assertEqual(self.dests(batch), ["Images/diff_1.jpg"])
        self.assertEqual(batch.dropped[0], (self.root / "same.jpg", "Identical file already at destination"))

    def test_deduplicate_within_batch(self):
        self.make("a/x.txt", "same")
        self.make("b/x.txt", "same")

        batch = Planner(self.root, ConflictStrategy.DEDUPLICATE).resolve([
            self.intent("a/x.txt", "Text/x.txt"),
            self.intent("b/x.txt", "Text/x.txt"),
        ])

        self.assertEqual(self.dests(batch), ["Text/x.txt"])
        self.assertEqual(len(batch.dropped), 1)

    def test_ask_without_callback_is_pending_and_skipped(self):
        self.make("Images/photo.jpg")
        self.make("photo.jpg")

        batch = Planner(self.root, ConflictStrategy.ASK).resolve([self.intent("photo.jpg", "Images/photo.jpg")])

        self.assertEqual(len(batch), 0)
        self.assertEqual(len(batch.pending), 1)
        self.assertEqual(batch.pending[0].existing, self.root / "Images/photo.jpg")

    def test_resume_applies_decisions(self):
        self.make("Images/photo.jpg")
        self.make("photo.jpg")
        planner = Planner(self.root, ConflictStrategy.ASK)
        batch = planner.resolve([self.intent("photo.jpg", "Images/photo.jpg")])

        resumed = planner.resume(batch, {self.root / "photo.jpg": "overwrite"})

        self.assertEqual(resumed.batch_id, batch.batch_id)
        self.assertEqual(resumed.pending, [])
        self.assertEqual(self.dests(resumed), ["Images/photo.jpg"])
        self.assertTrue(resumed.operations[0].replace)

    def test_ask_with_callback(self):
        self.make("Images/photo.jpg")
        self.make("photo.jpg")
        seen = []

        def decide(pending):
            seen.append(pending)
            return ConflictStrategy.RENAME

        batch = Planner(self.root, ConflictStrategy.ASK, decide=decide).resolve(
            [self.intent("photo.jpg", "Images/photo.jpg")]
        )

        self.assertEqual(len(seen), 1)
        self.assertEqual(self.dests(batch), ["Images/photo_1.jpg"])

    def test_delete_intents_have_no_destination(self):
        self.make("dup.txt")
        batch = Planner(self.root).resolve([self.intent("dup.txt", None, OperationKind.DELETE)])

        self.assertEqual(batch.operations[0].kind, OperationKind.DELETE)
        self.assertIsNone(batch.operations[0].destination)
        self.assertFalse(batch.undoable)


class TestValidator(PlannerTestCase):
    def _op(self, src: str, dst: str) -> PlannedOperation:
        return PlannedOperation(
            source=self.root / src,
            destination=self.root / dst,
            kind=OperationKind.MOVE,
            strategy=ConflictStrategy.RENAME,
            batch_id="b1",
        )

    def _batch(self, *ops) -> Batch:
        return Batch(batch_id="b1", command="test", root=self.root,
                     strategy=ConflictStrategy.RENAME, operations=list(ops))

    def test_collisions_are_hard_failures(self):
        self.make("a.txt")
        self.make("b.txt")
        batch = self._batch(self._op("a.txt", "X/f.txt"), self._op("b.txt", "X/f.txt"))

        with self.assertRaises(ValueError):
            validate_batch(batch, verbose=False)

    def test_escaping_destination_is_hard_failure(self):
        self.make("a.txt")
        batch = self._batch(self._op("a.txt", "../outside.txt"))

        with self.assertRaises(ValueError):
            validate_batch(batch, verbose=False)

    def test_vanished_source_is_skipped(self):
        self.make("a.txt")
        batch = self._batch(self._op("a.txt", "X/a.txt"), self._op("gone.txt", "X/gone.txt"))

        validate_batch(batch, verbose=False)

        self.assertEqual(len(batch.operations), 1)
        self.assertEqual(batch.dropped[0][0], self.root / "gone.txt")

    def test_destination_inside_bundle_is_skipped(self):
        self.make("a.txt")
        batch = self._batch(self._op("a.txt", "Tool.app/Contents/a.txt"))

        validate_batch(batch, verbose=False)

        self.assertEqual(len(batch.operations), 0)

    def test_missing_root(self):
        batch = Batch(batch_id="b1", command="test", root=self.root / "missing",
                      strategy=ConflictStrategy.RENAME)
        with self.assertRaises(RuntimeError):
            validate_batch(batch, verbose=False)


if __name__ == "__main__":
    unittest.main()
