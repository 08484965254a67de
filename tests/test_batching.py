import random
import unittest
from pathlib import Path

from bloomdedup import Batch, ConfigurationError, FileRecord, generate_batches


def random_records(seed: int, count: int) -> list[FileRecord]:
    rng = random.Random(seed)
    records = [FileRecord(Path(f'/data/file{i:04d}'), rng.choice([0, 1, 7, 100, 4096, rng.randrange(1 << 20)]))
               for i in range(count)]
    return sorted(records, key=lambda record: record.size)


class GenerateBatchesTest(unittest.TestCase):
    def test_batches_are_complete_and_disjoint(self):
        records = random_records(1, 500)

        for threshold in (0.5, 1, 10, 1000, 1 << 20, 1 << 40):
            with self.subTest(threshold=threshold):
                batches = list(generate_batches(records, threshold))
                paths = [path for batch in batches for path in batch.paths]

                self.assertEqual(len(records), len(paths))
                self.assertEqual({record.path for record in records}, set(paths))

    def test_batch_size_bound(self):
        records = random_records(2, 500)
        sizes = {record.path: record.size for record in records}

        for threshold in (1, 50, 5000, 1 << 21):
            with self.subTest(threshold=threshold):
                batches = list(generate_batches(records, threshold))

                for batch in batches[:-1]:
                    self.assertGreaterEqual(batch.total_bytes, threshold)
                for batch in batches:
                    self.assertEqual(sum(sizes[path] for path in batch.paths), batch.total_bytes)
                    self.assertTrue(batch.paths)

    def test_batch_ids_and_order(self):
        records = [FileRecord(Path(f'f{i}'), 10) for i in range(5)]

        batches = list(generate_batches(records, 20))

        self.assertEqual(['B0', 'B1', 'B2'], [batch.batch_id for batch in batches])
        self.assertEqual(Batch('B0', (Path('f0'), Path('f1')), 20), batches[0])
        self.assertEqual((Path('f4'),), batches[2].paths)
        self.assertEqual(10, batches[2].total_bytes)

    def test_single_batch_below_threshold(self):
        records = [FileRecord(Path('a'), 5), FileRecord(Path('b'), 5), FileRecord(Path('c'), 5)]

        batches = list(generate_batches(records, 100))

        self.assertEqual(1, len(batches))
        self.assertEqual((Path('a'), Path('b'), Path('c')), batches[0].paths)

    def test_empty_input(self):
        self.assertEqual([], list(generate_batches([], 100)))

    def test_no_trailing_empty_batch(self):
        records = [FileRecord(Path('a'), 50), FileRecord(Path('b'), 50)]

        batches = list(generate_batches(records, 100))

        self.assertEqual(1, len(batches))

    def test_zero_size_files(self):
        records = [FileRecord(Path(f'empty{i}'), 0) for i in range(3)]

        batches = list(generate_batches(records, 1))

        self.assertEqual(1, len(batches))
        self.assertEqual(0, batches[0].total_bytes)

    def test_batches_are_produced_lazily(self):
        def records():
            yield FileRecord(Path('a'), 10)
            yield FileRecord(Path('b'), 10)
            raise AssertionError("source consumed too far")

        batches = generate_batches(records(), 10)

        self.assertEqual((Path('a'),), next(batches).paths)

    def test_invalid_threshold_rejected_eagerly(self):
        def records():
            raise AssertionError("source must not be touched")
            yield  # pragma: no cover

        for threshold in (0, -1, -0.5, float('nan'), True, None, "100"):
            with self.subTest(threshold=threshold):
                with self.assertRaises(ConfigurationError):
                    generate_batches(records(), threshold)


if __name__ == '__main__':
    unittest.main()
