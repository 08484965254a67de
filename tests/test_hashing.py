import hashlib
import pickle
import tempfile
import unittest
from pathlib import Path

from bloomdedup import Batch, ConfigurationError, ErrorPolicy, FileAccessError, hash_batch
from bloomdedup.hashing import compute_digest, digest_size

from .test_utils import write_files


class DigestTest(unittest.TestCase):
    def test_compute_digest_matches_hashlib(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            data = bytes(range(256)) * 4096
            paths = write_files(Path(tmpdir), {'big.bin': data})

            self.assertEqual(hashlib.md5(data).digest(), compute_digest(paths['big.bin'], 'md5'))
            self.assertEqual(hashlib.sha256(data).digest(), compute_digest(paths['big.bin'], 'sha256'))

    def test_same_content_different_paths(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = write_files(Path(tmpdir), {'a.txt': b'hello', 'dir/b.txt': b'hello', 'c.txt': b'world'})

            self.assertEqual(compute_digest(paths['a.txt'], 'md5'), compute_digest(paths['dir/b.txt'], 'md5'))
            self.assertEqual(compute_digest(paths['a.txt'], 'md5'), compute_digest(paths['a.txt'], 'md5'))
            self.assertNotEqual(compute_digest(paths['a.txt'], 'md5'), compute_digest(paths['c.txt'], 'md5'))

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            missing = Path(tmpdir) / 'gone'

            with self.assertRaises(FileAccessError) as cm:
                compute_digest(missing, 'md5')

            self.assertEqual(missing, cm.exception.path)
            self.assertIn('gone', str(cm.exception))

    def test_digest_size(self):
        self.assertEqual(16, digest_size('md5'))
        self.assertEqual(32, digest_size('sha256'))
        self.assertEqual(64, digest_size('blake2b'))

    def test_digest_size_rejects_bad_algorithms(self):
        for algorithm in ('no-such-hash', 'shake_128', 'shake_256'):
            with self.subTest(algorithm=algorithm):
                with self.assertRaises(ConfigurationError):
                    digest_size(algorithm)

    def test_file_access_error_pickles(self):
        error = FileAccessError(Path('/data/file'), 'No such file or directory')

        restored = pickle.loads(pickle.dumps(error))

        self.assertIsInstance(restored, FileAccessError)
        self.assertEqual(Path('/data/file'), restored.path)
        self.assertEqual('No such file or directory', restored.reason)
        self.assertEqual(str(error), str(restored))


class HashBatchTest(unittest.TestCase):
    def test_hash_batch(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = write_files(Path(tmpdir), {'a': b'hello', 'b': b'hello', 'c': b'world'})
            batch = Batch('B7', (paths['a'], paths['b'], paths['c']), 15)

            result = hash_batch(batch, 'md5')

            self.assertEqual('B7', result.batch_id)
            self.assertEqual([paths['a'], paths['b'], paths['c']], [entry.path for entry in result.entries])
            self.assertTrue(all(len(entry.digest) == 16 for entry in result.entries))
            self.assertEqual(result.entries[0].digest, result.entries[1].digest)
            self.assertEqual((), result.skipped)

    def test_abort_batch_policy(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = write_files(Path(tmpdir), {'a': b'hello'})
            missing = Path(tmpdir) / 'vanished'
            batch = Batch('B0', (paths['a'], missing), 5)

            with self.assertRaises(FileAccessError) as cm:
                hash_batch(batch, 'md5', ErrorPolicy.ABORT_BATCH)

            self.assertEqual(missing, cm.exception.path)

    def test_skip_file_policy(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = write_files(Path(tmpdir), {'a': b'hello', 'c': b'world'})
            missing = Path(tmpdir) / 'vanished'
            batch = Batch('B0', (paths['a'], missing, paths['c']), 10)

            result = hash_batch(batch, 'md5', 'skip')

            self.assertEqual([paths['a'], paths['c']], [entry.path for entry in result.entries])
            self.assertEqual(1, len(result.skipped))
            self.assertEqual(missing, result.skipped[0].path)
            self.assertTrue(result.skipped[0].reason)

    def test_directory_is_unreadable(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            batch = Batch('B0', (Path(tmpdir),), 0)

            result = hash_batch(batch, 'md5', ErrorPolicy.SKIP_FILE)

            self.assertEqual((), result.entries)
            self.assertEqual(Path(tmpdir), result.skipped[0].path)


if __name__ == '__main__':
    unittest.main()
