import io
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

from bloomdedup.cli import EXIT_INCOMPLETE, bloomdedup_main

from .test_utils import write_files


def run_cli(*argv):
    stdout = io.StringIO()
    stderr = io.StringIO()
    with redirect_stdout(stdout), redirect_stderr(stderr):
        status = bloomdedup_main(list(argv))
    return status, stdout.getvalue(), stderr.getvalue()


class CliTest(unittest.TestCase):
    def test_scan(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            paths = write_files(Path(tmpdir), {'A': b'hello', 'B': b'hello', 'C': b'world', 'sub/D': b'hello'})

            status, stdout, stderr = run_cli('scan', tmpdir, '--concurrency', '2', '--max-batch-bytes', '5')

            self.assertEqual(0, status)
            reported = [line.removeprefix('Duplicate found: ') for line in stdout.splitlines()]
            self.assertEqual(2, len(reported))
            self.assertTrue(set(reported) <= {str(paths['A']), str(paths['B']), str(paths['sub/D'])})
            self.assertEqual('', stderr)

    def test_settings_file_is_read(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(Path(tmpdir), {'.bloomdedup/settings.toml': b'[filter]\ncapacity = 0\n'})

            status, _, stderr = run_cli('scan', tmpdir)

            self.assertEqual(1, status)
            self.assertIn('capacity', stderr)

    def test_incomplete_scan(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_files(Path(tmpdir), {'readable': b'data'})
            locked = write_files(Path(tmpdir), {'locked': b'secret'})['locked']
            locked.chmod(0)
            try:
                if _readable(locked):
                    self.skipTest("file permissions are not enforced")
                status, _, stderr = run_cli('scan', tmpdir, '--concurrency', '1', '--on-error', 'skip')
            finally:
                locked.chmod(0o644)

            self.assertEqual(EXIT_INCOMPLETE, status)
            self.assertIn('incomplete', stderr)
            self.assertIn(str(locked), stderr)

    def test_invalid_settings(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            status, stdout, stderr = run_cli('scan', tmpdir, '--capacity', '0')

            self.assertEqual(1, status)
            self.assertEqual('', stdout)
            self.assertIn('Error:', stderr)

    def test_root_must_be_a_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            status, _, stderr = run_cli('scan', str(Path(tmpdir) / 'missing'))

            self.assertEqual(1, status)
            self.assertIn('not a directory', stderr)


def _readable(path: Path) -> bool:
    try:
        with open(path, 'rb'):
            return True
    except OSError:
        return False


if __name__ == '__main__':
    unittest.main()
