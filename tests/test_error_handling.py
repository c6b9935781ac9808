#!/usr/bin/env python3
"""
Test error handling scenarios for trim.py.
"""

import io
import logging
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

# Add parent directory to path to import trim module
sys.path.insert(0, str(Path(__file__).parent.parent))
import trim  # pylint: disable=wrong-import-position

# Disable logging for tests
trim.logger.setLevel(logging.CRITICAL)


class TestReadErrors(unittest.TestCase):
    def setUp(self) -> None:
        # Create a temporary directory
        self.test_dir = tempfile.mkdtemp()

        # Create test files
        self.test_file = os.path.join(self.test_dir, "test.txt")
        with open(self.test_file, "w", encoding="utf-8") as f:
            f.write("Test content  \n")

    def tearDown(self) -> None:
        # Clean up the temporary directory
        shutil.rmtree(self.test_dir)

    def test_read_target(self) -> None:
        """Test reading a regular UTF-8 file."""
        self.assertEqual(trim.read_target(self.test_file), "Test content  \n")

    def test_nonexistent_file(self) -> None:
        """Test reading a file that doesn't exist."""
        missing = os.path.join(self.test_dir, "missing.txt")
        with self.assertRaises(trim.TargetNotFoundError) as cm:
            trim.read_target(missing)
        self.assertEqual(cm.exception.path, missing)
        self.assertEqual(str(cm.exception), f"{missing}: file not found")

    def test_permission_denied(self) -> None:
        """Test reading a file with permission issues."""
        with patch("builtins.open", side_effect=PermissionError("denied")):
            with self.assertRaises(trim.TargetPermissionError):
                trim.read_target(self.test_file)

    def test_directory(self) -> None:
        """Test that a directory is reported as a read failure."""
        with self.assertRaises(trim.TargetReadError):
            trim.read_target(self.test_dir)

    def test_invalid_utf8(self) -> None:
        """Test that undecodable content is rejected."""
        latin1 = os.path.join(self.test_dir, "latin1.txt")
        with open(latin1, "wb") as f:
            f.write(b"Special chars: \xe9\xe8\xe7\n")
        with self.assertRaises(trim.InvalidEncodingError) as cm:
            trim.read_target(latin1)
        self.assertIn("not valid utf-8 text", cm.exception.reason)

    def test_binary_content(self) -> None:
        """Test that binary files are rejected."""
        binary = os.path.join(self.test_dir, "binary_file.bin")
        with open(binary, "wb") as f:
            f.write(b"abc\x00\x01\x02")
        with self.assertRaises(trim.InvalidEncodingError):
            trim.read_target(binary)

    def test_binary_signature(self) -> None:
        """Test that files with a known binary signature are rejected."""
        self.assertTrue(trim.is_binary(b"%PDF-1.7\n"))
        self.assertTrue(trim.is_binary(b"PK\x03\x04rest"))
        self.assertFalse(trim.is_binary(b"plain text\n"))
        self.assertFalse(trim.is_binary(b""))

    def test_errors_are_trim_errors(self) -> None:
        """Test that every per-file error shares the same base class."""
        for error in (
            trim.TargetNotFoundError,
            trim.TargetPermissionError,
            trim.InvalidEncodingError,
            trim.TargetReadError,
            trim.WriteFailureError,
            trim.StdinUnreadableError,
        ):
            self.assertTrue(issubclass(error, trim.TrimError))

    def test_trim_target_captures_error(self) -> None:
        """Test that trim_target reports a failure instead of raising it."""
        target = trim.Target(os.path.join(self.test_dir, "missing.txt"))
        outcome = trim.trim_target(target, trim.Config())
        self.assertFalse(outcome.ok)
        self.assertIsNone(outcome.result)
        self.assertIsInstance(outcome.error, trim.TargetNotFoundError)

    def test_invalid_file_does_not_stop_others(self) -> None:
        """Test that an undecodable file is skipped while others are trimmed."""
        bad = os.path.join(self.test_dir, "bad.txt")
        with open(bad, "wb") as f:
            f.write(b"\xff\xfe bad  \n")
        stdout = io.StringIO()
        with self.assertLogs("trim", level="ERROR") as logs:
            result = trim.run(
                trim.Config(files=(bad, self.test_file)),
                io.StringIO(),
                stdout,
                io.StringIO(),
            )
        self.assertEqual(result, 1)
        self.assertEqual(stdout.getvalue(), "Test content\n")
        self.assertTrue(any(bad in line for line in logs.output))


class TestStdinErrors(unittest.TestCase):
    def test_unreadable_stdin_is_fatal(self) -> None:
        """Test that a failing stdin aborts the whole run."""
        stdin = MagicMock()
        stdin.buffer.read.side_effect = OSError("Input/output error")
        stdout = io.StringIO()
        with patch("trim.trim_targets") as mock_trim:
            with self.assertLogs("trim", level="ERROR"):
                result = trim.run(trim.Config(), stdin, stdout, io.StringIO())
        self.assertEqual(result, 1)
        self.assertEqual(stdout.getvalue(), "")
        mock_trim.assert_not_called()

    def test_undecodable_stdin_is_fatal(self) -> None:
        """Test that stdin which is not valid text aborts the run."""
        stdin = io.TextIOWrapper(io.BytesIO(b"\xff\xfe\x00"), encoding="utf-8")
        with self.assertRaises(trim.StdinUnreadableError):
            trim.read_stdin(stdin)

    def test_closed_stdin(self) -> None:
        """Test that a closed stdin is reported as unreadable."""
        stdin = io.StringIO("text")
        stdin.close()
        with self.assertRaises(trim.StdinUnreadableError):
            trim.read_stdin(stdin)


class TestAtomicWrite(unittest.TestCase):
    def setUp(self) -> None:
        # Create a temporary directory
        self.test_dir = tempfile.mkdtemp()
        self.test_file = os.path.join(self.test_dir, "test.txt")
        self.original = b"keep me  \n\n\n"
        with open(self.test_file, "wb") as f:
            f.write(self.original)

    def tearDown(self) -> None:
        # Clean up the temporary directory
        shutil.rmtree(self.test_dir)

    def read(self) -> bytes:
        with open(self.test_file, "rb") as f:
            return f.read()

    def test_atomic_write(self) -> None:
        """Test that atomic_write replaces the content and leaves no temp file."""
        trim.atomic_write(self.test_file, "new\n")
        self.assertEqual(self.read(), b"new\n")
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_replace_failure_leaves_original(self) -> None:
        """Test that a failing rename keeps the original content."""
        with patch("os.replace", side_effect=OSError("Rename error")):
            with self.assertRaises(trim.WriteFailureError):
                trim.atomic_write(self.test_file, "new\n")
        self.assertEqual(self.read(), self.original)
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_failure_mid_write_leaves_original(self) -> None:
        """Test that a failure while staging keeps the original content."""
        with patch("os.fsync", side_effect=OSError("Disk full")):
            with self.assertRaises(trim.WriteFailureError):
                trim.atomic_write(self.test_file, "new\n")
        self.assertEqual(self.read(), self.original)
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])

    def test_staging_failure(self) -> None:
        """Test that a temp file that cannot be created is a write failure."""
        with patch("tempfile.NamedTemporaryFile", side_effect=OSError("Read-only")):
            with self.assertRaises(trim.WriteFailureError):
                trim.atomic_write(self.test_file, "new\n")
        self.assertEqual(self.read(), self.original)

    def test_run_reports_write_failure(self) -> None:
        """Test that run reports a failed in-place write and exits nonzero."""
        with patch("os.replace", side_effect=OSError("Rename error")):
            with self.assertLogs("trim", level="ERROR") as logs:
                result = trim.run(
                    trim.Config(files=(self.test_file,), in_place=True),
                    io.StringIO(),
                    io.StringIO(),
                    io.StringIO(),
                )
        self.assertEqual(result, 1)
        self.assertEqual(self.read(), self.original)
        self.assertEqual(os.listdir(self.test_dir), ["test.txt"])
        self.assertTrue(any("Rename error" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
