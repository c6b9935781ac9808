#!/usr/bin/env python3
"""
trim

A command-line utility that strips trailing whitespace from each line of its
input and collapses trailing blank lines into a single trailing newline.
"""

import argparse
import concurrent.futures
import logging
import os
import shutil
import sys
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import IO, Iterator, List, Optional, Sequence, Tuple

from tqdm import tqdm

# Define version
__version__ = "1.0.0"

ENCODING = "utf-8"
# A stray "\r" left at the end of a line body counts as whitespace too
TRAILING_WHITESPACE = " \t\f\v\r"
STDIN_LABEL = "<stdin>"
BINARY_SIGNATURES = (
    b"\x89PNG",
    b"GIF87a",
    b"GIF89a",
    b"\xff\xd8\xff",
    b"%PDF-",
    b"PK\x03\x04",
)
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("trim")
# Serializes log calls made from worker threads
log_lock = threading.Lock()


class TrimError(Exception):
    """A failure that affects a single target."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class TargetNotFoundError(TrimError):
    pass


class TargetPermissionError(TrimError):
    pass


class InvalidEncodingError(TrimError):
    pass


class TargetReadError(TrimError):
    pass


class WriteFailureError(TrimError):
    pass


class StdinUnreadableError(TrimError):
    """Standard input could not be read; fatal for the whole run."""


@dataclass(frozen=True)
class LineChange:
    """A single line touched by the trim, used for the visualization."""

    line_number: int
    kept: str
    removed: str
    dropped: bool = False


@dataclass(frozen=True)
class TrimResult:
    """Trimmed content plus the numbers reported in the summary."""

    content: str
    original_length: int
    trimmed_length: int
    lines_trimmed: int
    newlines_trimmed: int
    ends_with_newline: bool
    changed: bool
    changes: Tuple[LineChange, ...] = ()

    @property
    def bytes_saved(self) -> int:
        return self.original_length - self.trimmed_length


@dataclass(frozen=True)
class Target:
    """A file path, or standard input when ``path`` is None."""

    path: Optional[str] = None

    @property
    def is_stdin(self) -> bool:
        return self.path is None

    @property
    def label(self) -> str:
        return STDIN_LABEL if self.path is None else self.path


@dataclass(frozen=True)
class Config:
    files: Tuple[str, ...] = ()
    in_place: bool = False
    suppress_newline: bool = False
    suppress_summary: bool = False
    suppress_visual: bool = False


@dataclass(frozen=True)
class TargetOutcome:
    target: Target
    result: Optional[TrimResult] = None
    error: Optional[TrimError] = None
    written: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def split_lines(content: str) -> List[Tuple[str, str]]:
    """
    Split content into (body, terminator) pairs.

    Lines are separated by "\\n"; a body ending in "\\r" belongs to a CRLF
    line and keeps "\\r\\n" as its terminator. The final line has an empty
    terminator when the content does not end with a newline.
    """
    lines: List[Tuple[str, str]] = []
    pieces: List[str] = content.split("\n")
    last: int = len(pieces) - 1
    for index, piece in enumerate(pieces):
        if index == last:
            if piece:
                lines.append((piece, ""))
        elif piece.endswith("\r"):
            lines.append((piece[:-1], "\r\n"))
        else:
            lines.append((piece, "\n"))
    return lines


def trim_text(content: str, suppress_newline: bool = False) -> TrimResult:
    """Remove trailing whitespace from every line and collapse trailing blank lines."""
    lines: List[Tuple[str, str]] = split_lines(content)

    trimmed: List[Tuple[str, str]] = []
    last_kept: int = -1
    last_terminator: str = "\n"
    for index, (body, terminator) in enumerate(lines):
        stripped: str = body.rstrip(TRAILING_WHITESPACE)
        trimmed.append((stripped, terminator))
        if stripped:
            last_kept = index
        if terminator:
            last_terminator = terminator

    changes: List[LineChange] = []
    lines_trimmed: int = 0
    for index in range(last_kept + 1):
        body = lines[index][0]
        stripped = trimmed[index][0]
        if len(stripped) != len(body):
            lines_trimmed += 1
            changes.append(LineChange(index + 1, stripped, body[len(stripped) :]))
    for index in range(last_kept + 1, len(lines)):
        body, terminator = lines[index]
        changes.append(LineChange(index + 1, "", body + terminator, dropped=True))

    parts: List[str] = []
    for index in range(last_kept + 1):
        stripped, terminator = trimmed[index]
        parts.append(stripped)
        if index < last_kept:
            parts.append(terminator)
    if lines and not suppress_newline:
        # With only blank lines the result is a lone newline
        ending: str = trimmed[last_kept][1] if last_kept >= 0 else ""
        parts.append(ending or last_terminator)
    result: str = "".join(parts)

    return TrimResult(
        content=result,
        original_length=len(content.encode(ENCODING)),
        trimmed_length=len(result.encode(ENCODING)),
        lines_trimmed=lines_trimmed,
        newlines_trimmed=len(lines) - (last_kept + 1),
        ends_with_newline=result.endswith("\n"),
        changed=result != content,
        changes=tuple(changes),
    )


def _marker(length: int, color: bool) -> str:
    padding: str = "_" * length
    if color:
        # red background, white foreground
        return f"\x1b[41;37m{padding}\x1b[0m"
    return padding


def render_visual(label: str, result: TrimResult, color: bool = False) -> str:
    """Render the lines touched by the trim, marking what was cut."""
    if not result.changes:
        return ""
    rows: List[str] = [f"{'file':>6}|{label}"]
    for change in result.changes:
        marker: str = _marker(len(change.removed), color)
        rows.append(f"{change.line_number:>6}|{change.kept}{marker}")
    return "\n".join(rows) + "\n"


def render_summary(label: str, result: TrimResult) -> str:
    return (
        f"{label}\n"
        f"{result.lines_trimmed:>6} lines trimmed\n"
        f"{result.newlines_trimmed:>6} trailing `\\n` trimmed\n"
        f"{result.bytes_saved:>6} bytes saved overall\n"
    )


def render_totals(outcomes: Sequence[TargetOutcome]) -> str:
    changed: int = sum(1 for o in outcomes if o.result is not None and o.result.changed)
    errors: int = sum(1 for o in outcomes if not o.ok)
    unchanged: int = len(outcomes) - changed - errors
    saved: int = sum(o.result.bytes_saved for o in outcomes if o.result is not None)
    return (
        f"Trimmed: {changed}, Unchanged: {unchanged}, Errors: {errors}, "
        f"Bytes saved: {saved}\n"
    )


def resolve_targets(files: Sequence[str]) -> List[Target]:
    """Map command line paths to targets; "-" or no paths at all mean stdin."""
    if not files:
        return [Target()]
    return [Target() if name == "-" else Target(name) for name in files]


def is_binary(data: bytes) -> bool:
    """Check the first chunk of the data for NUL bytes or a known binary signature."""
    chunk: bytes = data[:8192]
    if b"\x00" in chunk:
        return True
    return chunk.startswith(BINARY_SIGNATURES)


def decode_content(data: bytes, label: str) -> str:
    if is_binary(data):
        raise InvalidEncodingError(label, "binary content")
    try:
        return data.decode(ENCODING)
    except UnicodeDecodeError as e:
        raise InvalidEncodingError(
            label, f"not valid {ENCODING} text ({e.reason} at byte {e.start})"
        ) from e


def read_target(path: str) -> str:
    """Read and decode the whole file under path."""
    try:
        with open(path, "rb") as f:
            data: bytes = f.read()
    except FileNotFoundError as e:
        raise TargetNotFoundError(path, "file not found") from e
    except PermissionError as e:
        raise TargetPermissionError(path, "permission denied") from e
    except OSError as e:
        raise TargetReadError(path, e.strerror or str(e)) from e
    return decode_content(data, path)


def read_stdin(stream: IO[str]) -> str:
    """Read standard input fully; any failure is fatal."""
    source = getattr(stream, "buffer", stream)
    try:
        data = source.read()
    except (OSError, ValueError) as e:
        raise StdinUnreadableError(STDIN_LABEL, str(e)) from e
    if isinstance(data, str):
        return data
    try:
        return decode_content(data, STDIN_LABEL)
    except InvalidEncodingError as e:
        raise StdinUnreadableError(STDIN_LABEL, e.reason) from e


@contextmanager
def _staged_file(path: str) -> Iterator[IO[bytes]]:
    """
    Yield a temporary file in the same directory as path.

    When the block finishes cleanly the staged file is synced and renamed over
    path. On every other exit path the staged file is removed and path is left
    untouched.
    """
    directory: str = os.path.dirname(path)
    staged = tempfile.NamedTemporaryFile(
        mode="wb",
        dir=directory,
        prefix=f".{os.path.basename(path)}.",
        suffix=".trim",
        delete=False,
    )
    try:
        with staged:
            shutil.copymode(path, staged.name)
            yield staged
            staged.flush()
            os.fsync(staged.fileno())
        os.replace(staged.name, path)
    finally:
        if os.path.exists(staged.name):
            try:
                os.remove(staged.name)
            except OSError as e:
                with log_lock:
                    logger.warning(
                        "Could not remove temporary file %s: %s", staged.name, str(e)
                    )


def atomic_write(path: str, content: str) -> None:
    """Replace the content of path so that it is either fully old or fully new."""
    # Write through symlinks rather than replacing the link itself
    real_path: str = os.path.realpath(path)
    try:
        with _staged_file(real_path) as staged:
            staged.write(content.encode(ENCODING))
    except OSError as e:
        raise WriteFailureError(path, e.strerror or str(e)) from e


def trim_target(
    target: Target, config: Config, stdin_text: Optional[str] = None
) -> TargetOutcome:
    """Read, trim and (in in-place mode) rewrite a single target."""
    try:
        content: str = (
            (stdin_text or "") if target.is_stdin else read_target(target.label)
        )
        result: TrimResult = trim_text(content, config.suppress_newline)

        written: bool = False
        if config.in_place and not target.is_stdin:
            if result.changed:
                atomic_write(target.label, result.content)
                written = True
                with log_lock:
                    logger.debug("Updated file: %s", target.label)
            else:
                with log_lock:
                    logger.debug("No changes needed for file: %s", target.label)
        return TargetOutcome(target, result=result, written=written)
    except TrimError as e:
        return TargetOutcome(target, error=e)


def trim_targets(
    targets: Sequence[Target],
    config: Config,
    stdin_text: Optional[str] = None,
    progress_file: Optional[IO[str]] = None,
    max_workers: Optional[int] = None,
) -> List[TargetOutcome]:
    """
    Trim every target and return the outcomes in target order.

    In in-place mode the file targets are trimmed in parallel. Standard input
    is consumed by the first "-"; any later "-" reads as empty.
    """
    texts: List[Optional[str]] = []
    remaining: Optional[str] = stdin_text
    for target in targets:
        if target.is_stdin:
            texts.append(remaining or "")
            remaining = ""
        else:
            texts.append(None)

    outcomes: List[Optional[TargetOutcome]] = [None] * len(targets)
    parallel: List[int] = [
        index
        for index, target in enumerate(targets)
        if config.in_place and not target.is_stdin
    ]

    if parallel:
        if max_workers is None:
            cpu_count: Optional[int] = os.cpu_count()
            max_workers = min((cpu_count or 2) * 2, 32, len(parallel))
        else:
            max_workers = max(1, min(max_workers, 32, len(parallel)))

        with log_lock:
            logger.debug(
                "Using %d worker threads for trimming %d files",
                max_workers,
                len(parallel),
            )

        with tqdm(
            total=len(parallel),
            desc="Trimming files",
            unit="file",
            file=progress_file,
            disable=True if config.suppress_summary or len(parallel) < 2 else None,
        ) as pbar:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers
            ) as executor:
                future_to_index = {
                    executor.submit(trim_target, targets[index], config): index
                    for index in parallel
                }
                for future in concurrent.futures.as_completed(future_to_index):
                    index = future_to_index[future]
                    try:
                        outcomes[index] = future.result()
                    except Exception as e:  # pylint: disable=broad-exception-caught
                        outcomes[index] = TargetOutcome(
                            targets[index],
                            error=TrimError(
                                targets[index].label, f"unexpected error: {e}"
                            ),
                        )
                    finally:
                        pbar.update(1)

    for index, target in enumerate(targets):
        if outcomes[index] is None:
            outcomes[index] = trim_target(target, config, texts[index])

    return [outcome for outcome in outcomes if outcome is not None]


def write_output(stream: IO[str], content: str) -> None:
    """Write content to a text stream, bypassing newline translation where possible."""
    buffer = getattr(stream, "buffer", None)
    if buffer is None:
        stream.write(content)
        stream.flush()
        return
    stream.flush()
    buffer.write(content.encode(ENCODING))
    buffer.flush()


def _supports_color(stream: IO[str]) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def run(config: Config, stdin: IO[str], stdout: IO[str], stderr: IO[str]) -> int:
    """Trim every target named by config; return the process exit status."""
    targets: List[Target] = resolve_targets(config.files)

    stdin_text: Optional[str] = None
    if any(target.is_stdin for target in targets):
        if config.in_place:
            logger.warning(
                "In-place mode does not apply to %s; writing to stdout instead",
                STDIN_LABEL,
            )
        try:
            stdin_text = read_stdin(stdin)
        except StdinUnreadableError as e:
            logger.error("Cannot read standard input: %s", e.reason)
            return 1

    outcomes: List[TargetOutcome] = trim_targets(
        targets, config, stdin_text, progress_file=stderr
    )

    color: bool = _supports_color(stderr)
    error_count: int = 0
    for outcome in outcomes:
        if outcome.error is not None:
            error_count += 1
            logger.error("%s", outcome.error)
            continue

        result = outcome.result
        if outcome.target.is_stdin or not config.in_place:
            write_output(stdout, result.content)
        if not config.suppress_visual:
            stderr.write(render_visual(outcome.target.label, result, color))
        if not config.suppress_summary:
            stderr.write(render_summary(outcome.target.label, result))

    if not config.suppress_summary and len(outcomes) > 1:
        stderr.write(render_totals(outcomes))
    stderr.flush()

    if error_count > 0:
        logger.warning("Encountered errors while trimming %d targets", error_count)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trim",
        description="Trim trailing whitespace from each line and collapse "
        "trailing blank lines into a single newline",
    )
    parser.add_argument(
        "files",
        nargs="*",
        metavar="FILE",
        help="files to trim; if '-' is given or no files are provided, "
        "stdin will be used",
    )
    parser.add_argument(
        "-i",
        "--in-place",
        action="store_true",
        help="trim the files in-place, overwriting their content atomically",
    )
    parser.add_argument(
        "-N",
        "--supress-newline",
        "--suppress-newline",
        dest="suppress_newline",
        action="store_true",
        help="suppress the trailing newline after the last line",
    )
    parser.add_argument(
        "-S",
        "--supress-summary",
        "--suppress-summary",
        dest="suppress_summary",
        action="store_true",
        help="suppress the summary",
    )
    parser.add_argument(
        "-V",
        "--supress-visual",
        "--suppress-visual",
        dest="suppress_visual",
        action="store_true",
        help="suppress the visualization of the trim",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"trim v{__version__}",
        help="Show program version and exit",
    )
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> Config:
    args = build_parser().parse_args(argv)
    return Config(
        files=tuple(args.files),
        in_place=args.in_place,
        suppress_newline=args.suppress_newline,
        suppress_summary=args.suppress_summary,
        suppress_visual=args.suppress_visual,
    )


def setup_logging(level: int = logging.WARNING) -> None:
    """Send log records to stderr; stdout carries trimmed content only."""
    logging.basicConfig(
        level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler()]
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    config: Config = parse_args(argv)
    setup_logging()
    try:
        return run(config, sys.stdin, sys.stdout, sys.stderr)
    except KeyboardInterrupt:
        logger.warning("Operation cancelled by user.")
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.isEnabledFor(logging.DEBUG):
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
