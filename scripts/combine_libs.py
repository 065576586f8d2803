#!/usr/bin/env python3
"""Combine several static archives into a single .a file.

Each input archive is extracted into its own subdirectory of a scratch
directory, so members with the same name in different inputs don't overwrite
each other on disk. Everything extracted is then archived again into one new
library, its symbol index is regenerated, and the result is renamed over the
target. The target is never written until the new archive is complete.

The archiver is taken from the environment, like make does:
  AR       archiver command (default: ar)
  ARFLAGS  flags for the create step (default: cr)
  RANLIB   index regeneration command (default: ranlib)

Usage: combine_libs.py [-v|--verbose] [--] OUTPUT INPUT [INPUT ...]
"""

import os
import shlex
import signal
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

DEFAULT_AR = "ar"
DEFAULT_ARFLAGS = "cr"
DEFAULT_RANLIB = "ranlib"

ARCHIVE_SUFFIXES = (".a", ".lib")

# Name of the archive built inside the scratch directory before the rename
TMP_ARCHIVE = "library.tmp.a"

# Symbol tables some archivers (BSD/macOS ar) hand back as ordinary members on
# extraction. ranlib rebuilds the index, so they must not be archived again.
SYMDEF_MEMBERS = {"__.SYMDEF", "__.SYMDEF SORTED", "__.SYMDEF_64", "__.SYMDEF_64 SORTED"}

# Colors for output
COLOR_GREEN = "\033[92m"
COLOR_YELLOW = "\033[93m"
COLOR_BLUE = "\033[94m"
COLOR_RESET = "\033[0m"


def print_status(message, color=COLOR_BLUE):
    """Print colored status message."""
    if sys.stdout.isatty():
        message = f"{color}{message}{COLOR_RESET}"
    print(message, flush=True)


class CombineError(Exception):
    """Base class for failures that abort a combine."""

    exit_code = 1


class UsageError(CombineError):
    """Missing target or no input archives."""


class InputError(CombineError):
    """An input archive or the target directory is not usable."""


class ToolError(CombineError):
    """An archiver command failed or could not be run."""

    def __init__(self, command: list[str], returncode: int, reason: str = ""):
        self.command = command
        self.returncode = returncode
        detail = reason or f"exit status {returncode}"
        super().__init__(f"{shlex.join(command)} failed ({detail})")

    @property
    def exit_code(self) -> int:
        if self.returncode < 0:
            # killed by a signal, report it the way a shell would
            return 128 - self.returncode
        return self.returncode or 1


@dataclass(frozen=True)
class ArchiverConfig:
    """Commands used to extract, create and index archives.

    Each field is a command line split with shell quoting rules, so
    ``AR="ccache ar"`` or ``ARFLAGS="-c -r"`` work as they would in a Makefile.
    """

    archiver_path: str = DEFAULT_AR
    archiver_create_flags: str = DEFAULT_ARFLAGS
    index_tool_path: str = DEFAULT_RANLIB

    @classmethod
    def from_environ(cls, environ=None) -> "ArchiverConfig":
        """Read AR, ARFLAGS and RANLIB, treating unset or empty as default."""
        if environ is None:
            environ = os.environ
        return cls(
            archiver_path=environ.get("AR") or DEFAULT_AR,
            archiver_create_flags=environ.get("ARFLAGS") or DEFAULT_ARFLAGS,
            index_tool_path=environ.get("RANLIB") or DEFAULT_RANLIB,
        )

    def archiver_command(self) -> list[str]:
        return shlex.split(self.archiver_path)

    def create_flags(self) -> list[str]:
        return shlex.split(self.archiver_create_flags)

    def index_command(self) -> list[str]:
        return shlex.split(self.index_tool_path)


def run_tool(cmd: list[str], cwd: Path) -> None:
    """Run an archiver command, leaving its output on the terminal."""
    try:
        result = subprocess.run(cmd, cwd=cwd)
    except OSError as e:
        # not found / not executable: 127 is what a shell reports
        raise ToolError(cmd, 127, e.strerror or str(e)) from e
    if result.returncode != 0:
        raise ToolError(cmd, result.returncode)


def archive_dir_name(path: Path, taken: set[str]) -> str:
    """Pick the extraction subdirectory name for one input archive.

    libfoo.a gives "libfoo"; a second libfoo.a (from another directory)
    gives "libfoo-1", and so on. The chosen name is added to ``taken``.
    """
    name = path.name
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    if not name or name in (".", ".."):
        name = "archive"

    candidate = name
    n = 1
    while candidate in taken:
        candidate = f"{name}-{n}"
        n += 1
    taken.add(candidate)
    return candidate


def _check_inputs(target: Path, inputs: list[Path]) -> None:
    if not target.parent.is_dir():
        raise InputError(f"target directory does not exist: {target.parent}")
    if target.is_dir():
        raise InputError(f"target is a directory: {target}")

    for lib in inputs:
        if not lib.exists():
            raise InputError(f"input archive not found: {lib}")
        if not lib.is_file():
            raise InputError(f"input archive is not a regular file: {lib}")
        if not os.access(lib, os.R_OK):
            raise InputError(f"input archive is not readable: {lib}")


def _collect_members(workdir: Path, subdirs: list[str]) -> list[str]:
    """List extracted members relative to workdir, in input order."""
    members = []
    for subdir in subdirs:
        for f in sorted((workdir / subdir).iterdir()):
            if f.name in SYMDEF_MEMBERS:
                f.unlink()
                continue
            if f.is_file():
                # leading "./" keeps a member path starting with "-" from
                # being read as an option
                members.append(f"./{subdir}/{f.name}")
    return members


def combine(target_path, inputs, config=None, *, work_root=None, verbose=False) -> None:
    """Merge the members of every archive in ``inputs`` into ``target_path``.

    Members are not de-duplicated. ``target_path`` is only touched by the
    final rename, so on any failure it is left exactly as it was. The scratch
    directory is created under ``work_root`` (default: the target's own
    directory, so the final rename stays on one filesystem) and is always
    removed before returning or raising.
    """
    if config is None:
        config = ArchiverConfig()
    if target_path is None or str(target_path) == "":
        raise UsageError("no target archive given")
    if not inputs:
        raise UsageError("no input archives given")

    # Resolve everything up front; tools run with other working directories.
    target_path = Path(target_path)
    target = target_path.parent.resolve() / target_path.name
    libs = [Path(p).resolve() for p in inputs]
    _check_inputs(target, libs)

    ar = config.archiver_command()
    ranlib = config.index_command()
    if work_root is None:
        work_root = target.parent

    with tempfile.TemporaryDirectory(prefix=".combine_libs.", dir=work_root) as tmpdir:
        workdir = Path(tmpdir)
        # the new archive is built next to the extraction dirs
        taken = {TMP_ARCHIVE}
        subdirs = []

        for lib in libs:
            subdir = archive_dir_name(lib, taken)
            extract_dir = workdir / subdir
            extract_dir.mkdir()
            if verbose:
                print_status(f"Extracting {lib} into {subdir}/", COLOR_YELLOW)
            run_tool(ar + ["x", str(lib)], cwd=extract_dir)
            subdirs.append(subdir)

        members = _collect_members(workdir, subdirs)
        if verbose:
            print_status(f"Archiving {len(members)} members...", COLOR_YELLOW)
        run_tool(ar + config.create_flags() + [TMP_ARCHIVE] + members, cwd=workdir)
        run_tool(ranlib + [TMP_ARCHIVE], cwd=workdir)

        os.replace(workdir / TMP_ARCHIVE, target)

    if verbose:
        print_status(f"Combined {len(libs)} archives into {target}", COLOR_GREEN)


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)

    # Options only before the first positional, so an input named "-h" is a file
    verbose = False
    while args and args[0].startswith("-"):
        arg = args.pop(0)
        if arg == "--":
            break
        if arg in ("-h", "--help"):
            print(__doc__.strip())
            return 0
        if arg in ("-v", "--verbose"):
            verbose = True
        else:
            print(f"error: unknown option: {arg}", file=sys.stderr)
            return 1

    if len(args) < 2:
        print(f"usage: {Path(sys.argv[0]).name} [-v] [--] OUTPUT INPUT [INPUT ...]", file=sys.stderr)
        return 1

    output = Path(args[0])
    inputs = [Path(a) for a in args[1:]]
    config = ArchiverConfig.from_environ()

    interrupted_by = signal.SIGINT

    def on_sigterm(signum, frame):
        nonlocal interrupted_by
        interrupted_by = signal.SIGTERM
        # unwinds through combine() so the scratch directory is removed
        raise KeyboardInterrupt

    previous = signal.signal(signal.SIGTERM, on_sigterm)
    try:
        combine(output, inputs, config, verbose=verbose)
    except CombineError as e:
        print(f"error: {e}", file=sys.stderr)
        return e.exit_code
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("error: interrupted", file=sys.stderr)
        return 128 + interrupted_by
    finally:
        signal.signal(signal.SIGTERM, previous)
    return 0


if __name__ == "__main__":
    sys.exit(main())
