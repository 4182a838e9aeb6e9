"""Convert a directory tree of robots.txt files into policy files."""

from __future__ import annotations

import contextlib
import io
import os
import sys
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from anubis import robots2policy

PathLike = Union[str, "os.PathLike[str]"]


def policy_name_for(root: PathLike, path: PathLike) -> str:
    """Derive a policy name from a file's path relative to ``root``."""
    rel = Path(os.path.relpath(path, root)).as_posix()
    name = rel.replace("/", "-")
    if name.endswith("-robots.txt"):
        name = name[: -len("-robots.txt")]
    return name.replace(".", "-")


def _walk_files(root: Path) -> Iterator[Path]:
    """Yield files under ``root`` in lexical order, depth first."""
    with os.scandir(root) as entries:
        ordered = sorted(entries, key=lambda e: e.name)
    for entry in ordered:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_files(Path(entry.path))
        else:
            yield Path(entry.path)


def _convert(path: Path, output_file: Path, policy_name: str) -> None:
    args = ["-input", str(path), "-output", str(output_file), "-name", policy_name, "-format", "yaml"]
    with contextlib.redirect_stdout(io.StringIO()), contextlib.redirect_stderr(io.StringIO()):
        try:
            robots2policy.main(args)
        except SystemExit as exc:
            if exc.code not in (None, 0):
                raise RuntimeError(f"exit status: {exc.code}") from None


def process_directory(cleaned_dir: PathLike, output_dir: PathLike = "generated_policies") -> int:
    """Convert every file under ``cleaned_dir``; returns how many succeeded."""
    root = Path(cleaned_dir)
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    count = 0
    for path in _walk_files(root):
        name = policy_name_for(root, path)
        try:
            _convert(path, out / f"{name}.yaml", name)
        except RuntimeError as err:
            print(f"Warning: Failed to process {path}: {err}")
            continue
        count += 1
        if count % 100 == 0:
            print(f"Processed {count} files...")
        elif count % 10 == 0:
            print(".", end="", flush=True)
    return count


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: robots_batch <cleaned_directory>")
        print("Example: robots_batch ./cleaned")
        sys.exit(1)

    output_dir = "generated_policies"
    try:
        count = process_directory(args[0], output_dir)
    except OSError as err:
        sys.exit(f"Error walking directory: {err}")

    print(f"Successfully processed {count} robots.txt files")
    print(f"Generated policies saved to: {output_dir}/")


if __name__ == "__main__":
    main()