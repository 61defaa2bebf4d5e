"""Path exclusion rules shared by backup and purge."""
import os
from pathlib import Path
from typing import Iterable, NamedTuple, Tuple, Union


PathLike = Union[str, Path]


def _normalize(path: PathLike) -> str:
    return os.path.normcase(os.path.abspath(os.fspath(path))).casefold()


def resolve_prefixes(root: Path, prefixes: Iterable[str]) -> Tuple[str, ...]:
    """Resolve exclusion entries relative to root into normalized absolute prefixes."""
    return tuple(
        _normalize(os.path.join(os.fspath(root), entry))
        for entry in prefixes
        if entry and entry.strip()
    )


def is_excluded(path: PathLike, prefixes: Iterable[str]) -> bool:
    """Check whether a path equals or lies inside one of the prefixes.

    Prefixes must already be normalized (see resolve_prefixes). Matching is
    case-insensitive and separator-bounded: a "Logs" prefix protects
    "Logs/app.log" but not "LogsArchive/app.log".
    """
    candidate = _normalize(path)
    for prefix in prefixes:
        if candidate == prefix:
            return True
        boundary = prefix if prefix.endswith(os.sep) else prefix + os.sep
        if candidate.startswith(boundary):
            return True
    return False


def contains_excluded(directory: PathLike, prefixes: Iterable[str]) -> bool:
    """Check whether any prefix lies strictly inside a directory."""
    base = _normalize(directory).rstrip(os.sep) + os.sep
    return any(prefix.startswith(base) for prefix in prefixes)


class ExclusionSet(NamedTuple):
    """Independent exclusion lists for backup and for delete."""
    backup: Tuple[str, ...] = ()
    delete: Tuple[str, ...] = ()
