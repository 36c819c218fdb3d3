"""Path helpers for translating between the two synchronized roots."""

import os
from pathlib import Path
from typing import Tuple, Union

from folder_sync.config_loader import ConfigError

PathLike = Union[str, os.PathLike]


def resolve_root(path: PathLike) -> Path:
    """Return an absolute, normalized root path.

    The root does not need to exist yet.
    """
    return Path(os.path.abspath(os.path.expanduser(os.fspath(path))))


def is_within(path: PathLike, folder: PathLike) -> bool:
    """Check if path is folder itself or lies somewhere below it.

    Compares whole path components, so "/data/out" is not within "/data/o".
    """
    try:
        Path(path).relative_to(folder)
    except ValueError:
        return False
    return True


def mirror_path(path: PathLike, from_root: PathLike, to_root: PathLike) -> str:
    """Translate a path under from_root to the same location under to_root.

    Args:
        path: Absolute path inside from_root
        from_root: Root the path currently belongs to
        to_root: Root to translate into

    Returns:
        The translated absolute path

    Raises:
        ValueError: If path is not inside from_root
    """
    relative = Path(path).relative_to(from_root)
    return str(Path(to_root) / relative)


def validate_roots(folder1: PathLike, folder2: PathLike) -> Tuple[Path, Path]:
    """Resolve both roots and make sure they can be synchronized.

    Raises:
        ConfigError: If a root is blank, both roots are the same, or one
            root is nested inside the other
    """
    for name, value in (("folder1", folder1), ("folder2", folder2)):
        if value is None or not str(os.fspath(value)).strip():
            raise ConfigError(f"{name} must not be blank")

    root1 = resolve_root(folder1)
    root2 = resolve_root(folder2)

    if root1 == root2:
        raise ConfigError(f"Both folders point to the same directory: {root1}")
    if is_within(root1, root2) or is_within(root2, root1):
        raise ConfigError(f"Folders must not be nested: {root1} / {root2}")

    return root1, root2
