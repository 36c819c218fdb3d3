"""Name-based ignore rules for notifications and tree copies."""

from pathlib import Path
from typing import List, Optional

from folder_sync.config_loader import Config


class IgnoreRules:
    """Decides which files and directories are never synchronized."""

    def __init__(
        self,
        ignore_extensions: Optional[List[str]] = None,
        ignore_filenames_prefix: Optional[List[str]] = None,
        ignore_filenames_exact: Optional[List[str]] = None,
        ignore_directories: Optional[List[str]] = None,
    ):
        """Initialize ignore rules.

        Args:
            ignore_extensions: Extensions to ignore (e.g., ['.tmp', '.bak'])
            ignore_filenames_prefix: Filename prefixes to ignore (e.g., ['~$'])
            ignore_filenames_exact: Exact filenames to ignore
            ignore_directories: Directory names to ignore (e.g., ['.git'])
        """
        self.ignore_extensions = set(f for f in (ignore_extensions or []) if f)
        self.ignore_filenames_prefix = set(f for f in (ignore_filenames_prefix or []) if f)
        self.ignore_filenames_exact = set(f for f in (ignore_filenames_exact or []) if f)
        # Directory names compare case-insensitively (Windows volumes)
        self.ignore_directories = set(d.lower() for d in (ignore_directories or []) if d)

    @classmethod
    def from_config(cls, config: Config) -> "IgnoreRules":
        return cls(
            ignore_extensions=config.ignore_extensions,
            ignore_filenames_prefix=config.ignore_filenames_prefix,
            ignore_filenames_exact=config.ignore_filenames_exact,
            ignore_directories=config.ignore_directories,
        )

    def __bool__(self) -> bool:
        return bool(
            self.ignore_extensions
            or self.ignore_filenames_prefix
            or self.ignore_filenames_exact
            or self.ignore_directories
        )

    def should_ignore_name(self, filename: str) -> bool:
        """Check if a file name matches an exact, prefix or extension rule."""
        if filename in self.ignore_filenames_exact:
            return True

        for prefix in self.ignore_filenames_prefix:
            if filename.startswith(prefix):
                return True

        for ext in self.ignore_extensions:
            if filename.endswith(ext):
                return True

        return False

    def should_ignore_directory(self, dir_name: str) -> bool:
        """Check if a directory name is ignored."""
        return dir_name.lower() in self.ignore_directories

    def should_ignore(self, relative_path: str) -> bool:
        """Check a path relative to a root.

        A path is ignored when its own name matches a file rule or when any
        of its components is an ignored directory.
        """
        parts = Path(relative_path).parts
        if not parts:
            return False

        for part in parts:
            if self.should_ignore_directory(part):
                return True

        return self.should_ignore_name(parts[-1])
