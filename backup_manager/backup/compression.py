"""
Archive creation for backups.

Archives are zip files. Each source is stored under its own basename so that
archives of multi-directory services unpack side by side. Sources sharing a
basename get a numeric suffix ("data", "data_2", ...).
"""

import os
import zipfile
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def should_exclude(path: Path, arcname: str, exclude_patterns: List[str]) -> bool:
    """
    Check if a path should be excluded based on exclude patterns.

    Patterns are shell globs matched against the archive path, the absolute
    path and the bare file name.

    Args:
        path: Path on disk
        arcname: Path inside the archive
        exclude_patterns: Glob patterns (e.g., *.log, */cache/*, node_modules)

    Returns:
        True if path matches any exclude pattern, False otherwise
    """
    if not exclude_patterns:
        return False

    path_str = str(path)
    path_name = path.name

    for pattern in exclude_patterns:
        if fnmatch(arcname, pattern) or fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
            return True
        # Also match against relative path patterns
        if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
            return True

    return False


def create_archive(
    source_paths: List[str],
    output_path: str,
    exclude_patterns: Optional[List[str]] = None
) -> str:
    """
    Create a zip archive from source paths.

    Args:
        source_paths: List of file/directory paths to include in archive
        output_path: Full path of the archive file to create
        exclude_patterns: Glob patterns of entries to leave out

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
    """
    if not source_paths:
        raise CompressionError("No source paths provided")

    patterns = [p for p in (exclude_patterns or []) if p]

    try:
        with zipfile.ZipFile(output_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
            used_names = set()
            for source_path in source_paths:
                source = Path(source_path)

                if source.is_file():
                    top = _unique_name(source.name, used_names)
                    if not should_exclude(source, top, patterns):
                        zipf.write(source, top)
                elif source.is_dir():
                    _add_directory_to_zip(zipf, source, _unique_name(source.name, used_names), patterns)
                else:
                    raise CompressionError(f"Path does not exist: {source_path}")
        return output_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(output_path):
            try:
                os.remove(output_path)
            except OSError:
                pass
        if isinstance(e, CompressionError):
            raise
        raise CompressionError(f"Failed to create archive: {e}")


def _unique_name(name: str, used_names: set) -> str:
    """Top-level archive name for a source, suffixed when the basename is taken."""
    candidate = name
    counter = 2
    while candidate in used_names:
        candidate = f"{name}_{counter}"
        counter += 1
    used_names.add(candidate)
    return candidate


def _add_directory_to_zip(zipf: zipfile.ZipFile, directory: Path, top: str, exclude_patterns: List[str]):
    """
    Recursively add directory to zip archive, pruning excluded subtrees.

    Args:
        zipf: ZipFile object
        directory: Directory to add
        top: Name the directory is stored under
        exclude_patterns: Glob patterns of entries to leave out
    """
    for root, dirs, files in os.walk(directory):
        root_path = Path(root)

        kept_dirs = []
        for name in sorted(dirs):
            dir_path = root_path / name
            arcname = f"{top}/{dir_path.relative_to(directory).as_posix()}"
            if not should_exclude(dir_path, arcname, exclude_patterns):
                kept_dirs.append(name)
        dirs[:] = kept_dirs

        for name in sorted(files):
            file_path = root_path / name
            arcname = f"{top}/{file_path.relative_to(directory).as_posix()}"
            if should_exclude(file_path, arcname, exclude_patterns):
                continue
            zipf.write(file_path, arcname)


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")
