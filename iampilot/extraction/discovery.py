# iampilot: least-privilege IAM policy generation
# Copyright (C) 2026 iampilot contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Source discovery: expands files and directories into the files to extract from.

Directories are walked recursively, honoring default ignore patterns plus a
``.iampilotignore`` file at the directory root.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS = {
    "__pycache__",
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "vendor",
    ".venv",
    "venv",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
    ".terraform",
    "cdk.out",
    "dist",
    "build",
    "*.egg-info",
    "*.d.ts",
    "*.min.js",
}


def _load_ignore_file(target_dir: Path) -> set[str]:
    ignore_file = target_dir / ".iampilotignore"
    patterns = set(DEFAULT_IGNORE_PATTERNS)
    if ignore_file.exists():
        for line in ignore_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                patterns.add(line)
    return patterns


def _should_ignore(path: Path, ignore_patterns: set[str]) -> bool:
    for pattern in ignore_patterns:
        if pattern.startswith("*"):
            suffix = pattern.lstrip("*")
            if path.name.endswith(suffix):
                return True
        elif path.name == pattern or pattern in path.parts:
            return True
    return False


def get_files_directory(target_dir: Path, extensions: set[str]) -> list[Path]:
    ignore_patterns = _load_ignore_file(target_dir)
    files = []
    for item in sorted(target_dir.rglob("*")):
        if item.is_file() and item.suffix in extensions:
            if not _should_ignore(item.relative_to(target_dir), ignore_patterns):
                files.append(item)
    return files


def expand_source_paths(paths: list[Path], extensions: set[str]) -> list[Path]:
    """Expand directories; explicit files are kept as given, in order, without duplicates."""
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            found = get_files_directory(path, extensions)
            logger.info("Discovered %d source files under %s", len(found), path)
            files.extend(found)
        else:
            files.append(path)
    return list(dict.fromkeys(files))
