#
# Copyright (c) 2019 Matthias Tafelmeier.
#
# This file is part of sysctl-tuning
#
# sysctl-tuning is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# sysctl-tuning is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with sysctl-tuning. If not, see <http://www.gnu.org/licenses/>.
#

"""
Configuration Conflict Resolver.

Clears active assignments of tracked keys out of the sysctl configuration
tree before the canonical artifact is installed, so that nothing shadows it
once the kernel loader merges the tree:

- the monolithic file (/etc/sysctl.conf) is backed up, then rewritten with
  each matching line commented out
- drop-in files in the primary directory (/etc/sysctl.d) are renamed to a
  backup name the loader ignores
- vendor directories are only reported, they are outside our write authority

Backups are timestamped and never overwritten. The canonical artifact itself
is never touched, whatever path it is reached through.
"""

import logging
import os
import shutil
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from sysctl_tuning.errors import ConflictResolutionError, HostEnvironmentError, InstallerError
from sysctl_tuning.installer import atomic_write
from sysctl_tuning.key_registry import normalize_key
from sysctl_tuning.models import KeyMatch, ManagedFile, ResolutionReport

logger = logging.getLogger(__name__)

COMMENT_PREFIXES = ('#', ';')
DROPIN_SUFFIX = '.conf'
BACKUP_TIMESTAMP_FORMAT = '%Y%m%d-%H%M%S'


def parse_assignment_key(line: str) -> Optional[str]:
    """
    Return the normalized key assigned by an active sysctl line, else None.

    Blank lines, '#'/';' comments and lines without '=' assign nothing. A
    leading '-' (ignore-failure marker) is accepted.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith(COMMENT_PREFIXES):
        return None
    if stripped.startswith('-'):
        stripped = stripped[1:].lstrip()

    key, separator, _ = stripped.partition('=')
    if not separator:
        return None
    key = normalize_key(key)
    return key or None


def scan_text(path: str, text: str, tracked_keys: Iterable[str]) -> List[KeyMatch]:
    tracked = set(tracked_keys)
    matches = []
    # The loader splits on '\n' only, a form feed does not end a line
    for line_number, line in enumerate(text.split('\n'), start=1):
        key = parse_assignment_key(line)
        if key is not None and key in tracked:
            matches.append(KeyMatch(path=path, line_number=line_number, key=key, line=line.rstrip('\r\n')))
    return matches


def comment_out(text: str, matches: List[KeyMatch]) -> str:
    """Prefix matched lines with '# ', keeping every other byte as it was"""
    matched_lines = {match.line_number for match in matches}
    lines = text.split('\n')
    return '\n'.join(f"# {line}" if index in matched_lines else line
                     for index, line in enumerate(lines, start=1))


def read_text(path: str) -> str:
    with open(path, 'r', encoding='utf-8', errors='surrogateescape', newline='') as f:
        return f.read()


class ConflictResolver:

    def __init__(self,
                 tracked_keys: Iterable[str],
                 target_path: str,
                 dry_run: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            tracked_keys: Keys the canonical artifact assigns
            target_path: The canonical artifact, always skipped
            dry_run: Report what would change without touching any file
            clock: Source of the backup timestamp, datetime.now by default
        """
        self.tracked_keys = frozenset(tracked_keys)
        self.target_path = target_path
        self.dry_run = dry_run
        self._clock = clock or datetime.now

    def is_target(self, path: str) -> bool:
        return os.path.realpath(path) == os.path.realpath(self.target_path)

    def backup_path_for(self, path: str) -> str:
        """Timestamped backup name next to ``path``; a counter is appended on collision"""
        base = f"{path}.bak.{self._clock().strftime(BACKUP_TIMESTAMP_FORMAT)}"
        candidate = base
        counter = 1
        while os.path.lexists(candidate):
            candidate = f"{base}.{counter}"
            counter += 1
        return candidate

    def scan_file(self, path: str) -> Tuple[str, List[KeyMatch]]:
        try:
            text = read_text(path)
        except OSError as e:
            raise HostEnvironmentError(f"Cannot read {path}: {e}") from e
        return text, scan_text(path, text, self.tracked_keys)

    def scan_and_neutralize(self, path: str) -> Optional[ManagedFile]:
        """
        Comment out tracked keys in the monolithic configuration file.

        Returns:
            ManagedFile describing the change, or None when the file is
            missing, is the canonical artifact, or has no active tracked keys
        """
        if not os.path.exists(path):
            logger.info(f"{path} does not exist")
            return None
        if self.is_target(path):
            logger.debug(f"Skipping canonical artifact {path}")
            return None

        text, matches = self.scan_file(path)
        if not matches:
            logger.info(f"{path} has no conflicts")
            return None

        for match in matches:
            logger.info(f"Conflict in {path}:{match.line_number}: {match.line.strip()}")

        if self.dry_run:
            logger.info(f"Would back up {path} and comment out {len(matches)} line(s)")
            return ManagedFile(path=path, original_content=text, action='would-comment', matches=matches)

        backup_path = self.backup_path_for(path)
        try:
            shutil.copy2(path, backup_path)
        except OSError as e:
            raise ConflictResolutionError(f"Failed to back up {path} to {backup_path}: {e}") from e
        logger.info(f"Found conflicts, backed up {path} to {backup_path}")

        # Rewrite the file a symlink points at, not the link itself
        real_path = os.path.realpath(path)
        try:
            atomic_write(real_path, comment_out(text, matches),
                         mode=os.stat(real_path).st_mode & 0o7777, errors='surrogateescape')
        except (InstallerError, OSError) as e:
            raise ConflictResolutionError(f"Failed to comment out conflicts in {path}: {e}") from e

        logger.info(f"Commented out {len(matches)} conflicting line(s) in {path}")
        return ManagedFile(path=path, original_content=text, action='commented',
                           backup_path=backup_path, matches=matches)

    def scan_and_relocate_dir(self, directory: str) -> List[ManagedFile]:
        """
        Rename drop-in files holding tracked keys out of the loader's view.

        Only ``*.conf`` entries are considered, as only those are loaded.
        The backup keeps the file in the same directory under
        ``<name>.conf.bak.<timestamp>``.
        """
        if not os.path.isdir(directory):
            logger.info(f"{directory} does not exist")
            return []

        try:
            names = sorted(os.listdir(directory))
        except OSError as e:
            raise HostEnvironmentError(f"Cannot list {directory}: {e}") from e

        managed = []
        for name in names:
            if not name.endswith(DROPIN_SUFFIX):
                continue
            path = os.path.join(directory, name)
            if self.is_target(path):
                continue
            if os.path.islink(path) and not os.path.exists(path):
                logger.debug(f"Skipping dangling symlink {path}")
                continue
            if not os.path.isfile(path):
                continue

            text, matches = self.scan_file(path)
            if not matches:
                continue

            if self.dry_run:
                logger.info(f"Would back up and remove {path} ({len(matches)} conflicting line(s))")
                managed.append(ManagedFile(path=path, original_content=text, action='would-relocate', matches=matches))
                continue

            backup_path = self.backup_path_for(path)
            try:
                os.rename(path, backup_path)
            except OSError as e:
                raise ConflictResolutionError(f"Failed to move {path} to {backup_path}: {e}") from e

            logger.info(f"Backed up and removed: {path} -> {backup_path}")
            managed.append(ManagedFile(path=path, original_content=text, action='relocated',
                                       backup_path=backup_path, matches=matches))

        if managed:
            logger.info(f"{directory} conflicts handled")
        else:
            logger.info(f"{directory} no conflicts")
        return managed

    def scan_read_only(self, directory: str) -> List[KeyMatch]:
        """Report tracked keys under a directory we may not modify"""
        if not os.path.isdir(directory):
            logger.info(f"{directory} does not exist")
            return []

        found = []
        unreadable = []

        def on_walk_error(error: OSError):
            logger.warning(f"Cannot list {error.filename}: {error}")
            unreadable.append(error)

        for root, dirs, files in os.walk(directory, onerror=on_walk_error):
            dirs.sort()
            for name in sorted(files):
                path = os.path.join(root, name)
                if self.is_target(path):
                    continue
                try:
                    text = read_text(path)
                except OSError as e:
                    logger.warning(f"Cannot read {path}: {e}")
                    unreadable.append(e)
                    continue
                found.extend(scan_text(path, text, self.tracked_keys))

        if found:
            logger.warning(f"Found potential conflicts (read-only): {directory}")
            for match in found:
                logger.warning(f"  {match.path}:{match.line_number}: {match.line.strip()}")
        elif unreadable:
            logger.warning(f"{directory} only partly scanned, {len(unreadable)} path(s) unreadable")
        else:
            logger.info(f"{directory} no conflicts")
        return found

    def resolve(self, sysctl_conf: str, dropin_dir: str, readonly_dirs: Iterable[str]) -> ResolutionReport:
        """
        Run the three passes in precedence order.

        The monolithic file goes first, then the primary drop-in directory,
        then the read-only directories. Any fatal error stops the sequence.
        """
        report = ResolutionReport(dry_run=self.dry_run)

        logger.info(f"Step A: back up and comment out conflicts in {sysctl_conf}")
        neutralized = self.scan_and_neutralize(sysctl_conf)
        if neutralized is not None:
            report.neutralized.append(neutralized)

        logger.info(f"Step B: back up and remove conflicting files in {dropin_dir}")
        report.relocated.extend(self.scan_and_relocate_dir(dropin_dir))

        logger.info("Step C: scan other directories (read-only)")
        for directory in readonly_dirs:
            report.read_only_matches.extend(self.scan_read_only(directory))

        return report
