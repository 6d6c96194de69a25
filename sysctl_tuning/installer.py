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
Transactional Installer.

Content is written to a temporary file next to the destination, synced, and
renamed over the destination. Readers of the destination see either the old
or the new file, never a partial one. The temporary file is removed on every
exit path.
"""

import logging
import os
import tempfile

from sysctl_tuning.errors import InstallerError
from sysctl_tuning.models import RenderedDocument

logger = logging.getLogger(__name__)

ARTIFACT_MODE = 0o644


def atomic_write(path: str, content: str, mode: int = ARTIFACT_MODE, errors: str = 'strict') -> None:
    """
    Atomically replace ``path`` with ``content``.

    Args:
        path: Destination path; its directory is created if missing
        content: Text written verbatim (no newline translation)
        mode: Permission bits of the published file
        errors: Codec error handler, 'surrogateescape' round-trips undecodable bytes

    Raises:
        InstallerError: The temporary file could not be created, written or renamed
    """
    directory = os.path.dirname(os.path.abspath(path))
    basename = os.path.basename(path)
    tmp_path = None

    try:
        os.makedirs(directory, exist_ok=True)
        with tempfile.NamedTemporaryFile(mode='w', dir=directory, prefix=f".{basename}.", suffix='.tmp',
                                         delete=False, encoding='utf-8', errors=errors, newline='') as tmp_file:
            tmp_path = tmp_file.name
            tmp_file.write(content)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
        tmp_path = None
        logger.debug(f"Published {path}")
    except OSError as e:
        raise InstallerError(f"Failed to write {path}: {e}") from e
    finally:
        if tmp_path is not None and os.path.lexists(tmp_path):
            os.unlink(tmp_path)


def install_document(document: RenderedDocument, destination: str) -> str:
    atomic_write(destination, document.text())
    logger.info(f"Config file written: {destination}")
    return destination


def uninstall(destination: str) -> bool:
    """
    Remove the canonical artifact.

    Returns:
        True when a file was removed, False when there was nothing to remove
    """
    try:
        os.remove(destination)
    except FileNotFoundError:
        logger.info(f"Config file {destination} does not exist, nothing to remove")
        return False
    except OSError as e:
        raise InstallerError(f"Failed to remove {destination}: {e}") from e

    logger.info(f"Removed config file: {destination}")
    return True
