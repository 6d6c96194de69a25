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

import logging
import subprocess
from typing import List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


def run_command(cmd: List[str], timeout: int = DEFAULT_TIMEOUT) -> Tuple[int, str, str]:
    """
    Run a command without a shell.

    Returns:
        (returncode, stdout, stderr); 127 when the binary is missing, 124 on timeout
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        p = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        return 127, '', f"{cmd[0]}: command not found"
    except subprocess.TimeoutExpired:
        return 124, '', f"{cmd[0]}: timed out after {timeout}s"
    return p.returncode, (p.stdout or '').strip(), (p.stderr or '').strip()
