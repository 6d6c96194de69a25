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

"""Error taxonomy for a tuning run.

Fatal errors derive from TuningError and abort the run with a non-zero
outcome. Apply/verify problems are never raised, they are reported as
warnings by the orchestrator.
"""


class TuningError(Exception):
    """Base class for fatal tuning errors"""


class PreconditionError(TuningError):
    """Invalid inputs or missing privilege. Raised before any mutation."""


class HostEnvironmentError(TuningError):
    """A required tool or file on the host is missing or unreadable"""


class ConflictResolutionError(TuningError):
    """Backing up, rewriting or relocating a conflicting file failed"""


class InstallerError(TuningError):
    """Writing or publishing the canonical artifact failed"""
