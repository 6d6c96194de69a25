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

import pytest
import sys
import os
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from sysctl_tuning import installer
from sysctl_tuning.calculator import calculate
from sysctl_tuning.errors import InstallerError
from sysctl_tuning.models import TuningInputs
from sysctl_tuning.renderer import render


def leftovers(directory):
    return [name for name in os.listdir(directory) if name.endswith('.tmp')]


class TestAtomicWrite:
    """Test write-to-temp-then-rename publishing"""

    def test_creates_file(self, tmp_path):
        destination = tmp_path / 'out.conf'

        installer.atomic_write(str(destination), "a = 1\n")

        assert destination.read_text() == "a = 1\n"
        assert os.stat(destination).st_mode & 0o777 == 0o644
        assert leftovers(tmp_path) == []

    def test_replaces_existing(self, tmp_path):
        destination = tmp_path / 'out.conf'
        destination.write_text("old\n")

        installer.atomic_write(str(destination), "new\n")

        assert destination.read_text() == "new\n"

    def test_creates_missing_directory(self, tmp_path):
        destination = tmp_path / 'sysctl.d' / 'out.conf'
        installer.atomic_write(str(destination), "x = 1\n")
        assert destination.read_text() == "x = 1\n"

    def test_fsync_failure_keeps_destination(self, tmp_path):
        """Test a failed write leaves the old content and no temp file"""
        destination = tmp_path / 'out.conf'
        destination.write_text("old\n")

        with patch('sysctl_tuning.installer.os.fsync', side_effect=OSError("I/O error")):
            with pytest.raises(InstallerError):
                installer.atomic_write(str(destination), "new\n")

        assert destination.read_text() == "old\n"
        assert leftovers(tmp_path) == []

    def test_rename_failure_cleans_up(self, tmp_path):
        destination = tmp_path / 'out.conf'

        with patch('sysctl_tuning.installer.os.replace', side_effect=OSError("busy")):
            with pytest.raises(InstallerError):
                installer.atomic_write(str(destination), "new\n")

        assert not destination.exists()
        assert leftovers(tmp_path) == []

    def test_interrupt_cleans_up(self, tmp_path):
        """Test the temp file is removed even on non-OSError interruption"""
        destination = tmp_path / 'out.conf'

        with patch('sysctl_tuning.installer.os.fsync', side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                installer.atomic_write(str(destination), "new\n")

        assert leftovers(tmp_path) == []


class TestInstallDocument:
    """Test publishing a rendered document"""

    def test_install_document(self, tmp_path):
        inputs = TuningInputs(memory_gib=Decimal('4'), bandwidth_mbps=1000, rtt_ms=Decimal('150'))
        document = render(calculate(inputs), inputs, generated_at=datetime(2024, 1, 1))
        destination = tmp_path / '999-net-bbr-fq.conf'

        installer.install_document(document, str(destination))

        assert destination.read_text() == document.text()


class TestUninstall:
    """Test removal of the canonical artifact"""

    def test_removes_existing(self, tmp_path):
        destination = tmp_path / 'out.conf'
        destination.write_text("x\n")

        assert installer.uninstall(str(destination)) is True
        assert not destination.exists()

    def test_missing_is_not_an_error(self, tmp_path):
        assert installer.uninstall(str(tmp_path / 'absent.conf')) is False

    def test_remove_failure_raises(self, tmp_path):
        destination = tmp_path / 'out.conf'
        destination.write_text("x\n")

        with patch('sysctl_tuning.installer.os.remove', side_effect=PermissionError("denied")):
            with pytest.raises(InstallerError):
                installer.uninstall(str(destination))
