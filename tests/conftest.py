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
Pytest configuration for sysctl-tuning unit tests.

Puts the repository root on sys.path and provides a throwaway sysctl
configuration tree so resolver and orchestrator tests never touch /etc.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


@pytest.fixture
def sysctl_tree(tmp_path):
    """
    Minimal configuration tree:

    etc/sysctl.conf, etc/sysctl.d/ (primary drop-ins) and
    usr/lib/sysctl.d/ (read-only vendor dir).
    """
    etc = tmp_path / 'etc'
    dropin = etc / 'sysctl.d'
    vendor = tmp_path / 'usr' / 'lib' / 'sysctl.d'
    dropin.mkdir(parents=True)
    vendor.mkdir(parents=True)
    sysctl_conf = etc / 'sysctl.conf'
    sysctl_conf.write_text("# empty\n")

    return {
        'root': tmp_path,
        'sysctl_conf': str(sysctl_conf),
        'dropin_dir': str(dropin),
        'readonly_dirs': [str(vendor)],
        'target_path': str(dropin / '999-net-bbr-fq.conf'),
    }
