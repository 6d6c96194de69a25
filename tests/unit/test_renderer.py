"""
Unit tests for the config document renderer

Rendering is pure, so these run entirely in memory.
"""

import sys
import os
from datetime import datetime
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from sysctl_tuning.calculator import calculate
from sysctl_tuning.key_registry import KEY_REGISTRY, tracked_keys
from sysctl_tuning.models import Aggressiveness, TuningInputs
from sysctl_tuning.renderer import render

MORNING = datetime(2024, 1, 2, 8, 0, 0)
EVENING = datetime(2024, 1, 2, 20, 30, 15)


def make_inputs(mode=Aggressiveness.CONSERVATIVE):
    return TuningInputs(memory_gib=Decimal('4'), bandwidth_mbps=1000, rtt_ms=Decimal('150'), aggressiveness=mode)


def render_for(mode=Aggressiveness.CONSERVATIVE, supported=True, generated_at=MORNING):
    inputs = make_inputs(mode)
    return render(calculate(inputs), inputs, congestion_control_supported=supported, generated_at=generated_at)


class TestRenderedContent:
    """Test the key = value lines"""

    def test_conservative_buffer_lines(self):
        """Test derived buffer values appear as key = value lines"""
        lines = render_for().lines

        assert "net.core.rmem_max = 33554432" in lines
        assert "net.core.wmem_max = 33554432" in lines
        assert "net.ipv4.tcp_rmem = 4096 87380 33554432" in lines
        assert "net.ipv4.tcp_wmem = 4096 65536 33554432" in lines
        assert "net.core.somaxconn = 8192" in lines

    def test_congestion_keys_first(self):
        """Test qdisc and congestion control lead the document"""
        document = render_for()
        assert document.keys()[:2] == ["net.core.default_qdisc", "net.ipv4.tcp_congestion_control"]
        assert document.as_dict()["net.ipv4.tcp_congestion_control"] == "bbr"
        assert document.as_dict()["net.core.default_qdisc"] == "fq"

    def test_keys_in_canonical_order(self):
        """Test emitted keys follow registry order for the mode"""
        for mode in Aggressiveness:
            assert render_for(mode).keys() == tracked_keys(mode)

    def test_every_key_registered(self):
        """Test nothing outside the key registry is emitted"""
        for mode in Aggressiveness:
            assert all(key in KEY_REGISTRY for key in render_for(mode).keys())

    def test_each_key_once(self):
        """Test no key is assigned twice"""
        keys = render_for(Aggressiveness.AGGRESSIVE).keys()
        assert len(keys) == len(set(keys))

    def test_aggressive_only_sections(self):
        """Test keepalive and IPv6 keys only appear in aggressive mode"""
        conservative = render_for().as_dict()
        aggressive = render_for(Aggressiveness.AGGRESSIVE).as_dict()

        assert "net.ipv4.tcp_keepalive_time" not in conservative
        assert aggressive["net.ipv4.tcp_keepalive_time"] == "300"
        assert aggressive["net.ipv6.conf.all.disable_ipv6"] == "0"
        assert aggressive["net.core.somaxconn"] == "65535"

    def test_port_range_keeps_space(self):
        """Test multi-value fixed keys render verbatim"""
        assert render_for().as_dict()["net.ipv4.ip_local_port_range"] == "1024 65535"


class TestHeader:
    """Test provenance comments"""

    def test_header_lines(self):
        """Test generator, mode, inputs and BDP comments"""
        text = render_for().text()

        assert "# Auto-generated by sysctl-tuning v1.0.0 - CONSERVATIVE mode" in text
        assert "# Inputs: memory=4GiB, bandwidth=1000Mbps, rtt=150ms" in text
        assert "# BDP: 18750000 bytes (~17.88 MiB)" in text
        assert "bucket 32 MiB" in text

    def test_single_timestamp_line(self):
        """Test the generation time appears only on the timestamp line"""
        document = render_for(generated_at=EVENING)

        assert document.lines[document.timestamp_index] == "# Generated: 2024-01-02 20:30:15"
        assert sum("2024-01-02" in line for line in document.lines) == 1

    def test_text_ends_with_newline(self):
        """Test the file content is newline terminated"""
        assert render_for().text().endswith("net.ipv4.udp_wmem_min = 8192\n")


class TestDeterminism:
    """Test render output depends only on its inputs"""

    def test_body_identical_across_times(self):
        """Test everything except the timestamp line is stable"""
        first = render_for(generated_at=MORNING)
        second = render_for(generated_at=EVENING)

        assert first.text() != second.text()
        assert first.body() == second.body()

    def test_full_text_identical_for_same_time(self):
        """Test identical arguments give byte-identical text"""
        assert render_for().text() == render_for().text()


class TestWithoutBBR:
    """Test rendering for kernels without BBR"""

    def test_congestion_keys_omitted(self):
        """Test qdisc/congestion keys are replaced by a comment"""
        document = render_for(supported=False)

        assert "net.ipv4.tcp_congestion_control" not in document.keys()
        assert "net.core.default_qdisc" not in document.keys()
        assert any("BBR not supported" in line for line in document.lines)

    def test_other_keys_still_rendered(self):
        """Test buffer keys are unaffected"""
        document = render_for(supported=False)
        assert document.keys() == tracked_keys(Aggressiveness.CONSERVATIVE, congestion_control=False)
        assert "net.core.rmem_max" in document.keys()
