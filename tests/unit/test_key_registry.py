import sys
import os
from dataclasses import fields

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from sysctl_tuning.key_registry import (
    KEY_REGISTRY, SECTIONS, keys_by_section, normalize_key, tracked_keys
)
from sysctl_tuning.models import Aggressiveness, DerivedBudget


class TestRegistryIntegrity:
    """Test registry entries are well formed"""

    def test_every_entry_has_value_or_derived(self):
        """Test each key has exactly one value source"""
        for key, meta in KEY_REGISTRY.items():
            assert ("value" in meta) != ("derived" in meta), key

    def test_derived_attributes_exist(self):
        """Test derived keys name real DerivedBudget fields"""
        budget_fields = {f.name for f in fields(DerivedBudget)}
        for key, meta in KEY_REGISTRY.items():
            for attribute in meta.get("derived", ()):
                assert attribute in budget_fields, key

    def test_sections_known(self):
        """Test every key belongs to a declared section"""
        section_names = {name for name, _ in SECTIONS}
        assert all(meta["section"] in section_names for meta in KEY_REGISTRY.values())


class TestNormalizeKey:
    """Test sysctl key normalization"""

    def test_dotted_key_unchanged(self):
        assert normalize_key(" net.core.rmem_max ") == "net.core.rmem_max"

    def test_slash_key(self):
        """Test slash notation maps to dotted notation"""
        assert normalize_key("net/ipv4/tcp_rmem") == "net.ipv4.tcp_rmem"

    def test_slash_key_with_dotted_component(self):
        """Test dots inside a slash key stay part of the component"""
        assert normalize_key("net/ipv4/conf/eth0.100/rp_filter") == "net.ipv4.conf.eth0/100.rp_filter"


class TestTrackedKeys:
    """Test per-mode key selection"""

    def test_conservative_subset_of_aggressive(self):
        conservative = set(tracked_keys(Aggressiveness.CONSERVATIVE))
        aggressive = set(tracked_keys(Aggressiveness.AGGRESSIVE))

        assert conservative < aggressive
        assert "net.ipv4.tcp_fin_timeout" in aggressive - conservative

    def test_aggressive_tracks_whole_registry(self):
        assert tracked_keys(Aggressiveness.AGGRESSIVE) == list(KEY_REGISTRY)

    def test_without_congestion_control(self):
        """Test BBR-less hosts do not track qdisc/congestion keys"""
        keys = tracked_keys(Aggressiveness.AGGRESSIVE, congestion_control=False)

        assert "net.ipv4.tcp_congestion_control" not in keys
        assert "net.core.default_qdisc" not in keys
        assert "net.core.rmem_max" in keys

    def test_keys_by_section_preserves_order(self):
        grouped = keys_by_section(Aggressiveness.CONSERVATIVE)

        assert list(grouped) == [name for name, _ in SECTIONS]
        assert grouped["keepalive"] == []
        assert grouped["tcp_buffers"] == ["net.ipv4.tcp_rmem", "net.ipv4.tcp_wmem"]
