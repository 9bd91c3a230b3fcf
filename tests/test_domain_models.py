"""Tests for domain models."""

import dataclasses

import pytest

from make_stemcell.domain.models import StemcellManifest, stemcell_filename


class TestStemcellManifest:
    """Tests for StemcellManifest."""

    def test_render(self):
        manifest = StemcellManifest(
            name="bosh-vsphere-esxi-windows-2012R2-go_agent",
            version="1200.3",
            sha1="da39a3ee5e6b4b0d3255bfef95601890afd80709",
        )
        assert manifest.render() == (
            "---\n"
            "name: bosh-vsphere-esxi-windows-2012R2-go_agent\n"
            "version: 1200.3\n"
            "sha1: da39a3ee5e6b4b0d3255bfef95601890afd80709\n"
            "operating_system: windows2012R2\n"
            "cloud_properties:\n"
            "  infrastructure: vsphere\n"
            "  hypervisor: esxi\n"
        )

    def test_render_is_pure(self):
        manifest = StemcellManifest(name="n", version="1.0", sha1="00")
        assert manifest.render() == manifest.render()

    def test_frozen(self):
        manifest = StemcellManifest(name="n", version="1.0", sha1="00")
        with pytest.raises(dataclasses.FrozenInstanceError):
            manifest.sha1 = "11"


def test_stemcell_filename():
    assert stemcell_filename("bosh-stemcell", "3.14", "vsphere-esxi") == "bosh-stemcell-3.14-vsphere-esxi.tgz"
