"""Tests for VMX descriptor generation."""

import io

import pytest

from make_stemcell.storage.ova.vmx import (
    DISK_KEY,
    create_vmx,
    render_vmx,
    write_vmx,
)


def parse_vmx(text: str) -> dict[str, str]:
    """Parse ``key = "value"`` lines, failing on duplicate keys."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key, value = key.strip(), value.strip()
        assert sep and value.startswith('"') and value.endswith('"'), line
        assert key not in values, f"duplicate key: {key}"
        values[key] = value[1:-1]
    return values


class TestRenderVmx:
    """Tests for render_vmx()."""

    def test_references_disk(self):
        values = parse_vmx(render_vmx("image.vmdk"))
        assert values[DISK_KEY] == "image.vmdk"
        assert values["scsi0:0.present"] == "TRUE"

    def test_has_no_network_adapter(self):
        text = render_vmx("image.vmdk")
        assert "ethernet" not in text

    def test_keys_are_unique(self):
        values = parse_vmx(render_vmx("image.vmdk"))
        lines = [line for line in render_vmx("image.vmdk").splitlines() if line]
        assert len(values) == len(lines)

    def test_options(self):
        values = parse_vmx(render_vmx("d.vmdk", memory_mb=4096, cpus=4, display_name="win"))
        assert values["memsize"] == "4096"
        assert values["numvcpus"] == "4"
        assert values["displayName"] == "win"

    @pytest.mark.parametrize("disk", ["", 'bad"name.vmdk', "two\nlines.vmdk"])
    def test_rejects_bad_disk_names(self, disk):
        with pytest.raises(ValueError):
            render_vmx(disk)

    def test_write_vmx(self):
        stream = io.StringIO()
        write_vmx("image.vmdk", stream)
        assert stream.getvalue() == render_vmx("image.vmdk")


class TestCreateVmx:
    """Tests for create_vmx()."""

    def test_uses_disk_file_name_only(self, tmp_path):
        path = create_vmx(tmp_path / "image.vmx", tmp_path / "sub" / "image.vmdk")
        assert parse_vmx(path.read_text())[DISK_KEY] == "image.vmdk"

    def test_refuses_existing_file(self, tmp_path):
        path = tmp_path / "image.vmx"
        path.write_text("keep")
        with pytest.raises(FileExistsError):
            create_vmx(path, "image.vmdk")
        assert path.read_text() == "keep"
