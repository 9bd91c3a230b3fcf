"""Tests for command line input validation."""

import pytest

from make_stemcell.storage.exceptions import (
    FileConflictError,
    InputValidationError,
    VersionFormatError,
)
from make_stemcell.storage.validation import (
    collect_errors,
    validate_input_file,
    validate_output_dir,
    validate_stemcell_absent,
    validate_version,
)


class TestValidateVersion:
    """Tests for validate_version()."""

    @pytest.mark.parametrize("version", ["1.0", "1200.3", "0.15"])
    def test_valid(self, version):
        validate_version(version)

    @pytest.mark.parametrize("version", ["", "1", "1.2.3", "a.b", "1.0\n", " 1.0", "v1.0"])
    def test_invalid(self, version):
        with pytest.raises(VersionFormatError):
            validate_version(version)


class TestValidateInputFile:
    """Tests for validate_input_file()."""

    def test_regular_file(self, tmp_path):
        path = tmp_path / "base.vhd"
        path.write_bytes(b"x")
        validate_input_file(path, "--vhd")

    def test_missing_flag(self):
        with pytest.raises(InputValidationError, match="--vhd"):
            validate_input_file(None, "--vhd")

    def test_directory_is_not_a_file(self, tmp_path):
        with pytest.raises(InputValidationError, match="not a regular file"):
            validate_input_file(tmp_path, "--delta")


class TestValidateOutputDir:
    """Tests for validate_output_dir()."""

    def test_existing_directory(self, tmp_path):
        validate_output_dir(tmp_path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(InputValidationError, match="does not exist"):
            validate_output_dir(tmp_path / "missing")


class TestValidateStemcellAbsent:
    """Tests for validate_stemcell_absent()."""

    def test_absent(self, tmp_path):
        validate_stemcell_absent(tmp_path / "stemcell.tgz")

    def test_present(self, tmp_path):
        path = tmp_path / "stemcell.tgz"
        path.write_bytes(b"")
        with pytest.raises(FileConflictError):
            validate_stemcell_absent(path)


def test_collect_errors_reports_every_failure(tmp_path):
    errors = collect_errors(
        (validate_version, "bad"),
        (validate_output_dir, tmp_path),
        (validate_input_file, None, "--delta"),
    )
    assert [type(error) for error in errors] == [VersionFormatError, InputValidationError]
