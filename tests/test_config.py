"""
Unit tests for machine configuration validation and persistence.
"""

import json
import os
import stat
from unittest.mock import patch

import pytest

from vsphere_machine.config import (
    DEFAULT_CPU_COUNT,
    DEFAULT_DISK_SIZE_MB,
    DEFAULT_MEMORY_MB,
    DEFAULT_SSH_PORT,
    MachineConfig,
    check_config,
    config_file_for,
    generate_vm_name,
    load_machine_config,
    machine_store_path,
    missing_required_field,
    save_machine_config,
)
from vsphere_machine.errors import ConfigError, IncompleteConfigError


@pytest.mark.unit
class TestDefaults:
    """Test MachineConfig defaults."""

    def test_defaults(self):
        """Test that an empty config carries the documented defaults."""
        config = MachineConfig()

        assert config.ssh_port == DEFAULT_SSH_PORT == 22
        assert config.cpu == DEFAULT_CPU_COUNT == 2
        assert config.memory == DEFAULT_MEMORY_MB == 2048
        assert config.disk_size == DEFAULT_DISK_SIZE_MB == 20000
        assert config.authorized_keys == []

    def test_generated_names_differ(self):
        assert generate_vm_name() != generate_vm_name()


@pytest.mark.unit
class TestValidation:
    """Test required field validation."""

    def test_complete_config_passes(self, full_config):
        assert missing_required_field(full_config) is None
        check_config(full_config)

    def test_empty_config_reports_endpoint_first(self):
        """Test that fields are checked in a fixed order."""
        with pytest.raises(IncompleteConfigError) as excinfo:
            check_config(MachineConfig())

        assert excinfo.value.field == "endpoint"
        assert "missing endpoint" in str(excinfo.value)

    @pytest.mark.parametrize("field", [
        "endpoint", "username", "password", "network", "datastore", "datacenter",
    ])
    def test_each_required_field(self, full_config, field):
        setattr(full_config, field, "")

        assert missing_required_field(full_config) == field

    def test_optional_fields_not_required(self, full_config):
        """Test that pool, compute IP and image URL may be empty."""
        full_config.pool = ""
        full_config.host_ip = ""
        full_config.boot2docker_url = ""

        assert missing_required_field(full_config) is None


@pytest.mark.unit
class TestPersistence:
    """Test saving and loading config.json."""

    def test_save_and_load(self, temp_store_dir, full_config):
        full_config.authorized_keys = ["/home/user/.docker/key.json"]

        config_file = save_machine_config(temp_store_dir, full_config)
        loaded = load_machine_config(temp_store_dir)

        assert config_file == config_file_for(temp_store_dir)
        assert loaded == full_config

    def test_saved_file_is_private(self, temp_store_dir, full_config):
        """Test that the file holding the password is owner-only."""
        config_file = save_machine_config(temp_store_dir, full_config)

        assert stat.S_IMODE(config_file.stat().st_mode) == 0o600

    def test_missing_file(self, temp_store_dir):
        with pytest.raises(ConfigError, match="No machine configuration"):
            load_machine_config(temp_store_dir)

    def test_invalid_json(self, temp_store_dir):
        temp_store_dir.mkdir(parents=True)
        config_file_for(temp_store_dir).write_text("{not json")

        with pytest.raises(ConfigError, match="Invalid machine configuration"):
            load_machine_config(temp_store_dir)

    def test_non_object_json(self, temp_store_dir):
        temp_store_dir.mkdir(parents=True)
        config_file_for(temp_store_dir).write_text("[1, 2, 3]")

        with pytest.raises(ConfigError, match="expected an object"):
            load_machine_config(temp_store_dir)

    def test_unknown_keys_ignored(self, temp_store_dir):
        """Test that keys written by other versions do not break loading."""
        temp_store_dir.mkdir(parents=True)
        config_file_for(temp_store_dir).write_text(json.dumps({
            "name": "docker-host-abc",
            "cpu": 4,
            "driver_version": "0.1",
        }))

        loaded = load_machine_config(temp_store_dir)

        assert loaded.name == "docker-host-abc"
        assert loaded.cpu == 4
        assert loaded.memory == DEFAULT_MEMORY_MB

    def test_file_is_private_while_written(self, temp_store_dir, full_config):
        """Test that the password never sits in a file readable by others."""
        modes = []

        def recording_dump(obj, fp, **kwargs):
            modes.append(stat.S_IMODE(os.fstat(fp.fileno()).st_mode))
            fp.write(json.dumps(obj, **kwargs))

        with patch("vsphere_machine.config.json.dump", side_effect=recording_dump):
            save_machine_config(temp_store_dir, full_config)

        assert modes == [0o600]
        assert sorted(p.name for p in temp_store_dir.iterdir()) == ["config.json"]


@pytest.mark.unit
class TestMachineStorePath:
    """Test machine_store_path."""

    def test_plain_name(self, tmp_path):
        assert machine_store_path(tmp_path, "docker-host-test") == tmp_path.resolve() / "docker-host-test"

    @pytest.mark.parametrize("name", ["", ".", "..", "../escaped", "a/b", "a\\b", "/abs/path"])
    def test_name_must_stay_under_root(self, tmp_path, name):
        with pytest.raises(ConfigError, match="Invalid machine name"):
            machine_store_path(tmp_path, name)

    def test_symlink_out_of_root_rejected(self, tmp_path):
        root = tmp_path / "machines"
        root.mkdir()
        (root / "link").symlink_to(tmp_path)

        with pytest.raises(ConfigError):
            machine_store_path(root, "link")
