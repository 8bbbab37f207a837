"""Tests for config module."""

from pathlib import Path

import pytest
import yaml

from src.config import config_from_dict, config_from_yaml, config_section, load_config
from src.errors import InputValidationError
from src.types import IFConfig


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_valid_yaml(self, tmp_path: Path) -> None:
        """Test loading a valid YAML file."""
        config_data = {"influence": {"k": 3, "eff": 0.95}}
        config_file = tmp_path / "test.yaml"
        config_file.write_text(yaml.dump(config_data))

        assert load_config(config_file) == config_data

    def test_load_missing_file(self) -> None:
        """Test loading a non-existent file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/path/config.yaml")

    def test_load_empty_yaml(self, tmp_path: Path) -> None:
        """Test loading an empty YAML file returns empty dict."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert load_config(config_file) == {}

    def test_top_level_list(self, tmp_path: Path) -> None:
        """Test a document that is not a mapping raises InputValidationError."""
        config_file = tmp_path / "list.yaml"
        config_file.write_text(yaml.dump([1, 2, 3]))

        with pytest.raises(InputValidationError, match="mapping"):
            load_config(config_file)


class TestConfigSection:
    """Tests for config_section function."""

    def test_top_level_section(self) -> None:
        """Test a plain section name."""
        assert config_section({"influence": {"k": 3}}, "influence") == {"k": 3}

    def test_dotted_section(self) -> None:
        """Test a dotted path walks nested mappings."""
        config = {"research": {"influence": {"eff": 0.95}}}
        assert config_section(config, "research.influence") == {"eff": 0.95}

    def test_missing_section(self) -> None:
        """Test a missing section gives an empty mapping."""
        assert config_section({"influence": {}}, "research.influence") == {}

    def test_empty_section(self) -> None:
        """Test a section with no body gives an empty mapping."""
        assert config_section({"influence": None}, "influence") == {}


class TestConfigFromDict:
    """Tests for config_from_dict function."""

    def test_overlay(self) -> None:
        """Test given keys replace defaults and others are kept."""
        cfg = config_from_dict({"grid_points": 200, "family": "bisquare"})
        assert cfg.grid_points == 200
        assert cfg.family == "bisquare"
        assert cfg.k == IFConfig().k

    def test_base_untouched(self) -> None:
        """Test the base configuration is not modified."""
        base = IFConfig(k=2.0)
        cfg = config_from_dict({"eff": 0.9}, base=base)
        assert cfg.k == 2.0
        assert base.eff == 0.99

    def test_unknown_key(self) -> None:
        """Test unknown keys raise InputValidationError."""
        with pytest.raises(InputValidationError, match="window"):
            config_from_dict({"window": 252})


class TestConfigFromYaml:
    """Tests for config_from_yaml function."""

    def test_reads_section(self, tmp_path: Path) -> None:
        """Test the influence section is overlaid on the defaults."""
        config_file = tmp_path / "influence.yaml"
        config_file.write_text(
            yaml.dump({"influence": {"k": 3.0, "grid_points": 500, "risk_free": 0.0001}})
        )

        cfg = config_from_yaml(config_file)

        assert cfg.k == 3.0
        assert cfg.grid_points == 500
        assert cfg.risk_free == 0.0001
        assert cfg.tail_probability == 0.05

    def test_missing_section(self, tmp_path: Path) -> None:
        """Test a file without the section gives defaults."""
        config_file = tmp_path / "other.yaml"
        config_file.write_text(yaml.dump({"signals": {"window": 20}}))

        assert config_from_yaml(config_file) == IFConfig()

    def test_custom_section(self, tmp_path: Path) -> None:
        """Test reading a differently named section."""
        config_file = tmp_path / "multi.yaml"
        config_file.write_text(yaml.dump({"robust": {"eff": 0.95}}))

        assert config_from_yaml(config_file, section="robust").eff == 0.95

    def test_dotted_section(self, tmp_path: Path) -> None:
        """Test reading a nested section by dotted path."""
        config_file = tmp_path / "nested.yaml"
        config_file.write_text(yaml.dump({"research": {"influence": {"grid_points": 300}}}))

        assert config_from_yaml(config_file, section="research.influence").grid_points == 300

    def test_section_not_mapping(self, tmp_path: Path) -> None:
        """Test a scalar section raises InputValidationError."""
        config_file = tmp_path / "bad.yaml"
        config_file.write_text(yaml.dump({"influence": 3}))

        with pytest.raises(InputValidationError):
            config_from_yaml(config_file)
