"""
Tests for configuration loading and saving.
"""

import json

import pytest
from pydantic import ValidationError

from cellbook.config import CellbookConfig, load_config, save_config


class TestConfig:
    """Test cases for CellbookConfig."""

    def test_defaults(self):
        config = CellbookConfig()
        assert config.execution.timeout_ms == 300_000
        assert config.execution.interrupt_on_error is True
        assert config.execution.clear_output_before_run is False
        assert config.kernel.auto_kernel_picker is False
        assert config.kernel.language_mappings == {}
        assert config.undo.max_stack_size == 100

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.json")
        assert config == CellbookConfig()

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "sub" / "config.json"
        config = CellbookConfig()
        config.execution.timeout_ms = 5000
        config.kernel.language_mappings = {"python3": "python"}

        save_config(config, path)
        loaded = load_config(path)

        assert loaded.execution.timeout_ms == 5000
        assert loaded.kernel.language_mappings == {"python3": "python"}
        assert json.loads(path.read_text())["undo"]["max_stack_size"] == 100

    def test_partial_file_fills_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"kernel": {"auto_kernel_picker": true}}')

        config = load_config(path)

        assert config.kernel.auto_kernel_picker is True
        assert config.execution.timeout_ms == 300_000

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValidationError):
            CellbookConfig.model_validate({"execution": {"timeout_ms": -1}})
