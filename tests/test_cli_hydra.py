"""Tests for the Hydra-based CLI (cli.py)."""

from __future__ import annotations

import json
from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import OmegaConf

import study_material_generator
from study_material_generator._hydra_conf import CLI_ONLY_KEYS, SmgConf, register_configs
from study_material_generator.cli import _MODE_DISPATCH, _to_project_config
from study_material_generator.models import ProjectConfig, StructuredDocument


def _conf_dir() -> str:
    return str(Path(study_material_generator.__file__).resolve().parent / "conf")


class TestDefaultConfig:
    """Verify the package's conf/config.yaml loads correctly."""

    def test_default_config_loads(self):
        register_configs()
        with initialize_config_dir(config_dir=_conf_dir(), version_base=None):
            cfg = compose(config_name="config")
            assert cfg.mode == "run"
            assert cfg.topic is None
            assert cfg.pipeline.max_retries == 2
            assert cfg.models.fallback_writer == "openai/gpt-5"

    def test_default_config_converts_to_project_config(self, monkeypatch):
        monkeypatch.setenv("LLM_API_KEY", "test")
        monkeypatch.setenv("LLM_ENDPOINT", "https://gateway.example.com")

        register_configs()
        with initialize_config_dir(config_dir=_conf_dir(), version_base=None):
            cfg = compose(config_name="config", overrides=["topic=Entropy", "pipeline.max_retries=4"])
            pc = _to_project_config(cfg)
            assert isinstance(pc, ProjectConfig)
            assert pc.project_name == "study-material"
            assert pc.pipeline.max_retries == 4
            assert pc.llm.api_key == "test"


class TestModeDispatch:
    """Verify mode dispatch table."""

    def test_all_modes_present(self):
        expected = {"run", "parse", "validate", "fix_diagrams"}
        assert set(_MODE_DISPATCH.keys()) == expected

    def test_all_modes_are_callable(self):
        for name, handler in _MODE_DISPATCH.items():
            assert callable(handler), f"Handler for mode {name!r} is not callable"


class TestOfflineModes:
    """parse and fix_diagrams work on a local draft without credentials."""

    def _cfg(self, **overrides):
        base = OmegaConf.structured(SmgConf)
        return OmegaConf.merge(base, overrides)

    def test_parse_mode_writes_json(self, tmp_path, sample_draft_md):
        draft = tmp_path / "draft.md"
        draft.write_text(sample_draft_md, encoding="utf-8")
        out = tmp_path / "draft.json"
        _MODE_DISPATCH["parse"](self._cfg(mode="parse", input=str(draft), output=str(out)))

        doc = StructuredDocument.model_validate(json.loads(out.read_text(encoding="utf-8")))
        assert doc.title == "Thermodynamics — First Law"
        assert len([b for b in doc.blocks if b.kind == "references"]) == 1

    def test_fix_diagrams_mode(self, tmp_path, sample_draft_md):
        draft = tmp_path / "draft.md"
        draft.write_text(sample_draft_md, encoding="utf-8")
        out = tmp_path / "fixed.md"
        _MODE_DISPATCH["fix_diagrams"](self._cfg(mode="fix_diagrams", input=str(draft), output=str(out)))

        fixed = out.read_text(encoding="utf-8")
        assert "```mermaid\ngraph TD\nA[Heat added]" in fixed
        assert "graphTDA" not in fixed


class TestCliOnlyKeys:
    """CLI_ONLY_KEYS should match the extra fields in SmgConf."""

    def test_cli_keys_not_in_project_config(self):
        pc_fields = set(ProjectConfig.model_fields.keys())
        for key in CLI_ONLY_KEYS:
            assert key not in pc_fields, f"CLI-only key {key!r} found in ProjectConfig"

    def test_cli_keys_in_smg_conf(self):
        smg_fields = {f.name for f in SmgConf.__dataclass_fields__.values()}
        for key in CLI_ONLY_KEYS:
            assert key in smg_fields, f"CLI-only key {key!r} not found in SmgConf"

    def test_project_fields_in_smg_conf(self):
        smg_fields = {f.name for f in SmgConf.__dataclass_fields__.values()}
        assert set(ProjectConfig.model_fields.keys()) <= smg_fields
