# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for scriptflow.config — validation at setup time."""

from __future__ import annotations

import pytest

from scriptflow.config import (
    AsyncExecType,
    LoadPosition,
    LocalStorageConfig,
    ScriptFlowConfig,
    load_config,
    parse_config,
)
from scriptflow.errors import ConfigError


class TestDefaults:
    def test_empty_config_disables_everything(self):
        config = parse_config(None)
        assert not config.any_enabled
        assert not config.concat_enabled
        assert config.cache_url == "/cache/js"
        assert config.runtime_global == "scriptflow"

    def test_concat_requires_minify(self):
        assert not parse_config({"concat": {"enabled": True}}).concat_enabled
        assert parse_config({"minify": {"enabled": True}, "concat": {"enabled": True}}).concat_enabled


class TestAliases:
    def test_async_section_and_rule_aliases(self):
        config = parse_config(
            {
                "async": {
                    "enabled": True,
                    "exec": {"type": "requestIdleCallback", "timeout": 100, "setTimeout": 50},
                    "localStorage": {"max_size": 1000, "head_update": True},
                    "filter": {
                        "type": "include",
                        "rules": [
                            {"match": ["a.js"], "async": False},
                            {"match": ["bundle"], "match_concat": True, "localStorage": True},
                        ],
                    },
                }
            }
        )
        a = config.async_
        assert a.exec_.type == AsyncExecType.IDLE
        assert a.exec_.set_timeout == 50
        assert a.local_storage == LocalStorageConfig(max_size=1000, head_update=True)
        assert [r.load_async for r in a.script_rules] == [False]
        assert [r.local_storage for r in a.concat_rules] == [True]

    def test_page_load_position_is_header_or_timed(self):
        assert parse_config({"async": {"load_position": "footer"}}).async_.load_position == LoadPosition.HEADER
        assert parse_config({"async": {"load_position": "timed"}}).async_.load_position == LoadPosition.TIMED


class TestValidation:
    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError):
            parse_config({"minify": {"enabeld": True}})

    def test_cdn_requires_url(self):
        with pytest.raises(ConfigError, match="cdn.url"):
            parse_config({"cdn": {"enabled": True}})

    def test_invalid_replace_regex(self):
        with pytest.raises(ConfigError):
            parse_config({"minify": {"replace": [{"search": "([", "regex": True}]}})

    def test_empty_replace_rules_dropped(self):
        config = parse_config({"minify": {"replace": [{"search": "  "}, {"search": "a", "replace": "b"}]}})
        assert [r.search for r in config.minify.replace] == ["a"]

    def test_invalid_exec_type(self):
        with pytest.raises(ConfigError):
            parse_config({"async": {"exec": {"type": "whenever"}}})


class TestConcatRuleSanitizing:
    def test_rules_without_match_are_dropped(self):
        config = parse_config({"concat": {"filter": {"rules": [{"match": []}, {"match": ["x"]}]}}})
        assert len(config.concat.filter.rules) == 1

    def test_duplicate_group_key_replaces_earlier_rule(self):
        config = parse_config(
            {
                "concat": {
                    "filter": {
                        "rules": [
                            {"match": ["a"], "group": {"key": "g"}, "title": "old"},
                            {"match": ["b"]},
                            {"match": ["c"], "group": {"key": "g"}, "title": "new"},
                        ]
                    }
                }
            }
        )
        rules = config.concat.filter.rules
        assert [r.title for r in rules] == ["new", None]
        assert rules[0].stable_key == "g"


class TestTransformFingerprint:
    def test_changes_with_replace_rules(self):
        a = parse_config({"minify": {"replace": [{"search": "a", "replace": "b"}]}})
        b = parse_config({"minify": {"replace": [{"search": "a", "replace": "c"}]}})
        assert a.transform_fingerprint() != b.transform_fingerprint()

    def test_ignores_unrelated_settings(self):
        a = parse_config({"minify": {"enabled": True}})
        b = parse_config({"minify": {"enabled": True}, "debug": True})
        assert a.transform_fingerprint() == b.transform_fingerprint()


class TestLoadConfig:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "scriptflow.yaml"
        path.write_text("minify:\n  enabled: true\nasync:\n  enabled: true\n  rel_preload: true\n")
        config = load_config(path)
        assert isinstance(config, ScriptFlowConfig)
        assert config.minify.enabled
        assert config.async_.rel_preload

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="cannot read"):
            load_config(tmp_path / "missing.yaml")

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_empty_file_is_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert not load_config(path).any_enabled
