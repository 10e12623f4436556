#!/usr/bin/env python
import json

import pytest

from carddav.config import config_section
from carddav.config import expand_config_section
from carddav.config import read_config

config = {
    "default": {"carddav_url": "https://dav.example.com/", "carddav_user": "alice"},
    "work": {"inherits": "default", "carddav_user": "alice.work"},
    "work_old": {"inherits": "work", "disable": True},
    "work_new": {"inherits": "work", "carddav_url": "https://new.example.com/"},
    "all_work": {"contains": ["work", "work_*"]},
    "everything": {"contains": ["default", "all_work", "everything"]},
}


class TestSections:
    def test_plain_section(self):
        assert expand_config_section(config, "default") == ["default"]
        assert expand_config_section(config, "work_old") == []

    def test_all_sections(self):
        assert expand_config_section(config, "*") == [
            "default",
            "work",
            "work_new",
            "all_work",
            "everything",
        ]

    def test_glob(self):
        assert expand_config_section(config, "work_*") == ["work_new"]

    def test_meta_sections(self):
        assert expand_config_section(config, "all_work") == ["work", "work_new"]
        ## recursion is stopped, the meta section includes itself
        assert expand_config_section(config, "everything") == [
            "default",
            "work",
            "work_new",
        ]

    def test_inherits(self):
        section = config_section(config, "work_new")
        assert section["carddav_user"] == "alice.work"
        assert section["carddav_url"] == "https://new.example.com/"
        assert config_section(config, "missing") == {}


class TestReadConfig:
    def test_json(self, tmp_path):
        fn = tmp_path / "carddav.json"
        fn.write_text(json.dumps(config))
        assert read_config(str(fn)) == config

    def test_yaml(self, tmp_path):
        fn = tmp_path / "carddav.yaml"
        fn.write_text(
            "---\n"
            "default:\n"
            "  carddav_url: https://dav.example.com/\n"
            "  carddav_user: alice\n"
        )
        assert read_config(str(fn)) == {"default": config["default"]}

    def test_missing(self, tmp_path):
        assert read_config(str(tmp_path / "nothing.yaml")) == {}

    @pytest.mark.parametrize("content", ["default: [unclosed", "- just\n- a list\n"])
    def test_broken(self, tmp_path, caplog, content):
        fn = tmp_path / "carddav.conf"
        fn.write_text(content)
        assert read_config(str(fn)) == {}
        assert "will be ignored" in caplog.text

    def test_default_locations(self, tmp_path, monkeypatch):
        cfgdir = tmp_path / ".config" / "carddav"
        cfgdir.mkdir(parents=True)
        (cfgdir / "carddav.yaml").write_text("default:\n  carddav_url: https://x.example.com/\n")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert read_config(None)["default"]["carddav_url"] == "https://x.example.com/"
