"""Tests for storyforge.auth: credential store and configuration."""

from pathlib import Path

import pytest

from storyforge.auth import (
    CredentialStore,
    Settings,
    get_api_keys,
    get_system_api_key,
    load_config,
    mask_key,
)


class TestSystemKey:
    def test_first_recognised_name_wins(self):
        env = {"API_KEY": "third", "GOOGLE_API_KEY": "second", "GEMINI_API_KEY": "first"}
        assert get_system_api_key(env) == "first"

    def test_blank_values_are_ignored(self):
        assert get_system_api_key({"GEMINI_API_KEY": "  ", "REACT_APP_API_KEY": "react"}) == "react"

    def test_nothing_set(self):
        assert get_system_api_key({}) == ""


class TestCredentialStore:
    def test_user_keys_in_order(self):
        store = CredentialStore.configure(["b", "a", "b"], environ={"GEMINI_API_KEY": "env"})
        assert store.candidates() == ["b", "a", "b"]

    def test_environment_fallback(self):
        store = CredentialStore.configure([], environ={"VITE_API_KEY": "vite"})
        assert store.candidates() == ["vite"]

    def test_empty(self):
        assert CredentialStore.configure([], environ={}).candidates() == []

    def test_replace_is_wholesale_and_snapshots_are_independent(self):
        store = CredentialStore(["a"], environ={})
        snapshot = store.candidates()
        store.replace(["x", "y"])
        assert snapshot == ["a"]
        assert store.candidates() == ["x", "y"]


def test_mask_key():
    assert mask_key("AIzaSyABCDEFGH1234") == "...1234"
    assert mask_key("") == "<empty>"


class TestConfig:
    def test_explicit_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_default_path_is_optional(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert load_config() == {}

    def test_settings_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "api:\n"
            "  api_keys: [YOUR_GEMINI_API_KEY, real-key]\n"
            "generation:\n"
            "  scene_count: 6\n"
            "  aspect_ratio: '9:16'\n"
            "polling:\n"
            "  interval_seconds: 2\n"
            "  max_wait_seconds: 60\n"
            "output:\n"
            "  base_dir: out\n",
            encoding="utf-8",
        )
        config = load_config(path)
        settings = Settings.from_config(config)

        assert get_api_keys(config) == ["real-key"]
        assert settings.scene_count == 6
        assert settings.aspect_ratio == "9:16"
        assert settings.poll_interval_seconds == 2.0
        assert settings.max_wait_seconds == 60.0
        assert settings.output_dir == Path("out")
        assert settings.text_model == "gemini-2.5-flash"

    def test_defaults(self):
        settings = Settings.from_config({})
        assert settings.max_wait_seconds is None
        assert settings.retry_attempts == 2
        assert settings.poll_interval_seconds == 5.0
