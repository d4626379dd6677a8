"""Tests for reading configuration from Streamlit secrets."""

from __future__ import annotations

import importlib
from pathlib import Path
from types import SimpleNamespace


def _config_with(monkeypatch, secrets):
    config = importlib.import_module("forma.config")
    monkeypatch.setattr(config, "st", SimpleNamespace(secrets=secrets))
    return config


def test_github_table_is_normalised(monkeypatch):
    config = _config_with(
        monkeypatch,
        {
            "github": {
                "repo": "org/forms",
                "path": "schemas/{form_key}.json",
                "token": "t0ken",
                "forms": ["a", " ", "b"],
            }
        },
    )

    settings = config.github_settings()

    assert settings["repo"] == "org/forms"
    assert settings["path"] == "schemas/{form_key}.json"
    assert settings["branch"] == "main"
    assert settings["forms"] == ["a", "b"]
    assert settings["api_url"] == config.DEFAULT_API_URL
    assert settings["submissions_path"] == config.DEFAULT_SUBMISSIONS_PATH


def test_flat_keys_are_used_as_fallback(monkeypatch):
    config = _config_with(
        monkeypatch,
        {
            "github_repo": "org/flat",
            "github_branch": "forms",
            "github_token": "abc",
            "github_submissions_path": "answers/{submission_id}.json",
        },
    )

    settings = config.github_settings()

    assert settings["repo"] == "org/flat"
    assert settings["path"] == config.DEFAULT_REMOTE_SCHEMA_PATH
    assert settings["branch"] == "forms"
    assert settings["token"] == "abc"
    assert settings["submissions_path"] == "answers/{submission_id}.json"


def test_missing_repository_means_not_configured(monkeypatch):
    config = _config_with(monkeypatch, {})

    assert config.github_settings() == {}
    assert config.editor_password_hash() is None
    assert config.local_submissions_dir() == Path("submissions")


def test_missing_secrets_file_falls_back_to_defaults(monkeypatch):
    class MissingSecrets:
        def get(self, name, default=None):
            raise FileNotFoundError("secrets.toml")

    config = _config_with(monkeypatch, MissingSecrets())

    assert config.github_settings() == {}
    assert config.local_submissions_dir() == config.DEFAULT_LOCAL_SUBMISSIONS_DIR


def test_editor_password_hash_and_submissions_dir(monkeypatch):
    config = _config_with(monkeypatch, {"editor_password_hash": "abc123", "submissions_dir": "/tmp/answers"})

    assert config.editor_password_hash() == "abc123"
    assert config.local_submissions_dir() == Path("/tmp/answers")
