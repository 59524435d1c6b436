"""Тесты загрузки конфигурации."""
from pathlib import Path

import pytest

from todoist_notion_sync.config import AppConfig


def _write(tmp_path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestAppConfig:
    def test_defaults(self, tmp_path):
        config = AppConfig.load(_write(tmp_path, ""), environ={})

        assert config.todoist.base_url == "https://api.todoist.com/api/v1"
        assert config.notion.properties.title == "Name"
        assert config.sync.delete_mode == "complete"
        assert config.sync.conflict_policy == "merge"
        assert config.sync.max_workers == 1
        assert config.state_db == Path(".sync_state.sqlite")

    def test_values_from_file(self, tmp_path):
        path = _write(
            tmp_path,
            "todoist:\n  token: abc\n  inbox_project: Входящие\n"
            "notion:\n  database_id: db\n  properties:\n    title: Задача\n"
            "sync:\n  delete_mode: delete\n  max_workers: 2\n"
            "state_db: data/state.sqlite\n",
        )

        config = AppConfig.load(path, environ={})

        assert config.todoist.token == "abc"
        assert config.todoist.inbox_project == "Входящие"
        assert config.notion.properties.title == "Задача"
        assert config.sync.delete_mode == "delete"
        assert config.sync.max_workers == 2
        assert config.state_db == Path("data/state.sqlite")

    def test_environment_fills_missing_secrets(self, tmp_path):
        path = _write(tmp_path, "todoist:\n  token: from-file\n")

        config = AppConfig.load(
            path,
            environ={"TODOIST_TOKEN": "from-env", "NOTION_TOKEN": "n-env", "NOTION_DATABASE_ID": "db-env"},
        )

        assert config.todoist.token == "from-file"
        assert config.notion.token == "n-env"
        assert config.notion.database_id == "db-env"

    @pytest.mark.parametrize(
        "text",
        ["sync:\n  conflict_policy: coin_flip\n", "sync:\n  max_workers: 0\n", "- just\n- a list\n"],
    )
    def test_invalid(self, tmp_path, text):
        with pytest.raises(ValueError):
            AppConfig.load(_write(tmp_path, text), environ={})

    def test_ensure_runtime_dirs(self, tmp_path):
        config = AppConfig(state_db=tmp_path / "nested" / "state.sqlite")

        config.ensure_runtime_dirs()

        assert (tmp_path / "nested").is_dir()
