"""Тесты HTTP-клиентов Todoist и Notion с подменённой сессией."""
from unittest.mock import Mock

import pytest
import requests

from todoist_notion_sync.clients import NotionClient, TodoistClient
from todoist_notion_sync.config import NotionCredentials, TodoistCredentials
from todoist_notion_sync.errors import (
    AuthError,
    BackendAPIError,
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)


def _response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.text = "" if payload is None else str(payload)
    return response


@pytest.fixture
def session():
    mock_session = Mock()
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def todoist(session):
    return TodoistClient(TodoistCredentials(token="secret"), session=session, timeout=5)


@pytest.fixture
def notion(session):
    return NotionClient(NotionCredentials(token="secret", database_id="db1"), session=session)


class TestHttpErrors:
    @pytest.mark.parametrize(
        "status, error",
        [
            (401, AuthError),
            (403, AuthError),
            (408, TransientError),
            (429, TransientError),
            (502, TransientError),
            (409, ConflictError),
            (412, ConflictError),
            (404, NotFoundError),
            (400, ValidationError),
            (422, ValidationError),
            (418, BackendAPIError),
        ],
    )
    def test_status_mapping(self, todoist, session, status, error):
        session.request.return_value = _response(status, {"error": "x"})

        with pytest.raises(error):
            todoist.get_task("1")

    def test_connection_error_is_transient(self, todoist, session):
        session.request.side_effect = requests.ConnectionError("reset")

        with pytest.raises(TransientError):
            todoist.get_task("1")

    def test_missing_token_fails_before_request(self, session):
        client = TodoistClient(TodoistCredentials(token=""), session=session)

        with pytest.raises(AuthError):
            client.get_task("1")
        session.request.assert_not_called()

    def test_headers(self, todoist, session):
        assert session.headers["Authorization"] == "Bearer secret"
        assert session.headers["User-Agent"].startswith("todoist-notion-sync/")


class TestTodoistClient:
    def test_iter_tasks_follows_cursor(self, todoist, session):
        session.request.side_effect = [
            _response(payload={"results": [{"id": "1"}], "next_cursor": "c2"}),
            _response(payload={"results": [{"id": "2"}], "next_cursor": None}),
        ]

        items = list(todoist.iter_tasks(project_id="p1", page_size=50))

        assert [item["id"] for item in items] == ["1", "2"]
        second_call = session.request.call_args_list[1]
        assert second_call.args == ("GET", "https://api.todoist.com/api/v1/tasks")
        assert second_call.kwargs["params"] == {"limit": 50, "project_id": "p1", "cursor": "c2"}
        assert second_call.kwargs["timeout"] == 5

    def test_update_and_close(self, todoist, session):
        session.request.return_value = _response(payload={"id": "1"})

        todoist.update_task("1", {"content": "Новое"})
        todoist.close_task("1")

        calls = [(call.args[0], call.args[1]) for call in session.request.call_args_list]
        assert calls == [
            ("POST", "https://api.todoist.com/api/v1/tasks/1"),
            ("POST", "https://api.todoist.com/api/v1/tasks/1/close"),
        ]

    def test_projects_by_name(self, todoist, session):
        session.request.return_value = _response(
            payload={"results": [{"id": 10, "name": "Inbox"}, {"id": 11, "name": "Работа"}]}
        )

        assert todoist.projects_by_name() == {"Inbox": "10", "Работа": "11"}


class TestNotionClient:
    def test_version_header(self, notion, session):
        assert session.headers["Notion-Version"] == "2022-06-28"

    def test_iter_pages_paginates(self, notion, session):
        session.request.side_effect = [
            _response(payload={"results": [{"id": "a"}], "has_more": True, "next_cursor": "n1"}),
            _response(payload={"results": [{"id": "b"}], "has_more": False, "next_cursor": None}),
        ]

        pages = list(notion.iter_pages(page_size=10, filter={"property": "Done", "checkbox": {"equals": False}}))

        assert [page["id"] for page in pages] == ["a", "b"]
        second_call = session.request.call_args_list[1]
        assert second_call.args == ("POST", "https://api.notion.com/v1/databases/db1/query")
        assert second_call.kwargs["json"]["start_cursor"] == "n1"
        assert second_call.kwargs["json"]["filter"] == {"property": "Done", "checkbox": {"equals": False}}

    def test_create_page_targets_database(self, notion, session):
        session.request.return_value = _response(payload={"id": "p1"})

        notion.create_page({"Name": {"title": []}})

        assert session.request.call_args.kwargs["json"]["parent"] == {"database_id": "db1"}

    def test_archive(self, notion, session):
        session.request.return_value = _response(payload={"id": "p1", "archived": True})

        notion.archive_page("p1")

        assert session.request.call_args.args == ("PATCH", "https://api.notion.com/v1/pages/p1")
        assert session.request.call_args.kwargs["json"] == {"archived": True}
