from __future__ import annotations

import json

import pytest

from src.chatproxy.client.tools import TOOL_DEFINITIONS, EditableWork, ToolExecutor, ToolName


def _run(executor: ToolExecutor, name: str, arguments: object) -> dict[str, object]:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return json.loads(executor.execute(name, raw))


@pytest.mark.parametrize(
    ("tool", "attribute", "type_name"),
    [
        (ToolName.EDIT_HTML, "html", "HTML"),
        (ToolName.EDIT_CSS, "css", "CSS"),
        (ToolName.EDIT_JAVASCRIPT, "javascript", "JavaScript"),
    ],
)
def test_code_edits_replace_content(tool: ToolName, attribute: str, type_name: str) -> None:
    work = EditableWork()
    content = "line one\nline two\nline three"

    result = _run(ToolExecutor(work), tool.value, {"content": content})

    assert result == {
        "success": True,
        "type": type_name,
        "stats": {"characters": len(content), "lines": 3},
    }
    assert getattr(work, attribute) == content
    assert work.is_dirty


def test_update_metadata_reports_changed_fields() -> None:
    work = EditableWork(title="Old", description="keep me")

    result = _run(ToolExecutor(work), "update_metadata", {"title": "A", "tags": ["css", "art"]})

    assert result == {
        "success": True,
        "updated": ["title", "tags"],
        "current": {"title": "A", "description": "keep me", "tags": ["css", "art"]},
    }
    assert work.is_dirty


def test_update_metadata_without_fields_leaves_work_clean() -> None:
    work = EditableWork()

    result = _run(ToolExecutor(work), "update_metadata", {})

    assert result == {"success": False, "message": "No fields to update"}
    assert not work.is_dirty


def test_errors_are_returned_as_json() -> None:
    work = EditableWork()
    executor = ToolExecutor(work)

    assert _run(executor, "delete_everything", {}) == {"error": "Unknown tool: delete_everything"}
    assert _run(executor, "edit_html", '{"content": ') == {"error": "Invalid arguments"}
    assert _run(executor, "edit_html", "[1]") == {"error": "Invalid arguments"}
    assert _run(executor, "edit_css", {"css": "body{}"}) == {"error": "Missing content parameter"}
    assert not work.is_dirty


def test_executor_without_work() -> None:
    assert _run(ToolExecutor(), "edit_html", {"content": "<p></p>"}) == {
        "error": "Work editor not available"
    }


def test_tool_catalog_matches_executor() -> None:
    names = {definition["function"]["name"] for definition in TOOL_DEFINITIONS}

    assert names == {tool.value for tool in ToolName}
    for definition in TOOL_DEFINITIONS:
        assert definition["type"] == "function"
        assert definition["function"]["parameters"]["type"] == "object"


@pytest.mark.parametrize("arguments", ["", "   "])
def test_blank_arguments_are_invalid(arguments: str) -> None:
    work = EditableWork(title="kept")

    assert _run(ToolExecutor(work), "update_metadata", arguments) == {"error": "Invalid arguments"}
    assert work.title == "kept"
    assert not work.is_dirty
