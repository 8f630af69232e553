from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class EditableWork:
    """The creative work a chat session edits: code bodies plus metadata."""

    html: str = ""
    css: str = ""
    javascript: str = ""
    title: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    chat_history: list[dict[str, Any]] = field(default_factory=list)
    is_dirty: bool = False

    def mark_dirty(self) -> None:
        self.is_dirty = True

    @property
    def has_code(self) -> bool:
        return bool(self.html or self.css or self.javascript)

    @property
    def has_metadata(self) -> bool:
        return bool(self.title or self.description or self.tags)


class ToolName(str, Enum):
    UPDATE_METADATA = "update_metadata"
    EDIT_HTML = "edit_html"
    EDIT_CSS = "edit_css"
    EDIT_JAVASCRIPT = "edit_javascript"


_CODE_FIELDS: dict[ToolName, tuple[str, str]] = {
    ToolName.EDIT_HTML: ("html", "HTML"),
    ToolName.EDIT_CSS: ("css", "CSS"),
    ToolName.EDIT_JAVASCRIPT: ("javascript", "JavaScript"),
}


def _content_tool(name: str, description: str, content_description: str) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": {
                    "content": {"type": "string", "description": content_description},
                },
                "required": ["content"],
            },
        },
    }


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": ToolName.UPDATE_METADATA.value,
            "description": (
                "Update the work's metadata (title, description, tags). "
                "Use when user wants to name or describe their work."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Work title, concise and descriptive"},
                    "description": {"type": "string", "description": "Brief description of what the work does"},
                    "tags": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Tags for discovery (lowercase, no #)",
                    },
                },
            },
        },
    },
    _content_tool(
        ToolName.EDIT_HTML.value,
        "Replace the entire HTML content. Use for structure and content. "
        "Do NOT include <html>, <head>, or <body> tags.",
        "The complete HTML content",
    ),
    _content_tool(
        ToolName.EDIT_CSS.value,
        "Replace the entire CSS content. Use for styling, animations, and visual effects.",
        "The complete CSS content",
    ),
    _content_tool(
        ToolName.EDIT_JAVASCRIPT.value,
        "Replace the entire JavaScript content. Use for interactivity and dynamic behavior.",
        "The complete JavaScript content",
    ),
]


def _result(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False)


def _error(message: str) -> str:
    return _result({"error": message})


class ToolExecutor:
    """Applies completed tool calls to an :class:`EditableWork`.

    ``execute`` never raises for bad input: unknown tools, unparsable
    arguments and missing fields all come back as ``{"error": ...}`` JSON so
    the model can read the failure on its next turn.
    """

    def __init__(self, work: EditableWork | None = None) -> None:
        self.work = work

    def execute(self, name: str, arguments: str) -> str:
        try:
            tool = ToolName(name)
        except ValueError:
            logger.warning("tool.unknown name=%s", name)
            return _error(f"Unknown tool: {name}")

        try:
            args = json.loads(arguments)
        except json.JSONDecodeError:
            return _error("Invalid arguments")
        if not isinstance(args, dict):
            return _error("Invalid arguments")

        if self.work is None:
            return _error("Work editor not available")
        if tool is ToolName.UPDATE_METADATA:
            return self._update_metadata(self.work, args)
        return self._edit_code(self.work, tool, args)

    def _edit_code(self, work: EditableWork, tool: ToolName, args: dict[str, Any]) -> str:
        content = args.get("content")
        if not isinstance(content, str):
            return _error("Missing content parameter")
        attribute, type_name = _CODE_FIELDS[tool]
        setattr(work, attribute, content)
        work.mark_dirty()
        return _result(
            {
                "success": True,
                "type": type_name,
                "stats": {"characters": len(content), "lines": content.count("\n") + 1},
            }
        )

    def _update_metadata(self, work: EditableWork, args: dict[str, Any]) -> str:
        updated: list[str] = []
        title = args.get("title")
        if isinstance(title, str):
            work.title = title
            updated.append("title")
        description = args.get("description")
        if isinstance(description, str):
            work.description = description
            updated.append("description")
        tags = args.get("tags")
        if isinstance(tags, list) and all(isinstance(tag, str) for tag in tags):
            work.tags = list(tags)
            updated.append("tags")

        if not updated:
            return _result({"success": False, "message": "No fields to update"})

        work.mark_dirty()
        return _result(
            {
                "success": True,
                "updated": updated,
                "current": {
                    "title": work.title,
                    "description": work.description,
                    "tags": list(work.tags),
                },
            }
        )
