from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..constants import (
    TODO_TOOL_CLEAR_ITEMS,
    TODO_TOOL_GET_ITEMS,
    TODO_TOOL_SET_ITEMS,
    TODO_TOOL_UPDATE_ITEM_COMPLETION,
)
from ..ids import now_ts_ms
from .base import BuiltinTool, ToolContext


@dataclass(frozen=True, slots=True)
class TodoItem:
    name: str
    completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "completed": self.completed}


@dataclass(frozen=True, slots=True)
class TodoState:
    initial_user_prompt: str
    items: list[TodoItem]
    updated_at: int | None = None


class TodoStore:
    """
    In-memory checklist for one task.

    The agent keeps one store per task directory, so the list survives across runs of the same
    task but not across processes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = TodoState(initial_user_prompt="", items=[])

    def get(self) -> TodoState:
        with self._lock:
            return self._state

    def set(self, items: list[TodoItem], *, initial_user_prompt: str) -> None:
        with self._lock:
            self._state = TodoState(initial_user_prompt=initial_user_prompt, items=list(items), updated_at=now_ts_ms())

    def update_completion(self, name: str, completed: bool) -> TodoItem:
        with self._lock:
            items = list(self._state.items)
            for i, item in enumerate(items):
                if item.name == name:
                    items[i] = TodoItem(name=item.name, completed=completed)
                    self._state = TodoState(
                        initial_user_prompt=self._state.initial_user_prompt,
                        items=items,
                        updated_at=now_ts_ms(),
                    )
                    return items[i]
        raise KeyError(name)

    def clear(self) -> None:
        with self._lock:
            self._state = TodoState(initial_user_prompt="", items=[], updated_at=now_ts_ms())


def _parse_items(raw_items: Any) -> list[TodoItem]:
    if not isinstance(raw_items, list):
        raise ValueError("Missing or invalid 'items' (expected list).")
    items: list[TodoItem] = []
    seen: set[str] = set()
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValueError("Invalid todo item (expected object).")
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("TodoItem.name must be a non-empty string.")
        name = name.strip()
        if name in seen:
            raise ValueError(f"Duplicate todo item: {name!r}")
        seen.add(name)
        completed = raw.get("completed", False)
        if not isinstance(completed, bool):
            raise ValueError("TodoItem.completed must be a boolean.")
        items.append(TodoItem(name=name, completed=completed))
    return items


@dataclass(frozen=True, slots=True)
class SetTodoItemsTool:
    store: TodoStore
    name: str = TODO_TOOL_SET_ITEMS
    description: str = (
        "Replaces the todo list for the current task.\n"
        "Provide the user's original request and the ordered list of items."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "initialUserPrompt": {"type": "string"},
                "items": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "completed": {"type": "boolean"},
                        },
                        "required": ["name"],
                    },
                },
            },
            "required": ["initialUserPrompt", "items"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        del ctx
        prompt = args.get("initialUserPrompt")
        if not isinstance(prompt, str):
            raise ValueError("Missing or invalid 'initialUserPrompt' (expected string).")
        items = _parse_items(args.get("items"))
        self.store.set(items, initial_user_prompt=prompt)
        return {"ok": True, "message": "Todo items set", "items": len(items)}


@dataclass(frozen=True, slots=True)
class GetTodoItemsTool:
    store: TodoStore
    name: str = TODO_TOOL_GET_ITEMS
    description: str = "Returns the current todo list and the user's original request."
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        del args, ctx
        state = self.store.get()
        if not state.items:
            return {"message": "No todo items found.", "items": []}
        return {
            "initialUserPrompt": state.initial_user_prompt,
            "items": [item.to_dict() for item in state.items],
        }


@dataclass(frozen=True, slots=True)
class UpdateTodoItemCompletionTool:
    store: TodoStore
    name: str = TODO_TOOL_UPDATE_ITEM_COMPLETION
    description: str = "Marks one todo item as completed (or not completed) by name."
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "completed": {"type": "boolean"},
            },
            "required": ["name", "completed"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        del ctx
        name = args.get("name")
        completed = args.get("completed")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Missing or invalid 'name' (expected non-empty string).")
        if not isinstance(completed, bool):
            raise ValueError("Missing or invalid 'completed' (expected boolean).")
        try:
            item = self.store.update_completion(name.strip(), completed)
        except KeyError:
            raise ValueError(f"Todo item {name!r} not found.") from None
        return {"ok": True, "item": item.to_dict()}


@dataclass(frozen=True, slots=True)
class ClearTodoItemsTool:
    store: TodoStore
    name: str = TODO_TOOL_CLEAR_ITEMS
    description: str = "Removes every item from the todo list."
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        del args, ctx
        self.store.clear()
        return {"ok": True, "message": "Todo list cleared"}


def todo_tools(store: TodoStore) -> list[BuiltinTool]:
    return [
        SetTodoItemsTool(store=store),
        GetTodoItemsTool(store=store),
        UpdateTodoItemCompletionTool(store=store),
        ClearTodoItemsTool(store=store),
    ]
