from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..constants import (
    POWER_TOOL_BASH,
    POWER_TOOL_FILE_EDIT,
    POWER_TOOL_FILE_READ,
    POWER_TOOL_FILE_WRITE,
    POWER_TOOL_GLOB,
    POWER_TOOL_GREP,
    POWER_TOOL_GROUP_NAME,
    POWER_TOOL_SEMANTIC_SEARCH,
    tool_id,
)
from .base import BuiltinTool, ToolContext

logger = logging.getLogger(__name__)

_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache", "dist", "build"}
_MAX_OUTPUT_CHARS = 30_000


def _as_non_empty_str(value: Any, *, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing or invalid '{field_name}' (expected non-empty string).")
    return value.strip()


def _resolve_in_project(base_dir: Path, raw: str) -> Path:
    base = base_dir.resolve()
    candidate = Path(raw)
    path = (candidate if candidate.is_absolute() else base / candidate).resolve()
    if path != base and base not in path.parents:
        raise PermissionError(f"Path '{raw}' is outside the project directory.")
    return path


def _relative(base_dir: Path, path: Path) -> str:
    try:
        return path.relative_to(base_dir.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def _elide_tail(s: str, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[: max(0, max_chars - 1)].rstrip() + "…"


def _iter_files(base_dir: Path):
    root = base_dir.resolve()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in _SKIP_DIRS]
        for filename in filenames:
            yield Path(dirpath) / filename


def _read_text(path: Path) -> str | None:
    try:
        data = path.read_bytes()
    except OSError:
        return None
    if b"\x00" in data[:8192]:
        return None
    return data.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class FileReadTool:
    name: str = POWER_TOOL_FILE_READ
    description: str = (
        "Reads a file from the project directory.\n"
        "Optionally prefixes each line with its line number and reads a window of lines."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "filePath": {"type": "string", "description": "Path relative to the project directory."},
                "withLines": {"type": "boolean", "description": "Prefix each line with its number."},
                "lineOffset": {"type": "integer", "description": "First line to read (0-based)."},
                "lineLimit": {"type": "integer", "description": "Maximum number of lines to read."},
            },
            "required": ["filePath"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> str:
        path = _resolve_in_project(ctx.base_dir, _as_non_empty_str(args.get("filePath"), field_name="filePath"))
        if not path.is_file():
            raise FileNotFoundError(f"File '{args.get('filePath')}' does not exist.")
        text = path.read_text(encoding="utf-8", errors="replace")
        lines = text.split("\n")
        offset = max(0, int(args.get("lineOffset") or 0))
        limit = args.get("lineLimit")
        end = offset + int(limit) if isinstance(limit, int) and limit > 0 else len(lines)
        window = lines[offset:end]
        if args.get("withLines"):
            return "\n".join(f"{offset + i + 1} | {line}" for i, line in enumerate(window))
        return "\n".join(window)


@dataclass(frozen=True, slots=True)
class FileWriteTool:
    name: str = POWER_TOOL_FILE_WRITE
    description: str = (
        "Writes content to a file in the project directory.\n"
        "mode: create_only (fail if the file exists), overwrite, or append."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "filePath": {"type": "string"},
                "content": {"type": "string"},
                "mode": {"type": "string", "enum": ["create_only", "overwrite", "append"]},
            },
            "required": ["filePath", "content"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        rel = _as_non_empty_str(args.get("filePath"), field_name="filePath")
        content = args.get("content")
        if not isinstance(content, str):
            raise ValueError("Missing or invalid 'content' (expected string).")
        mode = str(args.get("mode") or "create_only")
        path = _resolve_in_project(ctx.base_dir, rel)

        if mode == "create_only" and path.exists():
            raise FileExistsError(f"File '{rel}' already exists. Use mode 'overwrite' or 'append'.")
        path.parent.mkdir(parents=True, exist_ok=True)
        if mode == "append":
            with path.open("a", encoding="utf-8") as f:
                f.write(content)
        else:
            path.write_text(content, encoding="utf-8")
        return {"ok": True, "path": _relative(ctx.base_dir, path), "mode": mode, "chars": len(content)}


@dataclass(frozen=True, slots=True)
class FileEditTool:
    name: str = POWER_TOOL_FILE_EDIT
    description: str = (
        "Replaces text in a file.\n"
        "The search term is matched literally unless isRegex is true. By default only the first "
        "occurrence is replaced; set replaceAll to replace every occurrence."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "filePath": {"type": "string"},
                "searchTerm": {"type": "string"},
                "replacementText": {"type": "string"},
                "isRegex": {"type": "boolean"},
                "replaceAll": {"type": "boolean"},
            },
            "required": ["filePath", "searchTerm", "replacementText"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        rel = _as_non_empty_str(args.get("filePath"), field_name="filePath")
        search = args.get("searchTerm")
        replacement = args.get("replacementText")
        if not isinstance(search, str) or not search:
            raise ValueError("Missing or invalid 'searchTerm' (expected non-empty string).")
        if not isinstance(replacement, str):
            raise ValueError("Missing or invalid 'replacementText' (expected string).")
        path = _resolve_in_project(ctx.base_dir, rel)
        if not path.is_file():
            raise FileNotFoundError(f"File '{rel}' does not exist.")

        original = path.read_text(encoding="utf-8")
        count = 0 if args.get("replaceAll") else 1
        if args.get("isRegex"):
            updated, replaced = re.subn(search, replacement, original, count=count)
        else:
            replaced = original.count(search) if count == 0 else min(1, original.count(search))
            updated = original.replace(search, replacement, -1 if count == 0 else 1)
        if replaced == 0:
            raise ValueError(f"Search term not found in '{rel}'.")
        path.write_text(updated, encoding="utf-8")
        return {"ok": True, "path": _relative(ctx.base_dir, path), "replacements": replaced}


@dataclass(frozen=True, slots=True)
class GlobTool:
    name: str = POWER_TOOL_GLOB
    description: str = "Lists project files matching a glob pattern (e.g. 'src/**/*.py')."
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "pattern": {"type": "string"},
                "ignore": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["pattern"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> list[str]:
        pattern = _as_non_empty_str(args.get("pattern"), field_name="pattern")
        ignore = [p for p in (args.get("ignore") or []) if isinstance(p, str)]
        base = ctx.base_dir.resolve()

        def _run() -> list[str]:
            out: list[str] = []
            for path in sorted(base.glob(pattern)):
                if not path.is_file() or any(part in _SKIP_DIRS for part in path.relative_to(base).parts):
                    continue
                rel = _relative(base, path)
                if any(fnmatch.fnmatch(rel, p) for p in ignore):
                    continue
                out.append(rel)
            return out

        return await asyncio.to_thread(_run)


@dataclass(frozen=True, slots=True)
class GrepTool:
    name: str = POWER_TOOL_GREP
    description: str = (
        "Searches file contents with a regular expression.\n"
        "filePattern limits the search to files matching a glob; contextLines adds surrounding lines."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "filePattern": {"type": "string"},
                "searchTerm": {"type": "string"},
                "contextLines": {"type": "integer"},
                "caseSensitive": {"type": "boolean"},
                "maxResults": {"type": "integer"},
            },
            "required": ["filePattern", "searchTerm"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> list[dict[str, Any]]:
        file_pattern = _as_non_empty_str(args.get("filePattern"), field_name="filePattern")
        term = _as_non_empty_str(args.get("searchTerm"), field_name="searchTerm")
        context_lines = max(0, int(args.get("contextLines") or 0))
        max_results = max(1, int(args.get("maxResults") or 50))
        try:
            regex = re.compile(term, 0 if args.get("caseSensitive") else re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"Invalid regular expression: {e}") from e
        base = ctx.base_dir.resolve()

        def _run() -> list[dict[str, Any]]:
            matches: list[dict[str, Any]] = []
            for path in _iter_files(base):
                rel = _relative(base, path)
                if not (fnmatch.fnmatch(rel, file_pattern) or fnmatch.fnmatch(path.name, file_pattern)):
                    continue
                text = _read_text(path)
                if text is None:
                    continue
                lines = text.split("\n")
                for i, line in enumerate(lines):
                    if not regex.search(line):
                        continue
                    item: dict[str, Any] = {"filePath": rel, "lineNumber": i + 1, "lineContent": line}
                    if context_lines:
                        lo = max(0, i - context_lines)
                        item["context"] = lines[lo : i + context_lines + 1]
                    matches.append(item)
                    if len(matches) >= max_results:
                        return matches
            return matches

        return await asyncio.to_thread(_run)


@dataclass(frozen=True, slots=True)
class BashTool:
    name: str = POWER_TOOL_BASH
    description: str = (
        "Runs a shell command in the project directory and returns exit code, stdout and stderr.\n"
        "Long-running commands are killed after `timeout` seconds."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "command": {"type": "string"},
                "cwd": {"type": "string", "description": "Working directory relative to the project."},
                "timeout": {"type": "integer", "description": "Timeout in seconds (default 120)."},
            },
            "required": ["command"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        command = _as_non_empty_str(args.get("command"), field_name="command")
        settings = ctx.profile.bash_settings(tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_BASH))
        if settings.denied_pattern and re.search(settings.denied_pattern, command):
            raise PermissionError(f"Command matches the denied pattern '{settings.denied_pattern}'.")

        cwd = _resolve_in_project(ctx.base_dir, str(args.get("cwd") or "."))
        timeout_s = float(args.get("timeout") or 120)
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        communicate = asyncio.create_task(proc.communicate())
        deadline = time.monotonic() + timeout_s
        reason: str | None = None
        while not communicate.done():
            await asyncio.wait({communicate}, timeout=0.1)
            if communicate.done():
                break
            if ctx.cancel.cancelled:
                reason = "aborted"
            elif time.monotonic() > deadline:
                reason = "timeout"
            if reason is not None:
                logger.info("Killing bash command (%s): %s", reason, command)
                proc.kill()
                break
        stdout, stderr = await communicate
        result: dict[str, Any] = {
            "exitCode": proc.returncode,
            "stdout": _elide_tail(stdout.decode("utf-8", errors="replace"), _MAX_OUTPUT_CHARS),
            "stderr": _elide_tail(stderr.decode("utf-8", errors="replace"), _MAX_OUTPUT_CHARS),
        }
        if reason is not None:
            result["killed"] = reason
        return result


_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]+")


def _tokens(text: str) -> Counter[str]:
    out: Counter[str] = Counter()
    for tok in _TOKEN_RE.findall(text):
        lowered = tok.lower()
        out[lowered] += 1
        # split camelCase and snake_case so "getUser" matches "user"
        for part in re.findall(r"[A-Z]?[a-z0-9]+|[A-Z]+(?![a-z])", tok):
            if part.lower() != lowered:
                out[part.lower()] += 1
    return out


@dataclass(frozen=True, slots=True)
class SemanticSearchTool:
    name: str = POWER_TOOL_SEMANTIC_SEARCH
    description: str = (
        "Finds the project files most relevant to a natural-language query.\n"
        "Ranks files by overlap between query terms and file identifiers."
    )
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "maxResults": {"type": "integer"},
                "filePattern": {"type": "string"},
            },
            "required": ["query"],
        }
    )

    async def execute(self, *, args: dict[str, Any], ctx: ToolContext) -> list[dict[str, Any]]:
        query = _as_non_empty_str(args.get("query"), field_name="query")
        max_results = max(1, int(args.get("maxResults") or 10))
        file_pattern = args.get("filePattern") if isinstance(args.get("filePattern"), str) else None
        query_terms = set(_tokens(query))
        if not query_terms:
            return []
        base = ctx.base_dir.resolve()

        def _run() -> list[dict[str, Any]]:
            scored: list[tuple[float, str, int]] = []
            for path in _iter_files(base):
                rel = _relative(base, path)
                if file_pattern and not fnmatch.fnmatch(rel, file_pattern):
                    continue
                text = _read_text(path)
                if not text:
                    continue
                counts = _tokens(rel + "\n" + text)
                hits = [term for term in query_terms if counts.get(term)]
                if not hits:
                    continue
                score = len(hits) / len(query_terms) + sum(min(counts[t], 10) for t in hits) / 100.0
                scored.append((score, rel, len(hits)))
            scored.sort(key=lambda item: (-item[0], item[1]))
            return [
                {"filePath": rel, "score": round(score, 4), "matchedTerms": matched}
                for score, rel, matched in scored[:max_results]
            ]

        return await asyncio.to_thread(_run)


def power_tools() -> list[BuiltinTool]:
    return [
        FileReadTool(),
        FileWriteTool(),
        FileEditTool(),
        GlobTool(),
        GrepTool(),
        BashTool(),
        SemanticSearchTool(),
    ]
