from __future__ import annotations

import base64
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path, PurePath

from .constants import RULES_DIR
from .host import TaskHost
from .models.agent_profile import AgentProfile
from .models.messages import ContextFile, ContextMessage, ImagePart, MessageRole

logger = logging.getLogger(__name__)

REPO_MAP_ACK = "Ok, I will use the repository map as a reference."
IMAGES_ACK = "I can see the provided images and will use them for reference."
WORKING_FILES_ACK = "OK, I have noted the files in the context."

_READ_ONLY_INTRO_AIDER = (
    "The following files are already part of the Aider context as READ-ONLY reference material. "
    "You can analyze and reference their content, but you must NOT modify, edit, or suggest changes to these files. "
    "Use them only for understanding context and making informed decisions about other files:\n\n"
)
_READ_ONLY_INTRO = (
    "The following files are provided as READ-ONLY reference material. "
    "You can analyze and reference their content, but you must NOT modify, edit, or suggest changes to these files. "
    "Use them only for understanding context and making informed decisions:\n\n"
)
_READ_ONLY_ACK = "Understood. I will use the provided files as read-only references and will not attempt to modify their content."

_EDITABLE_INTRO_AIDER = (
    "The following files are available for editing and modification. "
    "These files are already loaded in the Aider context, so you can directly use Aider tools to modify them "
    "without needing to add them to the context first. The content shown below is current and up-to-date:\n\n"
)
_EDITABLE_INTRO = (
    "The following files are available for editing and modification. "
    "The content shown below is current and up-to-date, so you can reference it directly without needing to read "
    "the files again. You may suggest changes or modifications to these files:\n\n"
)
_EDITABLE_ACK_AIDER = (
    "Acknowledged. These files are already part of the Aider context and are available for direct editing "
    "using Aider tools. I do not need to re-add them."
)
_EDITABLE_ACK = (
    "Understood. The content of these files is current, and I will refer to them as editable files "
    "without needing to read them again."
)


@dataclass(frozen=True, slots=True)
class _FileContents:
    texts: list[str]
    images: list[ImagePart]


def _user(content: str | list[str | ImagePart]) -> ContextMessage:
    return ContextMessage(role=MessageRole.USER, content=content)


def _assistant(content: str) -> ContextMessage:
    return ContextMessage(role=MessageRole.ASSISTANT, content=content)


def is_rules_file(path: str) -> bool:
    rules = PurePath(os.path.normpath(RULES_DIR))
    candidate = PurePath(os.path.normpath(path))
    return candidate == rules or rules in candidate.parents


def number_lines(text: str) -> str:
    return "\n".join(f"{i} | {line}" for i, line in enumerate(text.split("\n"), start=1))


def render_text_file(display_path: str, text: str) -> str:
    return (
        f"<file>\n  <path>{display_path}</path>\n"
        f"  <content-with-line-numbers>\n{number_lines(text)}</content-with-line-numbers>\n</file>"
    )


class MessagePreparer:
    """
    Builds the message list sent ahead of the conversation history.

    Order: repository map exchange, then either inlined context files (read-only group first,
    editable group second, images last) or a plain working-files list, then the prior history.
    """

    def __init__(self, *, max_file_bytes: int = 2_000_000) -> None:
        self._max_file_bytes = max_file_bytes

    def prepare(
        self,
        *,
        host: TaskHost,
        profile: AgentProfile,
        context_messages: list[ContextMessage],
        context_files: list[ContextFile],
    ) -> list[ContextMessage]:
        messages: list[ContextMessage] = []

        if profile.include_repo_map:
            repo_map = host.get_repo_map()
            if repo_map:
                messages.append(_user(repo_map))
                messages.append(_assistant(REPO_MAP_ACK))

        if profile.include_context_files:
            messages.extend(self.context_files_messages(host.project_dir, profile, context_files))
        else:
            messages.extend(self.working_files_messages(context_files))

        messages.extend(context_messages)
        return messages

    def context_files_messages(
        self, project_dir: Path | None, profile: AgentProfile, context_files: list[ContextFile]
    ) -> list[ContextMessage]:
        files = [f for f in context_files if not is_rules_file(f.path)]
        if not files:
            return []

        messages: list[ContextMessage] = []
        images: list[ImagePart] = []

        read_only = [f for f in files if f.read_only]
        editable = [f for f in files if not f.read_only]

        if read_only:
            contents = self._load(project_dir, read_only)
            if contents.texts:
                intro = _READ_ONLY_INTRO_AIDER if profile.use_aider_tools else _READ_ONLY_INTRO
                messages.append(_user(intro + "\n\n".join(contents.texts)))
                messages.append(_assistant(_READ_ONLY_ACK))
            images.extend(contents.images)

        if editable:
            contents = self._load(project_dir, editable)
            if contents.texts:
                intro = _EDITABLE_INTRO_AIDER if profile.use_aider_tools else _EDITABLE_INTRO
                messages.append(_user(intro + "\n\n".join(contents.texts)))
                messages.append(_assistant(_EDITABLE_ACK_AIDER if profile.use_aider_tools else _EDITABLE_ACK))
            images.extend(contents.images)

        if images:
            messages.append(_user(list(images)))
            messages.append(_assistant(IMAGES_ACK))
        return messages

    def working_files_messages(self, context_files: list[ContextFile]) -> list[ContextMessage]:
        if not context_files:
            return []
        file_list = "\n".join(f"- {f.path}" for f in context_files)
        return [
            _user(f"The following files are currently in the working context:\n\n{file_list}"),
            _assistant(WORKING_FILES_ACK),
        ]

    def _load(self, project_dir: Path | None, files: list[ContextFile]) -> _FileContents:
        texts: list[str] = []
        images: list[ImagePart] = []
        for file in files:
            path = Path(file.path)
            if not path.is_absolute() and project_dir is not None:
                path = project_dir / path
            try:
                data = path.read_bytes()
            except OSError as e:
                logger.error("Error reading context file %s: %s", file.path, e)
                continue
            if len(data) > self._max_file_bytes:
                logger.warning("Skipping context file %s (%d bytes)", file.path, len(data))
                continue

            media_type, _ = mimetypes.guess_type(path.name)
            if media_type is not None and media_type.startswith("image/"):
                images.append(ImagePart(media_type=media_type, data_b64=base64.b64encode(data).decode("ascii")))
                continue
            if b"\x00" in data[:8192]:
                logger.debug("Skipping non-image binary file: %s", file.path)
                continue

            texts.append(render_text_file(_display_path(project_dir, file.path), data.decode("utf-8", errors="replace")))
        return _FileContents(texts=texts, images=images)


def _display_path(project_dir: Path | None, raw: str) -> str:
    path = Path(raw)
    if project_dir is None or not path.is_absolute():
        return raw
    return os.path.relpath(path, project_dir)


def estimate_tokens(text: str) -> int:
    """Rough token count (4 bytes per token)."""
    return len(text.encode("utf-8")) // 4
