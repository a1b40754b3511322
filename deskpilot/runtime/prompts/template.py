from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping


@dataclass(frozen=True, slots=True)
class PromptTemplateContext:
    now: datetime


_TOKEN_RE = re.compile(r"\{\{\s*([A-Z_]+)(?::([^}]+))?\s*\}\}")


def render_prompt_template(text: str, *, now: datetime | None = None, vars: Mapping[str, str] | None = None) -> str:
    """
    Render lightweight prompt templates.

    Supported tokens:
    - {{TODAY}} or {{TODAY:<strftime>}}
    - any upper-case name passed in `vars` (e.g. {{PROJECT_DIR}})

    Unknown tokens are kept as-is.
    """

    ctx = PromptTemplateContext(now=(now or datetime.now().astimezone()))
    custom_vars: Mapping[str, str] = vars or {}

    def _replace(m: re.Match[str]) -> str:
        name = (m.group(1) or "").strip().upper()
        fmt = m.group(2)

        if name in custom_vars:
            return str(custom_vars.get(name) or "")

        if name == "TODAY":
            d = ctx.now.date()
            if isinstance(fmt, str) and fmt.strip():
                try:
                    return d.strftime(fmt.strip())
                except ValueError:
                    return d.isoformat()
            return d.isoformat()

        return m.group(0)

    return _TOKEN_RE.sub(_replace, text)
