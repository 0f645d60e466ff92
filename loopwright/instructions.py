"""Prompt templates the agent sends to the model.

Each template is a Markdown file named in ``TEMPLATES``. A file in the
personal directory (``~/.loopwright/instructions/``) replaces the packaged
copy of the same name, so a user can reword one prompt without forking the
rest. ``LOOPWRIGHT_INSTRUCTIONS_DIR`` swaps out the packaged set as a whole.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from loopwright.exceptions import ConfigurationError


TEMPLATES = (
    "init_prompt.md",
    "next_prompt.md",
    "response_format.md",
    "memory_context.md",
    "tools_header.md",
    "unavailable_tool_reminder.md",
    "json_extraction.md",
)

_PERSONAL_DIR = Path("~/.loopwright/instructions").expanduser()


class _KeepUnknown(dict[str, str]):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Resolve agent prompt templates and fill in their placeholders."""

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        if base_dir is None:
            base_dir = os.getenv("LOOPWRIGHT_INSTRUCTIONS_DIR") or Path(__file__).parent / "instructions"
        self.base_dir = Path(base_dir).expanduser().resolve()
        self.personal_dir = Path(personal_dir or _PERSONAL_DIR).expanduser().resolve()
        self._templates: dict[str, str] = {}

    def search_path(self) -> list[Path]:
        return [self.personal_dir, self.base_dir]

    def locate(self, template_name: str) -> Path | None:
        for directory in self.search_path():
            candidate = directory / template_name
            if candidate.is_file():
                return candidate
        return None

    def verify(self, template_names: Iterable[str] = TEMPLATES) -> None:
        """Fail fast when any of *template_names* resolves to no file."""
        missing = [name for name in template_names if self.locate(name) is None]
        if missing:
            raise self._missing(missing)

    def _missing(self, template_names: list[str]) -> ConfigurationError:
        searched = ", ".join(str(directory) for directory in self.search_path())
        return ConfigurationError(
            f"Missing instruction templates: {', '.join(template_names)} (searched {searched})"
        )

    def load(self, template_name: str) -> str:
        if template_name not in self._templates:
            path = self.locate(template_name)
            if path is None:
                raise self._missing([template_name])
            self._templates[template_name] = path.read_text(encoding="utf-8").strip()
        return self._templates[template_name]

    def render(self, template_name: str, /, **variables: object) -> str:
        """Substitute ``{placeholder}`` fields; unknown ones are kept verbatim."""
        values = _KeepUnknown({key: str(value) for key, value in variables.items()})
        return self.load(template_name).format_map(values)
