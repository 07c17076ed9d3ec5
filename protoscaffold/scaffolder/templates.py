"""Jinja2 template rendering for service scaffolding.

Provides the TemplateRenderer class which loads Jinja2 templates from the
``protoscaffold/scaffolder/templates/`` directory and renders them with
service-specific context data.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from protoscaffold.errors import GenerationError
from protoscaffold.planner import to_camel, to_lower_camel, to_snake
from protoscaffold.utils import write_text_atomic


# ---------------------------------------------------------------------------
# Template directory discovery
# ---------------------------------------------------------------------------

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders Jinja2 templates for service scaffolding.

    Templates are ``.j2`` files under a configurable template directory,
    rendered with a context dictionary holding the service descriptor, the
    directory plan and the generation request.
    """

    def __init__(self, template_dir: str | Path | None = None) -> None:
        if template_dir is None:
            template_dir = _DEFAULT_TEMPLATE_DIR
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape([]),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["pascal_case"] = to_camel
        self.env.filters["snake_case"] = to_snake
        self.env.filters["camel_case"] = to_lower_camel

    # -- Single template rendering -----------------------------------------

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a single template with the provided context.

        Raises:
            GenerationError: If the template is missing or fails to render.
        """
        try:
            template = self.env.get_template(template_path)
            return template.render(**context)
        except TemplateError as exc:
            raise GenerationError(f"cannot render {template_path}: {exc}") from exc

    # -- File-based rendering (async) --------------------------------------

    async def render_to_file(
        self,
        template_path: str,
        output_path: str | Path,
        context: dict[str, Any],
    ) -> Path:
        """Render a template and write the result to *output_path*.

        Parent directories are created automatically and an existing file is
        overwritten.

        Raises:
            GenerationError: If rendering or writing fails.
        """
        content = self.render(template_path, context)
        out = Path(output_path)
        try:
            await asyncio.to_thread(write_text_atomic, out, content)
        except OSError as exc:
            raise GenerationError(f"cannot write {out}: {exc}") from exc
        return out
