"""Template renderer for legacy project files using Jinja2."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jinja2
import structlog

logger = structlog.get_logger()

# Template directory is relative to this module
TEMPLATES_DIR = Path(__file__).parent / "templates"


class TemplateRenderer:
    """Renders file templates with context.

    Example:
        >>> renderer = TemplateRenderer()
        >>> xml = renderer.render("cprj.xml", name="App.Debug+Board", packages=[])
        >>> "App.Debug+Board" in xml
        True
    """

    def __init__(self, templates_dir: Path | None = None) -> None:
        """Initialize the renderer.

        Args:
            templates_dir: Directory containing templates.
                          Defaults to built-in templates.
        """
        self.templates_dir = templates_dir or TEMPLATES_DIR
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.templates_dir)),
            autoescape=True,  # XML output
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=jinja2.StrictUndefined,
        )

    def render(self, template_name: str, **context: Any) -> str:
        """Render a template with the given context.

        Args:
            template_name: Name of the template (without .j2 extension).
            **context: Variables to pass to the template.

        Returns:
            Rendered content.

        Raises:
            jinja2.TemplateNotFound: If template doesn't exist.
            jinja2.UndefinedError: If required variable is missing.
        """
        log = logger.bind(template=template_name)
        log.debug("Rendering template")

        template = self.env.get_template(f"{template_name}.j2")
        rendered = template.render(**context)

        log.debug("Template rendered", length=len(rendered))
        return rendered
