"""Email rendering utilities."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
)


class EmailRenderError(RuntimeError):
    pass


def render_email(kind: str, context: dict[str, Any]) -> tuple[str, str]:
    try:
        template = ENV.get_template(f"{kind}.html")
    except TemplateNotFound as exc:
        raise EmailRenderError(f"No email template for {kind}") from exc
    html = template.render(**context)
    subject = context.get("subject", "ZardoCards")
    return subject, html
