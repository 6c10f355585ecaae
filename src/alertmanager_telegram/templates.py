"""Template rendering for alert, silence and alert group messages.

Templates are Jinja2 files read from disk on every render, so edits take
effect without restarting the bot. Output is autoescaped because messages
are sent with Telegram's HTML parse mode.

Template context:
    data: The alerts, silences or alert group being rendered.
    kind: ``alerts``, ``silences`` or ``alert_group``.
    upper, lower, kind_of, format_date: Helper functions, also usable as
        filters (``{{ alert.starts_at | format_date }}``).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

import jinja2

from alertmanager_telegram.errors import TemplateExecError, TemplateLoadError
from alertmanager_telegram.models import RenderView, kind_of, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TIME_FORMAT = "%d/%m/%Y %H:%M:%S"
DEFAULT_TIME_ZONE = "UTC"


def _upper(value: Any) -> str:
    return str(value).upper()


def _lower(value: Any) -> str:
    return str(value).lower()


class TemplateRenderer:
    """Renders RenderViews through user supplied template files."""

    def __init__(
        self,
        *,
        time_zone: str = DEFAULT_TIME_ZONE,
        time_format: str = DEFAULT_TIME_FORMAT,
    ) -> None:
        """Initialize the renderer.

        Args:
            time_zone: IANA time zone used by ``format_date``.
            time_format: strftime pattern used by ``format_date``.
        """
        self.time_zone = ZoneInfo(time_zone)
        self.time_format = time_format

        self._env = jinja2.Environment(
            autoescape=True,
            undefined=jinja2.StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
        helpers = {
            "upper": _upper,
            "lower": _lower,
            "kind_of": kind_of,
            "format_date": self.format_date,
        }
        self._env.globals.update(helpers)
        self._env.filters.update(helpers)

    def format_date(self, value: Any) -> str:
        """Format a timestamp in the configured time zone.

        Accepts datetimes and RFC 3339 strings; naive datetimes are taken as
        UTC. ``None`` renders as an empty string.
        """
        moment = value if isinstance(value, datetime) else parse_timestamp(value)
        if moment is None:
            return ""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return moment.astimezone(self.time_zone).strftime(self.time_format)

    def _load(self, template_path: str | Path) -> jinja2.Template:
        try:
            source = Path(template_path).read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateLoadError(f"cannot read template {template_path}: {e}") from e
        try:
            return self._env.from_string(source)
        except jinja2.TemplateSyntaxError as e:
            raise TemplateLoadError(
                f"cannot parse template {template_path} (line {e.lineno}): {e.message}"
            ) from e

    def render(self, view: RenderView, template_path: str | Path) -> str:
        """Render a view through the template at ``template_path``.

        Raises:
            TemplateLoadError: If the template cannot be read or compiled.
            TemplateExecError: If rendering fails, e.g. on an absent field.
        """
        template = self._load(template_path)
        try:
            text = template.render(data=view.data, kind=view.kind)
        except Exception as e:
            raise TemplateExecError(f"cannot execute template {template_path}: {e}") from e

        logger.debug("Rendered %s with %s (%d chars)", view.kind, template_path, len(text))
        return text
