"""``%ai`` magic commands.

The command surface is small and closed::

    %ai                 help
    %ai help            help
    %ai model           current model + catalog
    %ai models          same as above
    %ai model <name>    switch model now

Anything else is not a magic command and is sent to the model as a prompt.
"""

from __future__ import annotations

import logging
import re

from chatkernel.cognition.models import MAX_LISTED_MODELS
from chatkernel.cognition.session import ModelSessionManager

logger = logging.getLogger(__name__)

_HELP_RE = re.compile(r"^%ai(?:\s+help)?$")
_LIST_RE = re.compile(r"^%ai\s+models?$")
_SWITCH_RE = re.compile(r"^%ai\s+model\s+(\S+)$")

USAGE_HINT = 'Use "%ai model <name>" to switch models.'

HELP_TEXT = "\n".join([
    "AI kernel magic commands:",
    "  %ai model           Show the current model and the available models",
    "  %ai model <name>    Switch to another model",
    "  %ai help            Show this help",
    "",
    "Any other cell is sent to the model as a prompt.",
])


class MagicInterpreter:
    """Recognise and run ``%ai`` commands against a model session."""

    def __init__(self, session: ModelSessionManager) -> None:
        self._session = session

    async def interpret(self, code: str) -> str | None:
        """Return the command output, or ``None`` when *code* is not a magic.

        Raises:
            InvalidModel: ``%ai model <name>`` named an unknown model.
        """
        text = code.strip()
        if not text.startswith("%ai"):
            return None

        if _HELP_RE.match(text):
            return HELP_TEXT

        if _LIST_RE.match(text):
            return self.describe_models()

        match = _SWITCH_RE.match(text)
        if match:
            name = match.group(1)
            logger.debug("Magic model switch requested: %s", name)
            return await self._session.set_model(name)

        return None

    def describe_models(self) -> str:
        """Current model, the first catalog entries, and a usage hint."""
        lines: list[str] = []
        current = self._session.get_model_name()
        if current is not None:
            lines.append(f"Current model: {current}")
        else:
            default = self._session.resolve_default_model()
            lines.append(f"Current model: not yet initialized (default: {default})")

        catalog = self._session.catalog
        lines.append("")
        lines.append("Available models:")
        for name in catalog[:MAX_LISTED_MODELS]:
            marker = " *" if name == current else ""
            lines.append(f"  - {name}{marker}")
        if len(catalog) > MAX_LISTED_MODELS:
            lines.append(f"  ... ({len(catalog) - MAX_LISTED_MODELS} more)")

        lines.append("")
        lines.append(USAGE_HINT)
        return "\n".join(lines)
