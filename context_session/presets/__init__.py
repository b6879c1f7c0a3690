"""Chat templates: how system prompts, user turns, and replayed exchanges are framed."""

from .base import ChatTemplate, get_template, list_templates, register_template  # noqa: F401

# Import templates to trigger registration
from . import chatml  # noqa: F401
from . import zephyr  # noqa: F401
