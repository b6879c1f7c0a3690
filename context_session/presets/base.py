"""Template registry: register, lookup, and list chat templates."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ChatTemplate:
    name: str
    description: str
    system: str     # {system}
    prompt: str     # {user}; leaves the assistant turn open
    exchange: str   # {user}, {assistant}; a completed pair for replay
    stop_strings: list[str] = field(default_factory=list)

    def format_system(self, system_prompt: str) -> str:
        return self.system.format(system=system_prompt)

    def format_prompt(self, user: str) -> str:
        return self.prompt.format(user=user)

    def format_exchange(self, user: str, assistant: str) -> str:
        return self.exchange.format(user=user, assistant=assistant)


_TEMPLATES: dict[str, ChatTemplate] = {}


def register_template(template: ChatTemplate) -> None:
    """Register a template by name."""
    _TEMPLATES[template.name] = template


def get_template(name: str) -> ChatTemplate | None:
    """Return a template by name, or None if not found."""
    return _TEMPLATES.get(name)


def list_templates() -> list[ChatTemplate]:
    """Return all registered templates."""
    return list(_TEMPLATES.values())
