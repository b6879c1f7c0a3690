"""Zephyr framing (TinyLlama chat)."""

from .base import ChatTemplate, register_template

ZEPHYR = ChatTemplate(
    name="zephyr",
    description="<|system|> / <|user|> / <|assistant|> markers (TinyLlama, Zephyr)",
    system="<s><|system|>\n{system}",
    prompt="\n<|user|>\n{user}\n<|assistant|>\n",
    exchange="\n<|user|>\n{user}\n<|assistant|>\n{assistant}",
    stop_strings=["<|user|>"],
)

register_template(ZEPHYR)
