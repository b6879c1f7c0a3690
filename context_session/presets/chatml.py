"""ChatML framing (Qwen and most instruction-tuned GGUF models)."""

from .base import ChatTemplate, register_template

CHATML = ChatTemplate(
    name="chatml",
    description="<|im_start|>role ... <|im_end|> blocks (Qwen, Hermes, Yi)",
    system="<|im_start|>system\n{system}<|im_end|>",
    prompt="\n<|im_start|>user\n{user}<|im_end|>\n<|im_start|>assistant\n",
    exchange=(
        "\n<|im_start|>user\n{user}<|im_end|>"
        "\n<|im_start|>assistant\n{assistant}<|im_end|>"
    ),
    stop_strings=["<|im_start|>user"],
)

register_template(CHATML)
