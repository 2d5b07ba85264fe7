from __future__ import annotations

from habla.contracts import Direction

# Bump when any template text changes; it is reported with every translation.
PROMPT_VERSION = "gemma-turn-v1"

END_OF_TURN = "<end_of_turn>"

_SYSTEM_PROMPTS = {
    Direction.ES_EN: (
        "You are a professional translator. Translate the following Spanish text to English. "
        "Only provide the translation, nothing else."
    ),
    Direction.EN_ES: (
        "You are a professional translator. Translate the following English text to Spanish. "
        "Only provide the translation, nothing else."
    ),
}

_TEMPLATE = (
    "<start_of_turn>system\n{system}\n" + END_OF_TURN + "\n"
    "<start_of_turn>user\n{text}\n" + END_OF_TURN + "\n"
    "<start_of_turn>model\n"
)


def system_prompt(direction: Direction) -> str:
    return _SYSTEM_PROMPTS[direction]


def build_prompt(direction: Direction, text: str) -> str:
    return _TEMPLATE.format(system=system_prompt(direction), text=text.strip())
