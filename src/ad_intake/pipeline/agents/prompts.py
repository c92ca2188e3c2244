"""Prompt text sent to extraction providers."""

from __future__ import annotations

from ad_intake.pipeline.agents.interpretation import FIELD_MAP

_FIELD_LINES = "\n".join(f'- "{short}": {long_name}' for short, long_name in FIELD_MAP.items())

EXTRACTION_PROMPT_TEMPLATE = """\
You receive a chat message that may contain one or more real estate advertisements.

If the message does not advertise any property for sale or rent, answer with the single word: no

Otherwise answer ONLY with a JSON array. Each element describes one advertised property and
uses these short keys (omit a key when the message does not state the value):
{fields}

Do not add commentary or markdown.

Message:
{text}
"""


def build_extraction_prompt(text: str) -> str:
    """Render the extraction prompt for one message."""

    return EXTRACTION_PROMPT_TEMPLATE.format(fields=_FIELD_LINES, text=text.strip())
