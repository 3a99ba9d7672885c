"""Default prompt templates and ``{{variable}}`` substitution."""

from __future__ import annotations

import re

DEFAULT_QUOTE_TEMPLATE = '{instruction:"{{q}}",output:"{{a}}"}'

DEFAULT_QUOTE_PROMPT = (
    "Your background knowledge:\n"
    '"""\n'
    "{{quote}}\n"
    '"""\n'
    "Conversation rules: \n"
    "1. The background knowledge is up to date; instruction describes a related "
    "question and output is the expected answer or supplement.\n"
    "2. Use the background knowledge to answer the question.\n"
    "3. If the background knowledge cannot answer the question, reply politely "
    "that you do not know.\n"
    'My question is: "{{question}}"'
)

_VARIABLE_RE = re.compile(r"\{\{([A-Za-z0-9_]+)\}\}")


def replace_variables(text: str, variables: dict[str, object]) -> str:
    """Replace ``{{key}}`` placeholders; unknown keys are left intact."""

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    return _VARIABLE_RE.sub(_sub, text)
