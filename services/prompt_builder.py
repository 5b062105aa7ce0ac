"""Prompt text for the upstream generation call."""

from models import GenerationMode, UsedLimits

_START_TEMPLATE = """You are an expert teacher. Explain the concept "{concept}" to this reader: {target}.

Write a complete, well structured explanation in plain prose. Keep the whole answer under {max_chars} characters.
If you run out of room before finishing, stop at the end of a sentence and write exactly "{marker}" on its own final line."""

_CONTINUE_TEMPLATE = """You are an expert teacher. You were explaining the concept "{concept}" to this reader: {target}.

This is the text written so far:
<<<
{prior_text}
>>>

Continue exactly where the text stops. Do not repeat anything already written and do not restart the explanation.
Keep this continuation under {max_chars} characters.
If you run out of room again, stop at the end of a sentence and write exactly "{marker}" on its own final line."""


def build_prompt(
    concept: str,
    target_description: str,
    mode: GenerationMode,
    prior_text: str,
    limits: UsedLimits,
    marker: str,
) -> str:
    """Render the prompt for a start or continue request."""
    if mode is GenerationMode.CONTINUE:
        return _CONTINUE_TEMPLATE.format(
            concept=concept,
            target=target_description,
            prior_text=prior_text,
            max_chars=limits.max_chars,
            marker=marker,
        )
    return _START_TEMPLATE.format(
        concept=concept,
        target=target_description,
        max_chars=limits.max_chars,
        marker=marker,
    )
