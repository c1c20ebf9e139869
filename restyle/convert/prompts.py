"""
Prompt and request construction for chunk rewrites.

Each chunk is sent as a single user message:

    <style prompt>

    <styleguide>
    ...
    </styleguide>

    <input>
    <chunk text>
    </input>

The styleguide block is present only when the style ships one.
"""

from restyle.config import DEFAULT_STYLE_PROMPT, REWRITE_STOP_SEQUENCES, get_sampling_defaults
from restyle.logging_config import debug


def build_rewrite_prompt(chunk_text: str, style_prompt: str | None = None, styleguide: str = '') -> str:
    prompt = style_prompt if style_prompt is not None else DEFAULT_STYLE_PROMPT
    if styleguide:
        prompt += f"\n\n<styleguide>\n{styleguide}\n</styleguide>"
    prompt += f"\n\n<input>\n{chunk_text}\n</input>"
    return prompt


def merge_sampling(overrides: dict | None = None) -> dict:
    """Sampling defaults with non-None overrides applied on top."""
    params = get_sampling_defaults()
    for key, value in (overrides or {}).items():
        if value is not None:
            params[key] = value
    return params


def build_chat_request(chunk_text: str, style_prompt: str | None = None, styleguide: str = '',
                       sampling: dict | None = None) -> dict:
    """
    Body for a streaming /v1/chat/completions request.

    Args:
        chunk_text: The chunk to rewrite.
        style_prompt: Seed prompt of the active style (default prompt when None).
        styleguide: Optional styleguide text.
        sampling: Overrides for temperature, top_k, top_p, min_p,
                  repeat_penalty, max_tokens.
    """
    body = {
        'messages': [
            {'role': 'user', 'content': build_rewrite_prompt(chunk_text, style_prompt, styleguide)},
        ],
    }
    body.update(merge_sampling(sampling))
    body['stop'] = list(REWRITE_STOP_SEQUENCES)
    body['stream'] = True
    debug(f"[CONVERT] Request built: {len(chunk_text)} chars, styleguide={'yes' if styleguide else 'no'}")
    return body
