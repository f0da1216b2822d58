"""Task template rendering."""

from typing import Mapping, Optional

INPUT_TEXT_KEY = "input_text"
FILE_CONTENT_KEY = "file_content"


def render_prompt(template: str, values: Mapping[str, Optional[str]]) -> str:
    """
    Replace every `{key}` in `template` with its value.

    Placeholders without a value are left untouched. Missing values (None)
    render as empty strings. Braces that are not placeholders are kept as-is,
    so templates may contain JSON examples.
    """
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace(f"{{{key}}}", value or "")
    return rendered


def render_task_prompt(
    template: str, input_text: Optional[str], file_content: Optional[str] = None
) -> str:
    return render_prompt(template, {INPUT_TEXT_KEY: input_text, FILE_CONTENT_KEY: file_content})
