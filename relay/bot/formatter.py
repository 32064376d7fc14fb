"""Reply formatting for WhatsApp, which renders only a small markup subset."""

import re

HEADER = re.compile(r"^#{1,3}\s+", re.MULTILINE)
BOLD_STARS = re.compile(r"\*\*(.*?)\*\*")
BOLD_UNDERSCORES = re.compile(r"__(.*?)__")
DOUBLE_BACKTICKS = re.compile(r"``(.*?)``")
BACKTICKS = re.compile(r"`(.*?)`")
ANGLE_BRACKETS = re.compile(r"<([^>]*)>")
SQUARE_BRACKETS = re.compile(r"\[([^\]]*)\]")


def format_for_whatsapp(text: object) -> str:
    """Strip markdown WhatsApp would show literally.

    Examples:
        "### Title" -> "Title"
        "**bold** and `code`" -> "bold and code"
        "see [docs]" -> "see docs"

    Length is not enforced here; long replies are split by the chunker.
    """
    formatted = str(text or "").strip()

    formatted = HEADER.sub("", formatted)
    formatted = BOLD_STARS.sub(r"\1", formatted)
    formatted = BOLD_UNDERSCORES.sub(r"\1", formatted)
    formatted = DOUBLE_BACKTICKS.sub(r"\1", formatted)
    formatted = BACKTICKS.sub(r"\1", formatted)
    formatted = ANGLE_BRACKETS.sub(r"\1", formatted)
    formatted = SQUARE_BRACKETS.sub(r"\1", formatted)

    return formatted
