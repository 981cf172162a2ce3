"""
Utility functions for converting model replies (markdown) to Matrix message bodies.
"""
import re
from typing import Dict

import markdown


class MatrixMarkdownFormatter:
    """Converts markdown to the plain/HTML body pair a Matrix m.text event carries."""

    def __init__(self):
        self.md = markdown.Markdown(
            extensions=["fenced_code", "tables", "nl2br", "sane_lists"]
        )

    def convert(self, markdown_text: str) -> Dict[str, str]:
        """Return the plain `body` and HTML `formatted_body` for one reply part."""
        # Parser keeps state between calls
        self.md.reset()
        html_content = self.md.convert(markdown_text)
        plain_text = self.markdown_to_plain(markdown_text)
        return {"plain": plain_text, "html": html_content}

    def markdown_to_plain(self, markdown_text: str) -> str:
        """Strip markdown syntax, keeping the text a reader would see."""
        # Keep fenced code contents, drop the fences
        text = re.sub(r"```[^\n]*\n([\s\S]*?)```", r"\1", markdown_text)
        text = re.sub(r"`([^`]+)`", r"\1", text)

        # Links keep their text
        text = re.sub(r"\[([^\]]+)\]\([^\)]+\)", r"\1", text)

        # Bold/italic
        text = re.sub(r"\*\*([^\*]+)\*\*", r"\1", text)
        text = re.sub(r"\*([^\*\n]+)\*", r"\1", text)
        text = re.sub(r"__([^_]+)__", r"\1", text)

        # Headers
        text = re.sub(r"^#+\s*", "", text, flags=re.MULTILINE)

        # Bullets become a plain dash so list structure survives
        text = re.sub(r"^(\s*)[*+]\s+", r"\1- ", text, flags=re.MULTILINE)

        # Block quotes
        text = re.sub(r"^\s*>\s?", "", text, flags=re.MULTILINE)

        text = re.sub(r"\n\s*\n", "\n\n", text)

        return text.strip()


_formatter = MatrixMarkdownFormatter()


def format_for_matrix(content: str) -> Dict[str, str]:
    """Plain and HTML bodies for a Matrix m.text event."""
    return _formatter.convert(content)
