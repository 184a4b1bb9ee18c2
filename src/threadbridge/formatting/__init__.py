"""Plain-text conversion between platform items and IRC lines."""

from threadbridge.formatting.html_text import html_to_text
from threadbridge.formatting.irc_lines import split_irc_lines

__all__ = ["html_to_text", "split_irc_lines"]
