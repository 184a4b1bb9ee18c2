"""Turn platform text into IRC-sized lines (no CR/LF, <= max_bytes each)."""

from __future__ import annotations

# 512 bytes per IRC line minus "PRIVMSG #channel :" and prefix overhead
DEFAULT_MAX_BYTES = 450


def _utf8_prefix(data: bytes, limit: int) -> bytes:
    """Longest prefix of data within limit bytes that ends on a character boundary."""
    cut = data[:limit]
    while cut:
        try:
            cut.decode("utf-8")
            return cut
        except UnicodeDecodeError:
            cut = cut[:-1]
    return data[:1]


def _split_line(line: str, max_bytes: int) -> list[str]:
    encoded = line.encode("utf-8", errors="replace")
    chunks: list[str] = []
    while len(encoded) > max_bytes:
        head = _utf8_prefix(encoded, max_bytes)
        # Prefer breaking after a space in the back half of the chunk
        space = head.rfind(b" ")
        if space > max_bytes // 2:
            head = head[: space + 1]
        chunk = head.decode("utf-8", errors="replace").rstrip(" ")
        if chunk.strip():
            chunks.append(chunk)
        encoded = encoded[len(head) :]
    tail = encoded.decode("utf-8", errors="replace")
    if tail.strip():
        chunks.append(tail)
    return chunks


def split_irc_lines(text: str, max_bytes: int = DEFAULT_MAX_BYTES) -> list[str]:
    """Split text on newlines, drop blank lines, then split long lines at word boundaries."""
    lines: list[str] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        lines.extend(_split_line(line, max_bytes))
    return lines
