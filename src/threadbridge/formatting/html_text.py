"""Platform item content arrives as light HTML; IRC wants plain text."""

from __future__ import annotations

from bs4 import BeautifulSoup


def html_to_text(content: str) -> str:
    """Flatten item HTML to text, keeping <br> and block breaks as newlines."""
    if not content or ("<" not in content and "&" not in content):
        return content or ""
    soup = BeautifulSoup(content, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(["p", "div", "li"]):
        block.insert_after("\n")
    text = soup.get_text()
    return "\n".join(line.rstrip() for line in text.splitlines()).strip()
