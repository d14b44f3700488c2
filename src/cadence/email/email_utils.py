from __future__ import annotations

import json
import re

from bs4 import BeautifulSoup

from ..infra.serialization import to_json_safe

_HTML_HINT_RE = re.compile(r"<\s*[a-zA-Z!/][^>]*>")

_BLOCK_TAGS = [
    "p", "div", "li", "tr", "table", "ul", "ol", "blockquote", "pre",
    "h1", "h2", "h3", "h4", "h5", "h6", "section", "article", "header", "footer",
]


def safe_json(obj) -> str:
    try:
        return json.dumps(to_json_safe(obj), default=str)
    except Exception:
        return "<unserializable>"


def looks_like_html(text: str) -> bool:
    return bool(text and _HTML_HINT_RE.search(text))


def html_to_plaintext(body: str) -> str:
    """
    Reduce rich text to plain text for transport. Lossy and one-way:
    block elements and <br> become line breaks, no word wrapping.
    Bodies that are already plain text are returned unchanged.
    """
    if not body:
        return ""
    if not looks_like_html(body):
        return body

    soup = BeautifulSoup(body, "html.parser")
    for tag in soup(["script", "style", "head", "title", "noscript"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.insert_after("\n")
    for li in soup.find_all("li"):
        li.insert(0, "* ")

    text = soup.get_text()
    lines = [re.sub(r"[ \t\xa0]+", " ", line).strip() for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
