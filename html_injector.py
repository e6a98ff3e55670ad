"""
html_injector.py
================
Appends the reload client <script> to the <body> of an HTML document.
"""

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

CLIENT_SCRIPT_PATH = "/tinyreload.js"


class InjectionError(Exception):
    """The document could not be parsed or re-serialised."""


def inject_script(html: bytes, src: str = CLIENT_SCRIPT_PATH) -> bytes:
    """Return ``html`` with ``<script src=src>`` as the last child of <body>.

    Documents without a <body>, or that already load ``src``, come back
    untouched. Output is UTF-8.
    """
    try:
        soup = BeautifulSoup(html, "html.parser")
    except (ParserRejectedMarkup, UnicodeError) as exc:
        raise InjectionError(f"could not parse document: {exc}") from exc

    body = soup.body
    if body is None:
        return html
    if soup.find("script", src=src) is not None:
        return html

    body.append(soup.new_tag("script", src=src))

    try:
        return soup.encode("utf-8")
    except (ValueError, UnicodeError) as exc:
        raise InjectionError(f"could not serialise document: {exc}") from exc
