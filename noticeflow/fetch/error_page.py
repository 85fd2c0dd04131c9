"""Soft-failure detection: HTTP 200 responses that are really site error pages.

An error page is a site-wide signal (usually the crawler's IP being blocked),
so only known title and body signatures count.
"""

from __future__ import annotations

from noticeflow.document.dom import body_text, parse_html

ERROR_PAGE_TITLE_MARKERS = ["error page"]

# Both spellings are served by the site.
ERROR_PAGE_BODY_MARKERS = [
    "An Error Has Occured",
    "An Error Has Occurred",
]


def is_error_page(html: str) -> bool:
    soup = parse_html(html)
    title = (soup.title.get_text() if soup.title else "").strip().lower()
    if any(marker in title for marker in ERROR_PAGE_TITLE_MARKERS):
        return True
    body = body_text(soup)
    return any(marker in body for marker in ERROR_PAGE_BODY_MARKERS)
