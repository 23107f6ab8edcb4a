"""Image embed extraction and URL rewriting for post markdown.

Only storage object URLs are considered, i.e. URLs of the form
``<host>/storage/v1/object/<public|sign>/<bucket>/<path>``. Anything else
(external images, other buckets) passes through untouched.
"""
from __future__ import annotations

import re
from urllib.parse import unquote

from markpress.config import STORAGE_BUCKET
from markpress.storage import PERMANENT_PREFIX, public_url

IMAGE_EMBED_RE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")


def _object_url_re(bucket: str) -> re.Pattern[str]:
    return re.compile(
        r"(?:https?://[^\s/()\"'<>]+)?/storage/v1/object/(?:public|sign|authenticated)/"
        + re.escape(bucket)
        + r"/([^\s?#()\"'<>]+)(?:\?[^\s#()\"'<>]*)?"
    )


def _embed_target(raw: str) -> str:
    target = raw.strip()
    if target.startswith("<") and ">" in target:
        return target[1:target.index(">")]
    # Drop an optional link title: ![alt](url "title")
    return target.split(maxsplit=1)[0] if target else target


def path_from_url(url: str, bucket: str | None = None) -> str | None:
    """Decode a storage object URL to its bucket-relative path."""
    match = _object_url_re(bucket or STORAGE_BUCKET).fullmatch(url)
    if not match:
        return None
    return unquote(match.group(1))


def extract_image_paths(markdown: str | None, bucket: str | None = None) -> list[str]:
    if not markdown:
        return []
    paths = []
    for match in IMAGE_EMBED_RE.finditer(markdown):
        path = path_from_url(_embed_target(match.group(2)), bucket)
        if path:
            paths.append(path)
    return paths


def first_thumbnail(markdown: str | None, bucket: str | None = None) -> str | None:
    paths = extract_image_paths(markdown, bucket)
    return paths[0] if paths else None


def first_permanent_image(markdown: str | None, bucket: str | None = None) -> str | None:
    for path in extract_image_paths(markdown, bucket):
        if path.startswith(PERMANENT_PREFIX):
            return path
    return None


def rewrite_urls(
    markdown: str,
    promoted: dict[str, str],
    base_url: str | None = None,
    bucket: str | None = None,
) -> str:
    """Point every URL of a promoted temp path at its permanent location.

    ``promoted`` maps temp paths to permanent paths. URLs of paths missing
    from the mapping are left as they are.
    """
    if not promoted or not markdown:
        return markdown

    def _replace(match: re.Match[str]) -> str:
        target = promoted.get(unquote(match.group(1)))
        if target is None:
            return match.group(0)
        return public_url(target, base_url, bucket)

    return _object_url_re(bucket or STORAGE_BUCKET).sub(_replace, markdown)
