"""Tenant path sandboxing and file naming rules."""

from __future__ import annotations

import logging
import mimetypes
import re
from collections.abc import Callable

from page_agent.errors import InvalidPath, WriteConflict

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = ".placeholder"

_COPY_SUFFIX = re.compile(r" copy( \d+)?$")
_CONTENT_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".md": "text/markdown",
    ".txt": "text/plain",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def sanitize_path(
    path: str,
    tenant_id: str,
    *,
    base_folder: str = "",
    is_foreign_tenant: Callable[[str], bool] | None = None,
) -> str:
    """Resolve a model-supplied path to `{tenant_id}/{relative}`.

    Relative paths land under `base_folder`. A leading "/" addresses the tenant
    root, and a path already qualified with the caller's tenant is returned
    unchanged, so resolving twice is a no-op. Parent segments are rejected,
    as is an absolute path naming another tenant.
    """
    if not tenant_id or "/" in tenant_id or tenant_id in (".", ".."):
        raise InvalidPath(f"Invalid tenant id: {tenant_id!r}")
    if "\\" in path or "\x00" in path:
        raise InvalidPath(f"Invalid characters in path: {path!r}")

    raw_segments = path.split("/")
    if ".." in raw_segments:
        raise InvalidPath(f"Parent segments are not allowed: {path!r}")

    absolute = path.startswith("/")
    segments = [segment for segment in raw_segments if segment not in ("", ".")]
    qualified = bool(segments) and segments[0] == tenant_id
    if qualified:
        segments = segments[1:]
    elif absolute and segments and is_foreign_tenant is not None:
        if is_foreign_tenant(segments[0]):
            raise InvalidPath(f"Path escapes tenant root: {path!r}")

    if not absolute and not qualified and base_folder:
        base = sanitize_path(base_folder, tenant_id).split("/")[1:]
        segments = base + segments

    resolved = "/".join([tenant_id, *segments])
    logger.debug("Resolved %r to %r", path, resolved)
    return resolved


def relative_to_tenant(stored_path: str, tenant_id: str) -> str:
    if stored_path == tenant_id:
        return ""
    prefix = f"{tenant_id}/"
    if stored_path.startswith(prefix):
        return stored_path[len(prefix):]
    return stored_path


def content_type_for(path: str) -> str:
    _, dot, ext = path.rpartition(".")
    if dot:
        known = _CONTENT_TYPES.get(f".{ext.lower()}")
        if known:
            return known
    return mimetypes.guess_type(path)[0] or "text/plain"


def next_copy_name(
    path: str,
    exists: Callable[[str], bool],
    *,
    is_folder: bool = False,
    max_attempts: int = 1000,
) -> str:
    """First free `name copy[ N].ext` sibling of `path`.

    An existing copy suffix is stripped first, so duplicating "page copy.html"
    yields "page copy 2.html" rather than "page copy copy.html".
    """
    directory, _, name = path.rstrip("/").rpartition("/")
    stem, extension = name, ""
    if not is_folder:
        dot = name.rfind(".")
        if dot > 0:
            stem, extension = name[:dot], name[dot:]
    stem = _COPY_SUFFIX.sub("", stem)

    for counter in range(1, max_attempts + 1):
        suffix = " copy" if counter == 1 else f" copy {counter}"
        candidate = f"{stem}{suffix}{extension}"
        full = f"{directory}/{candidate}" if directory else candidate
        if not exists(full):
            return full
    raise WriteConflict(f"No free copy name for {path} after {max_attempts} attempts")
