"""
chunkscribe.provision.download - HTTP fetching with explicit redirect handling.

Release metadata and binary/model downloads go through urllib. Redirects are
followed by hand against the Location header, up to MAX_REDIRECTS hops, so a
redirect loop fails instead of spinning.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any, Callable, Protocol

from chunkscribe import __version__
from chunkscribe.exceptions import ProvisioningError
from chunkscribe.logging import logger

USER_AGENT = f"chunkscribe/{__version__}"
MAX_REDIRECTS = 10
REDIRECT_STATUSES = {301, 302, 303, 307, 308}
DOWNLOAD_BLOCK_SIZE = 64 * 1024


class Opener(Protocol):
    def open(self, request: urllib.request.Request, timeout: float = ...) -> Any: ...


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Surface 3xx responses as HTTPError instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001
        return None


def build_opener() -> urllib.request.OpenerDirector:
    return urllib.request.build_opener(_NoRedirectHandler)


def open_url(
    url: str,
    opener: Opener | None = None,
    timeout: float = 30.0,
    max_redirects: int = MAX_REDIRECTS,
) -> Any:
    """Open url and return a 200 response, following redirects by hand.

    Raises:
        ProvisioningError: On network errors, non-200 statuses, a redirect
            without Location, or more than max_redirects hops
    """
    opener = opener or build_opener()
    current = url

    for _hop in range(max_redirects + 1):
        request = urllib.request.Request(current, headers={"User-Agent": USER_AGENT})
        try:
            response = opener.open(request, timeout=timeout)
        except urllib.error.HTTPError as e:
            if e.code not in REDIRECT_STATUSES:
                raise ProvisioningError(f"HTTP {e.code} from {current}") from e
            response = e
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise ProvisioningError(f"Network error fetching {current}: {reason}") from e

        status = getattr(response, "status", None) or getattr(response, "code", None)
        if status in REDIRECT_STATUSES:
            location = response.headers.get("Location")
            _close(response)
            if not location:
                raise ProvisioningError(f"HTTP {status} from {current} without Location header")
            current = urllib.parse.urljoin(current, location)
            logger.debug("Redirect %s -> %s", status, current)
            continue

        if status != 200:
            _close(response)
            raise ProvisioningError(f"HTTP {status} from {current}")
        return response

    raise ProvisioningError(f"Too many redirects fetching {url}")


def fetch_json(url: str, opener: Opener | None = None, timeout: float = 30.0) -> dict[str, Any]:
    """GET url and parse the body as JSON."""
    response = open_url(url, opener=opener, timeout=timeout)
    try:
        body = response.read()
    finally:
        _close(response)

    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProvisioningError(f"Malformed JSON from {url}: {e}") from e


def download_file(
    url: str,
    dest: Path,
    on_progress: Callable[[int, int], None] | None = None,
    opener: Opener | None = None,
    timeout: float = 60.0,
) -> int:
    """Stream url to dest.

    Args:
        url: Source URL
        dest: Destination file path (parent must exist)
        on_progress: Called with (bytes_loaded, bytes_total) after each
            block, only when the server reports Content-Length
        opener: urllib-style opener (defaults to one that does not follow
            redirects on its own)
        timeout: Socket timeout in seconds

    Returns:
        Number of bytes written

    Raises:
        ProvisioningError: On any network or write failure; dest is removed
    """
    response = open_url(url, opener=opener, timeout=timeout)
    loaded = 0
    try:
        total = _content_length(response)
        with open(dest, "wb") as f:
            while True:
                block = response.read(DOWNLOAD_BLOCK_SIZE)
                if not block:
                    break
                f.write(block)
                loaded += len(block)
                if on_progress and total:
                    on_progress(loaded, total)
    except OSError as e:
        dest.unlink(missing_ok=True)
        raise ProvisioningError(f"Download of {url} failed: {e}") from e
    except Exception:
        dest.unlink(missing_ok=True)
        raise
    finally:
        _close(response)

    logger.debug("Downloaded %d bytes from %s to %s", loaded, url, dest)
    return loaded


def _content_length(response: Any) -> int:
    try:
        return int(response.headers.get("Content-Length") or 0)
    except (TypeError, ValueError):
        return 0


def _close(response: Any) -> None:
    close = getattr(response, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as e:
        logger.debug("Ignoring error closing response: %s", e)
