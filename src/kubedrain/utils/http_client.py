import logging

import httpx

from .. import __version__

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_CONNECT = 5.0
USER_AGENT = f"kubedrain/{__version__}"


def get_async_http_client(
    connect_timeout: float = None,
    read_timeout: float = None,
    verify: bool = True,
    headers: dict = None,
) -> httpx.AsyncClient:
    """
    Returns a configured httpx.AsyncClient with:
    - Default timeouts (connect and read).
    - Standard User-Agent header, merged with any extra headers.
    """
    c_timeout = connect_timeout if connect_timeout is not None else DEFAULT_TIMEOUT_CONNECT
    r_timeout = read_timeout if read_timeout is not None else 30.0

    timeout = httpx.Timeout(r_timeout, connect=c_timeout)

    all_headers = {"User-Agent": USER_AGENT}
    if headers:
        all_headers.update(headers)

    return httpx.AsyncClient(
        timeout=timeout,
        headers=all_headers,
        verify=verify,
        follow_redirects=True,
    )
