import random
from typing import List, Optional

import requests
import requests_cache
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import config

# A small rotation of modern desktop and mobile user agents
USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
]

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    # Avoid brotli as many Python stacks lack brotli decoder
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}


def make_session(
    use_cache: bool = False, retries: Optional[int] = None, proxy_url: Optional[str] = None
) -> requests.Session:
    """Create a requests session with retry and optional caching.

    The adapter only retries connection-level trouble and plain server errors.
    429 and 503 come back to the caller, which decides how long to back off.
    """
    if use_cache:
        session: requests.Session = requests_cache.CachedSession("http_cache", expire_after=3600)
    else:
        session = requests.Session()

    session.headers.update(BASE_HEADERS)
    # Rotate user agents per session
    session.headers["User-Agent"] = random.choice(USER_AGENTS)

    retry = Retry(
        total=config.HTTP_RETRIES if retries is None else retries,
        backoff_factor=2,
        status_forcelist=[500, 502, 504],
        allowed_methods=["HEAD", "GET", "OPTIONS"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    if proxy_url:
        session.proxies.update({"http": proxy_url, "https": proxy_url})
    return session
