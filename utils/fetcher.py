"""Page fetching with a requests-first, selenium-fallback strategy.

Failures are raised as distinct types so the ingestion run can tell a slow
site (``FetchTimeout``/``TransientFetchError``) from one that is actively
refusing us (``FetchBlocked``).
"""

import logging
import re
import threading
from typing import Optional
from urllib.parse import urlsplit

import requests
from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.wait import WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

import config
from errors import CredentialsError, FetchBlocked, FetchError, FetchTimeout, TransientFetchError
from utils.http_client import USER_AGENTS, make_session

log = logging.getLogger(__name__)

BLOCK_TITLES = (
    "just a moment...",
    "attention required! | cloudflare",
    "access denied",
    "pardon our interruption",
)
BLOCK_MARKERS = ("cf-chl", "challenge-platform", "px-captcha", "g-recaptcha")
_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.I | re.S)


def looks_blocked(html: str) -> bool:
    match = _TITLE_RE.search(html[:10000])
    if match and " ".join(match.group(1).split()).lower() in BLOCK_TITLES:
        return True
    # Challenge pages are small; real listing pages that embed recaptcha are not.
    head = html[:10000].lower()
    return len(html) < 20000 and any(marker in head for marker in BLOCK_MARKERS)


def make_driver(timeout: int) -> webdriver.Chrome:
    opts = ChromeOptions()
    if config.HEADLESS:
        opts.add_argument("--headless=new")
    opts.add_argument("--disable-gpu")
    opts.add_argument("--no-sandbox")
    opts.add_argument("--window-size=1365,1024")
    opts.add_argument(f"--user-agent={USER_AGENTS[0]}")
    if config.FETCH_PROXY_URL:
        parts = urlsplit(config.FETCH_PROXY_URL)
        opts.add_argument(f"--proxy-server={parts.scheme}://{parts.hostname}:{parts.port}")
    driver = webdriver.Chrome(service=ChromeService(ChromeDriverManager().install()), options=opts)
    driver.set_page_load_timeout(timeout)
    return driver


class PageFetcher:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        mode: Optional[str] = None,
        timeout: Optional[int] = None,
        proxy_url: Optional[str] = None,
    ):
        self.mode = (mode or config.FETCH_MODE).lower()
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.proxy_url = config.FETCH_PROXY_URL if proxy_url is None else proxy_url
        self._session = session
        self._driver: Optional[webdriver.Chrome] = None
        self._driver_lock = threading.Lock()

    def check_credentials(self) -> None:
        """Raise ``CredentialsError`` before any request is made."""
        if config.FETCH_REQUIRE_PROXY and not self.proxy_url:
            raise CredentialsError("FETCH_PROXY_URL is required but not set")
        if not self.proxy_url:
            return
        parts = urlsplit(self.proxy_url)
        if parts.scheme not in ("http", "https", "socks5", "socks5h") or not parts.hostname:
            raise CredentialsError("FETCH_PROXY_URL is not a valid proxy URL")
        if config.FETCH_REQUIRE_PROXY and not (parts.username and parts.password):
            raise CredentialsError("FETCH_PROXY_URL has no username/password")

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = make_session(use_cache=config.USE_HTTP_CACHE, proxy_url=self.proxy_url)
        return self._session

    def fetch(self, url: str) -> str:
        if self.mode == "selenium":
            return self.fetch_selenium(url)
        try:
            return self.fetch_requests(url)
        except FetchBlocked:
            if self.mode != "auto":
                raise
            log.info("blocked on %s; retrying with selenium", url)
            return self.fetch_selenium(url)

    def fetch_requests(self, url: str) -> str:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise FetchTimeout(url, f"timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise TransientFetchError(url, f"requests error: {exc}") from exc

        status = resp.status_code
        if status == 200:
            if looks_blocked(resp.text):
                raise FetchBlocked(url, "challenge page", status)
            return resp.text
        if status in (401, 403):
            raise FetchBlocked(url, f"HTTP {status}", status)
        if status == 429 or status >= 500:
            raise TransientFetchError(url, f"HTTP {status}", status)
        raise FetchError(url, f"HTTP {status}", status)

    def fetch_selenium(self, url: str) -> str:
        with self._driver_lock:
            if self._driver is None:
                self._driver = make_driver(self.timeout)
            try:
                self._driver.get(url)
                WebDriverWait(self._driver, config.SELENIUM_WAIT).until(
                    EC.presence_of_element_located((By.TAG_NAME, "body"))
                )
                html = self._driver.page_source
            except TimeoutException as exc:
                raise FetchTimeout(url, "selenium timed out") from exc
            except WebDriverException as exc:
                raise TransientFetchError(url, f"selenium error: {exc.msg}") from exc
        if looks_blocked(html):
            raise FetchBlocked(url, "challenge page (selenium)")
        return html

    def close(self) -> None:
        if self._driver is not None:
            try:
                self._driver.quit()
            except WebDriverException:
                log.debug("driver already gone")
            self._driver = None
        if self._session is not None:
            self._session.close()
