import pytest

import scrape_cargurus as cg
from errors import FetchError
from records import RunParams
from utils.fetcher import PageFetcher
from utils.http_client import make_session


@pytest.mark.live
@pytest.mark.vcr
@pytest.mark.default_cassette("cargurus_one_page")
def test_cargurus_one_page() -> None:
    url = cg.build_search_url(1, RunParams(source=cg.SOURCE, only_sold=False, model="911"))
    fetcher = PageFetcher(session=make_session(use_cache=False), mode="requests", proxy_url="")
    try:
        html = fetcher.fetch(url)
    except FetchError as exc:  # pragma: no cover - network
        pytest.skip(f"cargurus request failed: {exc}")
    candidates = cg.parse_index(html)
    assert candidates
    assert "#" not in candidates[0].url


