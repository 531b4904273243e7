"""Best-effort estimation of remote collection sizes"""

from typing import Dict, Mapping, Optional
from urllib.parse import parse_qs, urlparse

from requests.structures import CaseInsensitiveDict
from requests.utils import parse_header_links

PER_PAGE = 100


def parse_link_header(value: Optional[str]) -> Dict[str, str]:
    """Map the rel of each link in an RFC 8288 ``Link`` header to its URL."""
    if not value:
        return {}
    return {link["rel"]: link["url"] for link in parse_header_links(value) if "rel" in link and "url" in link}


class PaginationEstimator:
    """Estimate how many items a paginated endpoint holds.

    The total accumulated by :meth:`add` over several endpoints of one sync
    call is an estimate: callers must not rely on it as a count.
    """

    def __init__(self, per_page: int = PER_PAGE):
        self.per_page = per_page
        self.total = 0

    def reset(self):
        self.total = 0

    def estimate_total(self, headers: Optional[Mapping[str, str]], default: int) -> int:
        """``last page × per_page`` from the Link header, else ``default``.

        ``default`` should be the number of items the current page returned.
        """
        links = parse_link_header(CaseInsensitiveDict(headers or {}).get("link"))
        last = links.get("last")
        if not last:
            return default
        pages = parse_qs(urlparse(last).query).get("page")
        if not pages or not pages[0].isdigit():
            return default
        return int(pages[0]) * self.per_page

    def add(self, headers: Optional[Mapping[str, str]], default: int) -> int:
        estimate = self.estimate_total(headers, default)
        self.total += estimate
        return estimate

    def add_exact(self, total: Optional[int], default: int) -> int:
        """Add a size reported in the response body (Jira ``total``, Bitbucket ``size``)."""
        estimate = int(total) if total is not None else default
        self.total += estimate
        return estimate
