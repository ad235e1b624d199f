# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Iterable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# (connect, read)
DEFAULT_TIMEOUT = (5, 20)


def requests_session(total: int = 3,
                     backoff_factor: float = 0.5,
                     allowed_methods: Iterable[str] = ("GET", "POST")) -> requests.Session:
    """Session with sane timeouts/retries for flaky provider APIs."""
    s = requests.Session()
    retries = Retry(
        total=total,
        connect=total,
        read=total,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(allowed_methods),
        raise_on_status=False,
    )
    s.mount("https://", HTTPAdapter(max_retries=retries))
    s.mount("http://", HTTPAdapter(max_retries=retries))
    return s
