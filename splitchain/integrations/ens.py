import logging
from typing import Optional

import requests

from splitchain.models.ledger import is_valid_address


class EnsResolver:
    """Display-name lookups; a failure only means no name is shown."""

    def __init__(self, api_url: str, session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self._http = session or requests.Session()
        self._timeout = timeout

    def _lookup(self, value: str) -> Optional[dict]:
        try:
            r = self._http.get(f"{self.api_url}/{value}", timeout=self._timeout)
            r.raise_for_status()
            return r.json()
        except (requests.RequestException, ValueError) as e:
            logging.warning("ENS lookup for %s failed: %s", value, e)
            return None

    def resolve_name(self, ens_name: str) -> Optional[str]:
        data = self._lookup(ens_name.strip().lower())
        address = (data or {}).get("address")
        return address if is_valid_address(address) else None

    def lookup_address(self, address: str) -> Optional[str]:
        data = self._lookup(address)
        return (data or {}).get("name") or None

