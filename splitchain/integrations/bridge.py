"""
Cross-chain route quotes from the LI.FI API.

Executing a route needs the payer's wallet and happens client-side; this
module only asks for candidate routes for one settlement leg.
"""

import logging
from decimal import ROUND_DOWN, Decimal
from typing import List, Optional

import requests

from splitchain.models.ledger import Document

USDC_DECIMALS = 6
SLIPPAGE = 0.03


class BridgeError(Exception):
    pass


class RouteRequest(Document):
    from_chain: int
    to_chain: int
    from_token: str
    to_token: str
    from_amount: str
    from_address: str
    to_address: str


class RouteQuote(Document):
    id: str
    from_chain: int
    to_chain: int
    from_amount: str
    to_amount: str
    estimated_gas: str = "0"
    estimated_time: int = 0
    steps: list = []


def usdc_units(amount: float, decimals: int = USDC_DECIMALS) -> str:
    units = (Decimal(str(amount)) * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return str(units)


def to_quote(route: dict) -> RouteQuote:
    steps = route.get("steps") or []
    gas_costs = route.get("gasCosts") or []
    return RouteQuote(
        id=route["id"],
        from_chain=route["fromChainId"],
        to_chain=route["toChainId"],
        from_amount=route["fromAmount"],
        to_amount=route["toAmount"],
        estimated_gas=(gas_costs[0].get("amount") if gas_costs else None) or "0",
        estimated_time=sum((step.get("estimate") or {}).get("executionDuration", 0) for step in steps),
        steps=steps,
    )


class BridgeClient:
    def __init__(self, api_url: str, api_key: Optional[str] = None, integrator: str = "splitchain",
                 session: Optional[requests.Session] = None, timeout: float = 20.0):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.integrator = integrator
        self._http = session or requests.Session()
        self._timeout = timeout

    def get_settlement_routes(self, request: RouteRequest) -> List[RouteQuote]:
        body = {
            "fromChainId": request.from_chain,
            "toChainId": request.to_chain,
            "fromTokenAddress": request.from_token,
            "toTokenAddress": request.to_token,
            "fromAmount": request.from_amount,
            "fromAddress": request.from_address,
            "toAddress": request.to_address,
            "options": {"slippage": SLIPPAGE, "order": "FASTEST", "integrator": self.integrator},
        }
        headers = {"x-lifi-api-key": self.api_key} if self.api_key else {}
        try:
            r = self._http.post(f"{self.api_url}/advanced/routes", json=body, headers=headers, timeout=self._timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            logging.exception("Route request failed")
            raise BridgeError(f"route provider error: {e}") from e
        routes = r.json().get("routes") or []
        return [to_quote(route) for route in routes]
