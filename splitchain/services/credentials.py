"""
Resolve the account address of a signed-in user.

Wallet providers hand back loosely shaped user objects: an external wallet,
an embedded wallet among the linked accounts, or a smart wallet. Each
strategy knows one shape; the resolver asks them in order and takes the
first valid address.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from splitchain.models.ledger import is_valid_address


class CredentialStrategy(ABC):
    name = "abstract"

    @abstractmethod
    def resolve(self, user: dict) -> Optional[str]:
        pass


class WalletAddressStrategy(CredentialStrategy):
    name = "wallet"

    def resolve(self, user):
        wallet = user.get("wallet") or {}
        return wallet.get("address")


class LinkedAccountStrategy(CredentialStrategy):
    name = "linked_account"

    def resolve(self, user):
        for account in user.get("linkedAccounts") or []:
            if account.get("type") == "wallet" or account.get("walletClientType") == "privy":
                return account.get("address")
        return None


class SmartWalletStrategy(CredentialStrategy):
    name = "smart_wallet"

    def resolve(self, user):
        wallet = user.get("smartWallet") or {}
        return wallet.get("address")


DEFAULT_STRATEGIES = (WalletAddressStrategy(), LinkedAccountStrategy(), SmartWalletStrategy())


class CredentialResolver:
    def __init__(self, strategies: Iterable[CredentialStrategy] = DEFAULT_STRATEGIES):
        self.strategies: List[CredentialStrategy] = list(strategies)

    def resolve(self, user: Optional[dict]) -> Optional[str]:
        if not isinstance(user, dict):
            return None
        for strategy in self.strategies:
            address = strategy.resolve(user)
            if is_valid_address(address):
                return address
        return None

    def resolve_with_source(self, user: Optional[dict]):
        if not isinstance(user, dict):
            return None, None
        for strategy in self.strategies:
            address = strategy.resolve(user)
            if is_valid_address(address):
                return address, strategy.name
        return None, None
