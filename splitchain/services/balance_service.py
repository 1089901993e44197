# splitchain/services/balance_service.py
import logging
from typing import Dict, Iterable, List, Optional

from splitchain.models.ledger import Expense, Group, Settlement, SettlementStatus, normalize_address


def compute_balances(expenses: Iterable[Expense], participant_addresses: Iterable[str]) -> Dict[str, float]:
    """
    Net position per address: positive is owed money, negative owes money.

    Keys are lower-cased addresses, listed participants first and then any
    other address in the order an expense first touches it. Nothing is
    rounded here.
    """
    nets: Dict[str, float] = {normalize_address(a): 0.0 for a in participant_addresses}

    for e in expenses:
        if not e.split_among:
            logging.warning("Skipping expense %s with an empty split list", e.id)
            continue

        payer = normalize_address(e.paid_by)
        nets.setdefault(payer, 0.0)
        nets[payer] += e.amount

        per_share = e.amount / len(e.split_among)
        for addr in e.split_among:
            key = normalize_address(addr)
            nets.setdefault(key, 0.0)
            nets[key] -= per_share
    return nets


def apply_settlements(balances: Dict[str, float], settlements: Iterable[Settlement]) -> Dict[str, float]:
    """Move balances by every completed settlement: the payer's debt shrinks, the payee's credit shrinks."""
    nets = dict(balances)
    for s in settlements:
        if s.status != SettlementStatus.COMPLETED:
            continue
        sender = normalize_address(s.from_address)
        receiver = normalize_address(s.to_address)
        nets[sender] = nets.get(sender, 0.0) + s.amount
        nets[receiver] = nets.get(receiver, 0.0) - s.amount
    return nets


def group_balances(group: Group) -> Dict[str, float]:
    return compute_balances(group.expenses, group.participant_addresses())


def outstanding_balances(group: Group) -> Dict[str, float]:
    return apply_settlements(group_balances(group), group.settlements)


def balance_rows(group: Group, balances: Optional[Dict[str, float]] = None, currency: str = "USDC") -> List[dict]:
    if balances is None:
        balances = group_balances(group)
    rows = []
    for addr, amount in balances.items():
        p = group.find_participant(addr)
        rows.append({
            "address": p.address if p else addr,
            "ensName": p.ens_name if p else None,
            "netAmount": round(amount, 2),
            "currency": currency,
        })
    return rows
