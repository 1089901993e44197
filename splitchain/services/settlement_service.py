# splitchain/services/settlement_service.py
from typing import Dict, List

from splitchain.models.ledger import Group
from splitchain.services.balance_service import outstanding_balances

# balances within this distance of zero count as settled
EPSILON = 0.01


def simplify_debts(balances: Dict[str, float]) -> List[dict]:
    """
    Greedy pairing of debtors with creditors in the mapping's own order.

    Each transfer is the smaller of the current debt and credit, reported to
    the cent, while the running amounts shrink by the unrounded value. The
    result never exceeds n - 1 transfers for n unsettled addresses but is not
    always the minimum: entries are not sorted by size first.
    """
    creditors = [[addr, amt] for addr, amt in balances.items() if amt > EPSILON]
    debtors = [[addr, -amt] for addr, amt in balances.items() if amt < -EPSILON]
    i = j = 0
    transfers = []
    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]
        pay = min(debtor[1], creditor[1])
        transfers.append({"from": debtor[0], "to": creditor[0], "amount": round(pay, 2)})
        debtor[1] -= pay
        creditor[1] -= pay
        if debtor[1] < EPSILON:
            i += 1
        if creditor[1] < EPSILON:
            j += 1
    return transfers


def suggest_settlements(group: Group) -> List[dict]:
    settlements = simplify_debts(outstanding_balances(group))
    # add display names and where the payee accepts funds
    for s in settlements:
        payer = group.find_participant(s["from"])
        payee = group.find_participant(s["to"])
        s["from"] = payer.address if payer else s["from"]
        s["to"] = payee.address if payee else s["to"]
        s["fromEns"] = payer.ens_name if payer else None
        s["toEns"] = payee.ens_name if payee else None
        s["preferredChains"] = list(payee.preferred_chains) if payee else []
    return settlements
