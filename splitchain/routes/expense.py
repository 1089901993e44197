from fastapi import APIRouter, Depends, HTTPException, Request

from splitchain.models.ledger import Expense, generate_id, is_valid_address
from splitchain.routes.group import forward_signature, get_store, group_view, load_group, mirror, require_user
from splitchain.schemas import ExpenseRequest
from splitchain.services.group_store import GroupStore, InvalidExpense
from splitchain.storage.base import StorageError

router = APIRouter()


@router.post("/groups/{group_id}/expenses", status_code=201)
def add_expense(request: Request, group_id: str, payload: ExpenseRequest, current_user = Depends(require_user),
                store: GroupStore = Depends(get_store)):
    payer = current_user["address"]
    group = load_group(store, group_id)
    split_among = payload.split_among
    if split_among is None:
        split_among = group.participant_addresses() or [payer]
    bad = [a for a in split_among if not is_valid_address(a)]
    if bad:
        raise HTTPException(status_code=422, detail=f"Invalid addresses: {', '.join(bad)}")

    expense = Expense(
        id=generate_id("exp"),
        amount=round(payload.amount, 2),
        description=payload.description,
        paid_by=payer,
        split_among=split_among,
        currency=payload.currency,
    )
    try:
        group = store.add_expense(group_id, expense)
    except InvalidExpense as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Could not save expense: {e}")
    if group is None:
        raise HTTPException(404, "Group not found")

    channel = mirror(request, "add_expense", group_id, expense, forward_signature(payload.signature))
    return {"expense": expense.to_document(), "channel": channel, **group_view(group)}
