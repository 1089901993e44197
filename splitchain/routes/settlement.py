from fastapi import APIRouter, Depends, HTTPException, Request

from splitchain.integrations.bridge import BridgeError, RouteRequest, usdc_units
from splitchain.integrations.chains import SUPPORTED_CHAINS, get_chain, get_tokens, pick_destination_chain
from splitchain.models.ledger import Settlement, generate_id, is_valid_address
from splitchain.routes.group import forward_signature, get_store, group_view, load_group, mirror, require_user
from splitchain.schemas import QuoteRequest, SettlementRequest
from splitchain.services.group_store import GroupStore
from splitchain.storage.base import StorageError

router = APIRouter()


@router.get("/chains")
def list_chains():
    return [dict(chain, tokens=get_tokens(chain["id"])) for chain in SUPPORTED_CHAINS]

@router.post("/groups/{group_id}/quote")
def quote_settlement(request: Request, group_id: str, payload: QuoteRequest, current_user = Depends(require_user),
                     store: GroupStore = Depends(get_store)):
    group = load_group(store, group_id)
    payee = group.find_participant(payload.to)
    if payee is None:
        raise HTTPException(404, "Recipient is not in this group")
    to_chain = pick_destination_chain(payee.preferred_chains, payload.to_chain)
    from_data, to_data = get_chain(payload.from_chain), get_chain(to_chain)
    if not from_data or not to_data:
        raise HTTPException(status_code=422, detail="Unsupported chain")

    amount = usdc_units(payload.amount)
    if payload.from_chain == to_chain:
        # same network: a plain token transfer, nothing to bridge
        return {"direct": True, "fromChain": payload.from_chain, "toChain": to_chain, "fromAmount": amount,
                "token": to_data["usdc"], "routes": []}

    route_request = RouteRequest(
        from_chain=payload.from_chain,
        to_chain=to_chain,
        from_token=from_data["usdc"],
        to_token=to_data["usdc"],
        from_amount=amount,
        from_address=current_user["address"],
        to_address=payee.address,
    )
    try:
        routes = request.app.state.bridge.get_settlement_routes(route_request)
    except BridgeError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"direct": False, "fromChain": payload.from_chain, "toChain": to_chain, "fromAmount": amount,
            "routes": [r.to_document() for r in routes]}

@router.post("/groups/{group_id}/settlements", status_code=201)
def record_settlement(request: Request, group_id: str, payload: SettlementRequest,
                      current_user = Depends(require_user), store: GroupStore = Depends(get_store)):
    if not is_valid_address(payload.to):
        raise HTTPException(status_code=422, detail="Invalid recipient address")
    settlement = Settlement(
        id=generate_id("settlement"),
        from_address=current_user["address"],
        to_address=payload.to,
        amount=payload.amount,
        currency=payload.currency,
        from_chain=payload.from_chain,
        to_chain=payload.to_chain,
        status=payload.status,
        tx_hash=payload.tx_hash,
    )
    try:
        group = store.add_settlement(group_id, settlement)
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Could not save settlement: {e}")
    if group is None:
        raise HTTPException(404, "Group not found")

    channel = mirror(request, "record_settlement", group_id, settlement, forward_signature(payload.signature))
    return {"settlement": settlement.to_document(), "channel": channel, **group_view(group)}
