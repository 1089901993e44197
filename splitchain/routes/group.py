import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from splitchain.integrations.state_channel import StateChannelError
from splitchain.models.ledger import Group, Participant, generate_id, is_valid_address
from splitchain.schemas import CreateGroupRequest, JoinGroupRequest, StatusRequest
from splitchain.services.balance_service import balance_rows, group_balances
from splitchain.services.group_store import GroupStore
from splitchain.services.settlement_service import suggest_settlements
from splitchain.storage.base import StorageError

router = APIRouter()

KEEPALIVE_SECONDS = 15


def require_user(request: Request):
    user = request.session.get("user")
    if not user:
        raise HTTPException(status_code=401, detail="Login required")
    return user

def get_store(request: Request) -> GroupStore:
    return request.app.state.store

def forward_signature(signature):
    # signatures come from the user's wallet and are passed through untouched
    return lambda message: signature or ""

def mirror(request: Request, action: str, *args) -> str:
    """Send one event to the state channel; never fails the caller."""
    channel = request.app.state.channel
    if channel is None:
        return "disabled"
    try:
        getattr(channel, action)(*args)
    except StateChannelError as e:
        logging.warning("State channel %s failed: %s", action, e)
        return "failed"
    return "sent"

def load_group(store: GroupStore, group_id: str) -> Group:
    try:
        group = store.get_group(group_id)
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Group store unavailable: {e}")
    if not group:
        raise HTTPException(404, "Group not found")
    return group

def group_view(group: Group) -> dict:
    balances = group_balances(group)
    return {
        "group": group.to_document(),
        "balances": balance_rows(group, balances),
        "plan": suggest_settlements(group),
        "totalSpent": round(sum(e.amount for e in group.expenses), 2),
    }


@router.get("/ens/{value}")
def lookup_name(request: Request, value: str):
    ens = request.app.state.ens
    if ens is None:
        raise HTTPException(status_code=404, detail="Name lookups are disabled")
    if is_valid_address(value):
        return {"address": value, "ensName": ens.lookup_address(value)}
    return {"address": ens.resolve_name(value), "ensName": value}

@router.get("/groups")
def list_groups(current_user = Depends(require_user), store: GroupStore = Depends(get_store)):
    try:
        groups = store.get_groups_for(current_user["address"])
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Group store unavailable: {e}")
    return [g.to_document() for g in groups]

@router.post("/groups", status_code=201)
def create_group(request: Request, payload: CreateGroupRequest, current_user = Depends(require_user),
                 store: GroupStore = Depends(get_store)):
    address = current_user["address"]
    group = Group(
        id=generate_id("group"),
        name=payload.name,
        created_by=address,
        participants=[Participant(address=address, preferred_chains=payload.preferred_chains)],
    )
    try:
        saved = store.save_group(group)
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Could not save group: {e}")

    channel = mirror(request, "create_session", saved.id, address, [], forward_signature(payload.signature))
    if channel == "sent":
        try:
            saved = store.save_group(saved.model_copy(update={"channel_session_id": saved.id}))
        except StorageError as e:
            logging.warning("Could not record channel session for %s: %s", saved.id, e)
    return {"group": saved.to_document(), "channel": channel}

@router.get("/groups/{group_id}")
def view_group(group_id: str, store: GroupStore = Depends(get_store)):
    return group_view(load_group(store, group_id))

@router.post("/groups/{group_id}/join")
def join_group(request: Request, group_id: str, payload: JoinGroupRequest, current_user = Depends(require_user),
               store: GroupStore = Depends(get_store)):
    address = current_user["address"]
    load_group(store, group_id)
    ens = request.app.state.ens
    participant = Participant(
        address=address,
        ens_name=ens.lookup_address(address) if ens else None,
        preferred_chains=payload.preferred_chains,
    )
    try:
        group = store.add_participant(group_id, participant)
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Could not join group: {e}")
    if group is None:
        raise HTTPException(404, "Group not found")
    channel = mirror(request, "join_session", group_id, address, forward_signature(payload.signature))
    return {"group": group.to_document(), "channel": channel}

@router.post("/groups/{group_id}/status")
def update_status(group_id: str, payload: StatusRequest, current_user = Depends(require_user),
                  store: GroupStore = Depends(get_store)):
    try:
        group = store.update_group_status(group_id, payload.is_active)
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Could not update group: {e}")
    if group is None:
        raise HTTPException(404, "Group not found")
    return group.to_document()

@router.delete("/groups/{group_id}", status_code=204)
def delete_group(group_id: str, current_user = Depends(require_user), store: GroupStore = Depends(get_store)):
    group = load_group(store, group_id)
    if group.created_by.lower() != current_user["address"].lower():
        raise HTTPException(status_code=403, detail="Only the creator can delete a group")
    try:
        store.delete_group(group_id)
    except StorageError as e:
        raise HTTPException(status_code=502, detail=f"Could not delete group: {e}")
    return Response(status_code=204)

@router.get("/groups/{group_id}/events")
async def group_events(request: Request, group_id: str, store: GroupStore = Depends(get_store)):
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_change(group):
        loop.call_soon_threadsafe(queue.put_nowait, group)

    unsubscribe = await run_in_threadpool(store.subscribe_to_group, group_id, on_change)

    async def stream():
        try:
            while not await request.is_disconnected():
                try:
                    group = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                data = group_view(group) if group else None
                yield f"event: group\ndata: {json.dumps(data)}\n\n"
        finally:
            unsubscribe()

    # the generator never reaches its finally if the body is never iterated
    return StreamingResponse(stream(), media_type="text/event-stream", background=BackgroundTask(unsubscribe))
