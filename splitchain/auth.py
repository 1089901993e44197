import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Request

router = APIRouter()


@router.post("/login")
def login(request: Request, user: Dict[str, Any] = Body(...)):
    """Take the wallet provider's user object and remember its account address."""
    resolver = request.app.state.credentials
    address, source = resolver.resolve_with_source(user)
    if not address:
        logging.debug("No wallet address in user payload: %s", user)
        raise HTTPException(status_code=400, detail="No wallet address found. Connect a wallet or sign in with email.")
    logging.debug("Resolved %s via %s", address, source)
    request.session['user'] = {"address": address, "source": source}
    return request.session['user']


@router.get("/me")
def me(request: Request):
    user = request.session.get("user")
    if not user:
        raise HTTPException(status_code=401, detail="Login required")
    return user


@router.post("/logout")
def logout(request: Request):
    request.session.pop('user', None)
    return {"ok": True}
