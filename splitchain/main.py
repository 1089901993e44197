import logging
import os
from typing import Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from .config import Settings, get_settings
from .auth import router as auth_router
from .routes.group import router as group_router
from .routes.expense import router as expense_router
from .routes.settlement import router as settlement_router
from .integrations.bridge import BridgeClient
from .integrations.ens import EnsResolver
from .integrations.state_channel import StateChannelClient
from .services.credentials import CredentialResolver
from .services.group_store import GroupStore
from .storage.factory import build_backend


def create_app(settings: Optional[Settings] = None, store: Optional[GroupStore] = None,
               channel: Optional[StateChannelClient] = None, bridge: Optional[BridgeClient] = None,
               ens: Optional[EnsResolver] = None) -> FastAPI:
    """Composition root: every client is built here once and shared through app.state."""
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    app = FastAPI(title="SplitChain")
    app.state.settings = settings
    app.state.store = store or GroupStore(build_backend(settings))
    app.state.channel = channel if channel is not None else StateChannelClient(
        settings.state_channel_ws_url, network=settings.state_channel_network)
    app.state.bridge = bridge or BridgeClient(settings.lifi_api_url, api_key=settings.lifi_api_key)
    app.state.ens = ens if ens is not None else EnsResolver(settings.ens_api_url)
    app.state.credentials = CredentialResolver()

    # Session middleware
    app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)

    # include routers
    app.include_router(auth_router)
    app.include_router(group_router)
    app.include_router(expense_router)
    app.include_router(settlement_router)

    @app.on_event("startup")
    def on_startup():
        logging.info("Group store backend: %s", app.state.store.backend_name)
        if settings.state_channel_autoconnect and app.state.channel is not None:
            app.state.channel.start()

    @app.on_event("shutdown")
    def on_shutdown():
        if app.state.channel is not None:
            app.state.channel.disconnect()
        app.state.store.close()

    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)
