import os
from dataclasses import dataclass
from typing import Optional

BASE_DIR = os.path.dirname(os.path.dirname(__file__))

PLACEHOLDER_API_KEY = "your-api-key-here"


@dataclass(frozen=True)
class Settings:
    secret_key: str
    firebase_api_key: Optional[str]
    firebase_database_url: Optional[str]
    firebase_auth_token: Optional[str]
    local_db_file: str
    local_poll_interval: float
    state_channel_ws_url: str
    state_channel_autoconnect: bool
    lifi_api_url: str
    lifi_api_key: Optional[str]
    ens_api_url: str
    log_level: str

    @property
    def firebase_configured(self) -> bool:
        key = self.firebase_api_key
        return bool(key) and key != PLACEHOLDER_API_KEY and bool(self.firebase_database_url)

    @property
    def state_channel_network(self) -> str:
        return "sandbox" if "sandbox" in self.state_channel_ws_url else "mainnet"


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def get_settings() -> Settings:
    env = os.environ
    return Settings(
        secret_key=env.get("SECRET_KEY", "change-me"),
        firebase_api_key=env.get("FIREBASE_API_KEY"),
        firebase_database_url=env.get("FIREBASE_DATABASE_URL"),
        firebase_auth_token=env.get("FIREBASE_AUTH_TOKEN"),
        local_db_file=env.get("LOCAL_DB_FILE", os.path.join(BASE_DIR, "db.sqlite")),
        local_poll_interval=float(env.get("LOCAL_POLL_INTERVAL", "1.0")),
        state_channel_ws_url=env.get("STATE_CHANNEL_WS_URL", "wss://clearnet-sandbox.yellow.com/ws"),
        state_channel_autoconnect=_flag(env.get("STATE_CHANNEL_AUTOCONNECT")),
        lifi_api_url=env.get("LIFI_API_URL", "https://li.quest/v1"),
        lifi_api_key=env.get("LIFI_API_KEY"),
        ens_api_url=env.get("ENS_API_URL", "https://api.ensideas.com/ens/resolve"),
        log_level=env.get("LOG_LEVEL", "INFO"),
    )
