import os
from dataclasses import dataclass, field

DEFAULT_PORT = 1337
# How long the transient effect is shown before the final state is set.
DEFAULT_EFFECT_HOLD = 13.0
DEFAULT_REQUEST_TIMEOUT = 5.0
# Upper bound on one whole run, hold included.
DEFAULT_SEQUENCE_TIMEOUT = 30.0
DEFAULT_BREATHE_SCENE = "Breathe"
DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "data", "lights.db")


def _float_env(name, default):
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class Settings:
    govee_api_key: str = ""
    device_ids: list = field(default_factory=list)
    effect_hold: float = DEFAULT_EFFECT_HOLD
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    sequence_timeout: float = DEFAULT_SEQUENCE_TIMEOUT
    breathe_scene: str = DEFAULT_BREATHE_SCENE
    db_path: str = DEFAULT_DB_PATH
    port: int = DEFAULT_PORT


def load_settings():
    """Build Settings from the environment (call after load_dotenv)."""
    devices = os.environ.get("GOVEE_DEVICES", "")
    return Settings(
        govee_api_key=os.environ.get("GOVEE_API_KEY", ""),
        device_ids=[d.strip() for d in devices.split(",") if d.strip()],
        effect_hold=_float_env("EFFECT_HOLD_SECONDS", DEFAULT_EFFECT_HOLD),
        request_timeout=_float_env("REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT),
        sequence_timeout=_float_env("SEQUENCE_TIMEOUT_SECONDS", DEFAULT_SEQUENCE_TIMEOUT),
        breathe_scene=os.environ.get("BREATHE_SCENE", DEFAULT_BREATHE_SCENE),
        db_path=os.environ.get("LIGHTS_DB_PATH", DEFAULT_DB_PATH),
        port=int(os.environ.get("PORT", DEFAULT_PORT)),
    )
