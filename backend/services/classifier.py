"""Map a raw webhook message to a light intent and its colors."""

from enum import Enum

ERROR_KEYWORDS = (
    "fail",
    "is down",
    "error",
    "less than threshold",
    "greater than threshold",
)
SUCCESS_KEYWORDS = (
    "pass",
    "is up",
    "succe",
    "no longer greater than",
    "no longer less than",
)
PENDING_KEYWORDS = ("deploy",)
IDLE_KEYWORDS = ("idle", "all clear")

# -- Colors (r, g, b) ------------------------------------------------------
FAIL_COLOR = (255, 0, 0)
PENDING_COLOR = (174, 0, 255)
PASS_COLOR = (51, 255, 87)
IDLE_COLOR = (51, 158, 255)


class Intent(Enum):
    FAIL = "fail"
    PASS = "pass"
    PENDING = "pending"
    IDLE = "idle"
    NONE = "none"


_COLORS = {
    Intent.FAIL: FAIL_COLOR,
    Intent.PASS: PASS_COLOR,
    Intent.PENDING: PENDING_COLOR,
    Intent.IDLE: IDLE_COLOR,
}

_SCENES = {
    Intent.FAIL: "Failure",
    Intent.PASS: "Success",
    Intent.PENDING: "Deploying",
}


def _matches(message, keywords):
    return any(k in message for k in keywords)


def classify(message):
    """Classify a message. Pass wins over fail, fail over pending.

    A message mentioning "deploy" and "succeeded" is a pass; one with no
    known keyword is Intent.NONE.
    """
    if not message:
        return Intent.NONE
    message = message.lower()
    if _matches(message, SUCCESS_KEYWORDS):
        return Intent.PASS
    if _matches(message, ERROR_KEYWORDS):
        return Intent.FAIL
    if _matches(message, PENDING_KEYWORDS):
        return Intent.PENDING
    if _matches(message, IDLE_KEYWORDS):
        return Intent.IDLE
    return Intent.NONE


def color_for(intent, set_idle=False):
    """RGB tuple for an intent, or None for Intent.NONE.

    set_idle turns a pass into the idle color.
    """
    if set_idle and intent is Intent.PASS:
        return IDLE_COLOR
    return _COLORS.get(intent)


def scene_for(intent):
    return _SCENES.get(intent)


def should_display_pending_action(intent):
    return intent in (Intent.FAIL, Intent.PENDING)


def rgb_to_int(rgb):
    """Pack (r, g, b) into the integer the Govee colorRgb capability takes."""
    r, g, b = rgb
    return (r << 16) | (g << 8) | b


def rgb_to_hex(rgb):
    return "#" + "".join(f"{c:02x}" for c in rgb)
