import logging

from services.cancellation import Cancellation, combine_source, timeout_token
from services.classifier import (
    Intent,
    classify as default_classify,
    color_for,
    should_display_pending_action,
)
from services.govee import NetworkError

logger = logging.getLogger(__name__)


class EffectSequencer:
    """Runs the light sequence for one message.

    disable animations -> transient (breathe) color -> hold -> final state.
    The token is checked before every client call; a cancelled run raises
    Cancellation and leaves whatever was already sent in place, which is
    harmless since every call just sets a color or toggle.

    The steps run on a worker raced against a sequence_timeout timer, so a
    slow vendor cannot keep a run alive past that window. When the timer
    wins the run raises NetworkError and the worker stops at its next
    checkpoint.
    """

    def __init__(self, client, classify=default_classify, counters=None,
                 effect_hold=13.0, sequence_timeout=30.0):
        self.client = client
        self.classify = classify
        self.counters = counters
        self.effect_hold = effect_hold
        self.sequence_timeout = sequence_timeout

    def run(self, message, token):
        intent = self.classify(message)
        if intent is Intent.NONE:
            logger.debug("No intent in message, skipping lights")
            return intent

        if self.counters is not None:
            self.counters.record(intent)

        token.throw_if_cancelled("Cancelled before disabling effects")
        timer_source, timer = timeout_token(self.sequence_timeout)
        bounded = combine_source(token, timer)
        try:
            result = bounded.token.race(lambda: self._apply(intent, bounded.token))
        except Cancellation:
            # The worker saw the bounded token before the race did.
            result = None
        finally:
            bounded.dispose()
            timer_source.dispose()

        result = token.then_throw_if_cancelled("Cancelled while updating lights")(result)
        if result is None:
            raise NetworkError(
                "lights", f"sequence did not finish within {self.sequence_timeout}s"
            )
        return result

    def _apply(self, intent, token):
        token.throw_if_cancelled("Cancelled before disabling effects")
        self.client.disable_effects(token)

        if intent is Intent.PASS or should_display_pending_action(intent):
            token.throw_if_cancelled("Cancelled before transient effect")
            self.client.start_transient_effect(token, color_for(intent))

            # Hold the effect; a newer message cuts the hold short.
            token.wait(self.effect_hold)

        set_idle = self.counters is not None and self.counters.should_set_idle(intent)
        token.throw_if_cancelled("Cancelled before setting final state")
        self.client.set_static_state(token, intent, set_idle=set_idle)
        logger.info("Lights set to %s%s", intent.value, " (idle)" if set_idle else "")
        return intent
