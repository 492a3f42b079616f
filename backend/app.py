import logging
import os
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.DEBUG if os.environ.get("LIGHTS_DEBUG") else logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s: %(message)s",
)

from flask import Flask
from flask_cors import CORS

import db
from config import load_settings
from routes.lights import lights_bp
from services.alert_counters import AlertCounters
from services.dispatch_queue import SingleFlightQueue
from services.govee import GoveeService
from services.sequencer import EffectSequencer

logger = logging.getLogger(__name__)


def build_queue(settings):
    """Wire Govee client -> sequencer -> single-flight queue."""
    govee = GoveeService(
        settings.govee_api_key,
        device_ids=settings.device_ids,
        request_timeout=settings.request_timeout,
        breathe_scene=settings.breathe_scene,
    )
    sequencer = EffectSequencer(
        govee,
        counters=AlertCounters(),
        effect_hold=settings.effect_hold,
        sequence_timeout=settings.sequence_timeout,
    )
    return SingleFlightQueue(sequencer.run)


def create_app(settings=None, lights_queue=None):
    settings = settings or load_settings()

    app = Flask(__name__)
    CORS(app)
    app.config["GOVEE_API_KEY"] = settings.govee_api_key

    db.DB_PATH = settings.db_path
    db.init_db()

    if lights_queue is None:
        lights_queue = build_queue(settings)
    lights_queue.start()
    app.extensions["lights_queue"] = lights_queue

    app.register_blueprint(lights_bp)

    if not settings.govee_api_key:
        logger.warning("GOVEE_API_KEY is not set, light updates will fail")
    return app


if __name__ == "__main__":
    settings = load_settings()
    app = create_app(settings)
    app.run(host="0.0.0.0", port=settings.port, debug=False)
