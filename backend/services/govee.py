"""Govee cloud API client used by the effect sequencer.

Every call takes the run's cancellation token. Each request is raced against
a combined token (run token + per-request timeout), so a hung request never
holds a run longer than request_timeout and a superseded run stops waiting
for its in-flight request immediately.
"""

import logging
import uuid

import requests

from services.cancellation import NONE, combine_source, timeout_token
from services.classifier import color_for, rgb_to_int

logger = logging.getLogger(__name__)

GOVEE_BASE = "https://openapi.api.govee.com/router/api/v1"

COLOR_CAPABILITY = {"type": "devices.capabilities.color_setting", "instance": "colorRgb"}
GRADIENT_CAPABILITY = {"type": "devices.capabilities.toggle", "instance": "gradientToggle"}
SCENE_CAPABILITY = {"type": "devices.capabilities.dynamic_scene", "instance": "lightScene"}


class NetworkError(Exception):
    """A Govee request failed at the transport or HTTP level."""

    def __init__(self, device_id, message, status_code=None):
        super().__init__(f"{device_id}: {message}")
        self.device_id = device_id
        self.status_code = status_code


class GoveeService:
    def __init__(self, api_key, device_ids=None, request_timeout=5.0,
                 breathe_scene="Breathe", session=None):
        self.api_key = api_key
        self.request_timeout = request_timeout
        self.breathe_scene = breathe_scene
        self._device_ids = list(device_ids or [])
        self._session = session or requests.Session()
        self._devices_cache = None
        self._scenes_cache = {}

    @property
    def headers(self):
        return {
            "Content-Type": "application/json",
            "Govee-API-Key": self.api_key,
        }

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, token, method, path, target, json=None):
        """Issue one request, raced against cancellation and the timeout.

        Raises Cancellation if the run token is cancelled before or during
        the request, NetworkError on transport/HTTP failure or timeout.
        """
        token.throw_if_cancelled(f"Cancelled before {method} {path} for {target}")
        url = f"{GOVEE_BASE}{path}"
        timeout_source, timeout = timeout_token(self.request_timeout)
        request_source = combine_source(token, timeout)
        try:
            resp = request_source.token.race(
                lambda: self._session.request(
                    method, url, headers=self.headers, json=json,
                    timeout=self.request_timeout,
                )
            )
        except requests.RequestException as exc:
            raise NetworkError(target, str(exc)) from exc
        finally:
            request_source.dispose()
            timeout_source.dispose()

        if resp is None:
            token.throw_if_cancelled(f"Cancelled during {method} {path} for {target}")
            raise NetworkError(target, f"timed out after {self.request_timeout}s")

        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            raise NetworkError(target, str(exc), status_code=resp.status_code) from exc
        return resp.json()

    # ------------------------------------------------------------------
    # Devices and scenes
    # ------------------------------------------------------------------

    def get_devices(self, token=NONE):
        """GET /user/devices — list all devices and their capabilities."""
        data = self._request(token, "GET", "/user/devices", "devices")
        self._devices_cache = data.get("data", [])
        return self._devices_cache

    def _find_device(self, token, device_id):
        """Look up a device's SKU from the cached device list."""
        if self._devices_cache is None:
            self.get_devices(token)
        for d in self._devices_cache:
            if d.get("device") == device_id:
                return d
        return None

    def device_ids(self, token=NONE):
        """Configured device IDs, or every device on the account."""
        if self._device_ids:
            return list(self._device_ids)
        if self._devices_cache is None:
            self.get_devices(token)
        return [d["device"] for d in self._devices_cache if d.get("device")]

    def get_scenes(self, token, device_id):
        """POST /device/scenes — dynamic scenes offered by a device."""
        if device_id in self._scenes_cache:
            return self._scenes_cache[device_id]
        device = self._find_device(token, device_id)
        if not device:
            return None
        data = self._request(token, "POST", "/device/scenes", device_id, json={
            "requestId": str(uuid.uuid4()),
            "payload": {"sku": device["sku"], "device": device_id},
        })
        self._scenes_cache[device_id] = data.get("payload", {})
        return self._scenes_cache[device_id]

    def _find_scene(self, token, device_id, name):
        payload = self.get_scenes(token, device_id) or {}
        for cap in payload.get("capabilities", []):
            if cap.get("instance") != SCENE_CAPABILITY["instance"]:
                continue
            for option in cap.get("parameters", {}).get("options", []):
                if option.get("name", "").lower() == name.lower():
                    return option.get("value")
        return None

    def control_device(self, token, device_id, capability):
        """Send a control command to one device.

        capability is a dict with type, instance and value, e.g.
        {"type": "devices.capabilities.on_off", "instance": "powerSwitch", "value": 1}
        Returns None if the device is unknown.
        """
        device = self._find_device(token, device_id)
        if not device:
            logger.warning("Govee device %s not found on account", device_id)
            return None
        return self._request(token, "POST", "/device/control", device_id, json={
            "requestId": str(uuid.uuid4()),
            "payload": {
                "sku": device["sku"],
                "device": device_id,
                "capability": capability,
            },
        })

    # ------------------------------------------------------------------
    # Lighting capabilities used by the sequencer
    # ------------------------------------------------------------------

    def disable_effects(self, token):
        """Stop any running animation on every device."""
        for device_id in self.device_ids(token):
            self.control_device(token, device_id, {**GRADIENT_CAPABILITY, "value": 0})

    def start_transient_effect(self, token, rgb):
        """Show rgb with the breathe scene where the device offers one."""
        for device_id in self.device_ids(token):
            self.control_device(token, device_id, {**COLOR_CAPABILITY, "value": rgb_to_int(rgb)})
            scene = self._find_scene(token, device_id, self.breathe_scene)
            if scene is None:
                logger.debug("No %r scene on %s, holding static color", self.breathe_scene, device_id)
                continue
            self.control_device(token, device_id, {**SCENE_CAPABILITY, "value": scene})

    def set_static_state(self, token, intent, set_idle=False):
        rgb = color_for(intent, set_idle)
        if rgb is None:
            return
        for device_id in self.device_ids(token):
            self.control_device(token, device_id, {**COLOR_CAPABILITY, "value": rgb_to_int(rgb)})
