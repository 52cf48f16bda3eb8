"""Govee LAN wire format.

Every datagram is a JSON object holding a single ``msg`` envelope::

    {"msg": {"cmd": "<command>", "data": {...}}}

Scan requests are multicast to the discovery group, scan responses come back
on the reply port, and control requests are unicast to the device control
port. Only ``devStatus`` produces a control response. Optional response fields
are omitted on the wire when unset; decoders accept them missing.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

CMD_SCAN = "scan"
CMD_TURN = "turn"
CMD_BRIGHTNESS = "brightness"
CMD_COLOR = "colorwc"
CMD_STATUS = "devStatus"

CONTROL_COMMANDS = frozenset({CMD_TURN, CMD_BRIGHTNESS, CMD_COLOR, CMD_STATUS})

SCAN_ACCOUNT_TOPIC = "reserve"


class ProtocolError(ValueError):
    """Raised when a datagram cannot be encoded or decoded."""


@dataclass(frozen=True)
class Color:
    """RGB triple as carried by ``colorwc`` and ``devStatus``."""

    r: int
    g: int
    b: int

    def to_dict(self) -> Dict[str, int]:
        return {"r": self.r, "g": self.g, "b": self.b}


@dataclass(frozen=True)
class ScanResult:
    """One scan response from a device on the local network."""

    ip: str
    device: str
    sku: str
    ble_version_hard: str = ""
    ble_version_soft: str = ""
    wifi_version_hard: str = ""
    wifi_version_soft: str = ""
    cmd: str = CMD_SCAN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "msg": {
                "cmd": self.cmd,
                "data": {
                    "ip": self.ip,
                    "device": self.device,
                    "sku": self.sku,
                    "bleVersionHard": self.ble_version_hard,
                    "bleVersionSoft": self.ble_version_soft,
                    "wifiVersionHard": self.wifi_version_hard,
                    "wifiVersionSoft": self.wifi_version_soft,
                },
            }
        }


@dataclass(frozen=True)
class ControlRequest:
    """A single LAN command sent to a device."""

    cmd: str
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def turn(cls, on: bool) -> "ControlRequest":
        return cls(CMD_TURN, {"value": 1 if on else 0})

    @classmethod
    def brightness(cls, value: int) -> "ControlRequest":
        return cls(CMD_BRIGHTNESS, {"value": value})

    @classmethod
    def color(cls, color: Color, kelvin: int = 0) -> "ControlRequest":
        # kelvin 0 tells the firmware to use the RGB values.
        return cls(CMD_COLOR, {"color": color.to_dict(), "colorTemInKelvin": kelvin})

    @classmethod
    def status(cls) -> "ControlRequest":
        return cls(CMD_STATUS, {})

    @property
    def expects_reply(self) -> bool:
        return self.cmd == CMD_STATUS

    def to_dict(self) -> Dict[str, Any]:
        return {"msg": {"cmd": self.cmd, "data": dict(self.data)}}


@dataclass(frozen=True)
class ControlResponse:
    """Device state reported in reply to ``devStatus``."""

    cmd: str = CMD_STATUS
    on_off: Optional[int] = None
    brightness: Optional[int] = None
    color: Optional[Color] = None
    color_tem_in_kelvin: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.on_off is not None:
            data["onOff"] = self.on_off
        if self.brightness is not None:
            data["brightness"] = self.brightness
        if self.color is not None:
            data["color"] = self.color.to_dict()
        if self.color_tem_in_kelvin is not None:
            data["colorTemInKelvin"] = self.color_tem_in_kelvin
        return {"msg": {"cmd": self.cmd, "data": data}}


def scan_request() -> Dict[str, Any]:
    """Return the multicast scan request payload."""

    return {"msg": {"cmd": CMD_SCAN, "data": {"account_topic": SCAN_ACCOUNT_TOPIC}}}


def encode_message(message: Any) -> bytes:
    """Serialize a message (or a plain mapping) to compact UTF-8 JSON."""

    payload = message.to_dict() if hasattr(message, "to_dict") else message
    try:
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"failed to encode message: {exc}") from exc


def _envelope(data: bytes) -> Mapping[str, Any]:
    try:
        payload = json.loads(data.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ProtocolError("datagram is not valid UTF-8") from exc
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"datagram is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ProtocolError("datagram is not a JSON object")
    msg = payload.get("msg")
    if not isinstance(msg, Mapping):
        raise ProtocolError("datagram has no msg envelope")
    body = msg.get("data", {})
    if not isinstance(body, Mapping):
        raise ProtocolError("msg.data is not an object")
    return {"cmd": msg.get("cmd", ""), "data": body}


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _optional_int(data: Mapping[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"{key} must be a number")
    return int(value)


def decode_scan_response(data: bytes) -> ScanResult:
    """Decode a scan response datagram."""

    envelope = _envelope(data)
    body = envelope["data"]
    return ScanResult(
        cmd=str(envelope["cmd"]),
        ip=_string(body, "ip"),
        device=_string(body, "device"),
        sku=_string(body, "sku"),
        ble_version_hard=_string(body, "bleVersionHard"),
        ble_version_soft=_string(body, "bleVersionSoft"),
        wifi_version_hard=_string(body, "wifiVersionHard"),
        wifi_version_soft=_string(body, "wifiVersionSoft"),
    )


def decode_control_response(data: bytes) -> ControlResponse:
    """Decode a ``devStatus`` reply; every state field is optional."""

    envelope = _envelope(data)
    body = envelope["data"]
    color: Optional[Color] = None
    raw_color = body.get("color")
    if raw_color is not None:
        if not isinstance(raw_color, Mapping):
            raise ProtocolError("color must be an object")
        color = Color(
            r=_optional_int(raw_color, "r") or 0,
            g=_optional_int(raw_color, "g") or 0,
            b=_optional_int(raw_color, "b") or 0,
        )
    return ControlResponse(
        cmd=str(envelope["cmd"]),
        on_off=_optional_int(body, "onOff"),
        brightness=_optional_int(body, "brightness"),
        color=color,
        color_tem_in_kelvin=_optional_int(body, "colorTemInKelvin"),
    )
