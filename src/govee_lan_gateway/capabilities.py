"""Translate cloud-style capabilities into LAN commands."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from .control import LanController

CAPABILITY_ON_OFF = "devices.capabilities.on_off"
CAPABILITY_RANGE = "devices.capabilities.range"
CAPABILITY_COLOR_SETTING = "devices.capabilities.color_setting"


@dataclass(frozen=True)
class ControlCapability:
    """A vendor-agnostic control request for one capability."""

    type: str
    instance: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "instance": self.instance, "value": self.value}


@dataclass(frozen=True)
class PowerCommand:
    on: bool

    async def apply(self, controller: LanController, ip: str) -> None:
        if self.on:
            await controller.turn_on(ip)
        else:
            await controller.turn_off(ip)


@dataclass(frozen=True)
class BrightnessCommand:
    value: int

    async def apply(self, controller: LanController, ip: str) -> None:
        await controller.set_brightness(ip, self.value)


@dataclass(frozen=True)
class ColorCommand:
    r: int
    g: int
    b: int

    @classmethod
    def from_packed(cls, value: int) -> "ColorCommand":
        """Split a packed ``0xRRGGBB`` integer into channels."""

        packed = value & 0xFFFFFFFF
        return cls(r=(packed >> 16) & 0xFF, g=(packed >> 8) & 0xFF, b=packed & 0xFF)

    async def apply(self, controller: LanController, ip: str) -> None:
        await controller.set_color(ip, self.r, self.g, self.b)


LanCommand = Union[PowerCommand, BrightnessCommand, ColorCommand]


def _number(value: Any) -> Optional[float]:
    # JSON booleans arrive as bool, which Python treats as int.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def _rgb(value: Any) -> Optional[ColorCommand]:
    if not isinstance(value, Mapping):
        return None
    channels = [_number(value.get(key)) for key in ("r", "g", "b")]
    if any(channel is None for channel in channels):
        return None
    r, g, b = (int(channel) for channel in channels)  # type: ignore[arg-type]
    return ColorCommand(r=r, g=g, b=b)


def translate(capability: ControlCapability) -> Optional[LanCommand]:
    """Return the LAN command for ``capability`` or None when unsupported.

    Values of the wrong JSON type are treated as unsupported rather than as
    errors so the caller can still hand the request to the cloud API.
    """

    if capability.type == CAPABILITY_ON_OFF:
        number = _number(capability.value)
        if number is None:
            return None
        return PowerCommand(on=number == 1)

    if capability.type == CAPABILITY_RANGE:
        number = _number(capability.value)
        if number is None:
            return None
        return BrightnessCommand(value=int(number))

    if capability.type == CAPABILITY_COLOR_SETTING:
        number = _number(capability.value)
        if number is None:
            return _rgb(capability.value)
        return ColorCommand.from_packed(int(number))

    return None
