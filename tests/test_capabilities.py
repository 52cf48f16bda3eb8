from typing import Any

import pytest

from govee_lan_gateway.capabilities import (
    CAPABILITY_COLOR_SETTING,
    CAPABILITY_ON_OFF,
    CAPABILITY_RANGE,
    BrightnessCommand,
    ColorCommand,
    ControlCapability,
    PowerCommand,
    translate,
)


def _cap(type_: str, value: Any, instance: str = "x") -> ControlCapability:
    return ControlCapability(type=type_, instance=instance, value=value)


@pytest.mark.parametrize(
    "value,expected",
    [(1, True), (1.0, True), (0, False), (2, False)],
)
def test_on_off_translates_to_power(value: Any, expected: bool) -> None:
    assert translate(_cap(CAPABILITY_ON_OFF, value, "powerSwitch")) == PowerCommand(on=expected)


def test_range_translates_to_brightness() -> None:
    assert translate(_cap(CAPABILITY_RANGE, 55, "brightness")) == BrightnessCommand(value=55)
    assert translate(_cap(CAPABILITY_RANGE, 42.9, "brightness")) == BrightnessCommand(value=42)


def test_packed_red_decomposes() -> None:
    command = translate(_cap(CAPABILITY_COLOR_SETTING, 0xFF0000, "colorRgb"))
    assert command == ColorCommand(r=255, g=0, b=0)


def test_packed_color_channels() -> None:
    assert ColorCommand.from_packed(0x123456) == ColorCommand(r=0x12, g=0x34, b=0x56)
    assert translate(_cap(CAPABILITY_COLOR_SETTING, 16711680.0, "colorRgb")) == ColorCommand(r=255, g=0, b=0)


def test_raw_rgb_triple_is_accepted() -> None:
    command = translate(_cap(CAPABILITY_COLOR_SETTING, {"r": 1, "g": 2, "b": 3}, "colorRgb"))
    assert command == ColorCommand(r=1, g=2, b=3)


@pytest.mark.parametrize(
    "capability",
    [
        _cap(CAPABILITY_ON_OFF, "on"),
        _cap(CAPABILITY_ON_OFF, True),
        _cap(CAPABILITY_ON_OFF, None),
        _cap(CAPABILITY_RANGE, "50"),
        _cap(CAPABILITY_RANGE, float("nan")),
        _cap(CAPABILITY_COLOR_SETTING, "#ff0000"),
        _cap(CAPABILITY_COLOR_SETTING, {"r": 1, "g": 2}),
        _cap("devices.capabilities.mode", 1, "nightlightScene"),
        _cap("devices.capabilities.dynamic_scene", {"id": 1}, "lightScene"),
    ],
)
def test_untranslatable_values_are_unsupported(capability: ControlCapability) -> None:
    assert translate(capability) is None
