"""Govee LAN gateway - REST control of Govee devices over LAN with cloud fallback."""

__all__ = ["config", "logging", "protocol", "discovery", "control", "capabilities", "cloud", "gateway", "api", "metrics"]
__version__ = "1.0.0"
