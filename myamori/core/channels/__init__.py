"""Delivery channels."""

from myamori.core.channels.base import Channel, DeliveryError
from myamori.core.channels.telegram import TelegramChannel

__all__ = ["Channel", "DeliveryError", "TelegramChannel"]
