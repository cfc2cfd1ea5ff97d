"""Myamori: personal assistant with scheduled jobs and approval-gated tools."""

__version__ = "0.1.0"
