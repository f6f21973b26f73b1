"""Telegram side of the worker: transport, formatting, keyboards, routing, polling."""
