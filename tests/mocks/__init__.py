"""Test mocks for msde-cli.

Provides fake implementations for testing:
- FakeChannel: scripted stand-in for the remote channel
- elixir_inspect: renders strings the way the game server prints them
"""

from .remote import TTY_NOISE, FakeChannel, elixir_inspect

__all__ = ["FakeChannel", "elixir_inspect", "TTY_NOISE"]
