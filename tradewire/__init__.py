"""
tradewire: async client for a negotiated-trading venue.

Keeps one authenticated socket.io session alive, routes venue frames onto a
local event bus and drives the negotiation and confirmation protocols.
"""

__version__ = "0.1.0"
