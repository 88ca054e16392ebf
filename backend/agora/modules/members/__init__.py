"""
Members Module - profiles, roles and bans.
"""

from agora.modules.members.ledger import ProfileLedger

__all__ = ["ProfileLedger"]
