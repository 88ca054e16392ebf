"""Agora forum interaction and moderation engine."""
