"""Invite lifecycle services."""
