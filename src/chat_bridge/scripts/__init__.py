"""Maintenance scripts for the chat bridge."""
