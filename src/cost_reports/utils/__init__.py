"""Shared helpers for the provider clients."""
