"""Helpers shared between the API and the scripts."""
