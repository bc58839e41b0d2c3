"""Parley realtime core and client helpers."""
