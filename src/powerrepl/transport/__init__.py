"""Endpoint resolution and socket setup.

Binds and connects socket paths directly where the platform allows it,
and falls back to a loopback port recorded in a file where it does not.
"""
