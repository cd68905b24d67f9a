"""Credential profiles, OAuth refresh and scope-based capability gating."""
