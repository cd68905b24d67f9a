"""Agent-facing integrations."""
