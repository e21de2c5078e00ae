"""HTTP surface for the chat orchestrator."""
