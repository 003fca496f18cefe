"""Core building blocks of the orchestrator."""
