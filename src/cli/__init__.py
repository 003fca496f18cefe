"""Command-line interface for the AI provider orchestrator."""
