"""Nova App Hub CLI — Typer-based command-line interface.

Provides the ``novahub`` command with subcommands for validating app
configurations, running each pipeline stage on its own (for split
deployments), running the whole pipeline, and inspecting the audit ledger.

All output uses Rich for formatted terminal display.
"""
