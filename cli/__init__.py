"""Operator CLI for the Solaris telemetry service; the Typer app lives in ``cli.app``."""
