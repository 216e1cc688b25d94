"""Operator CLI for the deployed revoke-session action.

The command surface is implemented with Typer and Rich; command payload
outputs stay machine-friendly JSON.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
