"""HTTP control API for the hook scripts and the CLI."""

from .app import create_app, run_worker

__all__ = ['create_app', 'run_worker']
