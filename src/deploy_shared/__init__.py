"""Shared models, protocols, constants, and utilities for the deploy pipeline.

This package is the foundational layer used by ``deploy_orchestrator``.
It intentionally avoids collision with the ``src/shared/`` package, which
only carries process-wide concerns (logging, environment settings).
"""

__version__ = "1.4.0"
