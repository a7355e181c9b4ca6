"""bulkdeploy package.

Public entrypoints:
- bulkdeploy.runner.run_deployment: process one deployment file programmatically
- bulkdeploy.controller.deploy: import bundles into destinations with retry
- bulkdeploy.cli.main: command-line entrypoint

Internal modules may change without notice.
"""

from __future__ import annotations

from bulkdeploy.controller import RetryPolicy, deploy, run_cycle
from bulkdeploy.runner import run_deployment

__all__ = ["RetryPolicy", "deploy", "run_cycle", "run_deployment"]
