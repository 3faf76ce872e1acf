"""Allow running the worker with ``python -m docgen.worker``."""

from docgen.worker.main import run

run()
