"""docgen conversion worker.

- job: ConversionJob payload model and scratch-file handling
- processor: one message through download, conversion and callback
- main: the consume loop, job limit, signal handling and exit codes
"""

from docgen.worker.job import ConversionJob, WorkingFiles
from docgen.worker.main import Worker, WorkerExit, run
from docgen.worker.processor import JobProcessor

__all__ = [
    "ConversionJob",
    "JobProcessor",
    "Worker",
    "WorkerExit",
    "WorkingFiles",
    "run",
]
