import logging
import os
import subprocess
import tempfile
from pathlib import Path

from ..errors import ExternalToolError
from .interfaces import ConversionJob, ConverterGateway

logger = logging.getLogger(__name__)

SOURCE_SUFFIX = ".ajt"
TARGET_SUFFIX = ".jt"

# Keeps console converters from flashing a window on Windows; 0 elsewhere.
_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


class SubprocessAjtConverter(ConverterGateway):
    """Runs the external ajt2jt executable against a pair of temp files."""

    def __init__(self, temp_dir: str | None = None) -> None:
        self._temp_dir = temp_dir

    def new_job(self) -> ConversionJob:
        fd, source = tempfile.mkstemp(suffix=SOURCE_SUFFIX, dir=self._temp_dir)
        os.close(fd)
        return ConversionJob(source_path=source, target_path=str(Path(source).with_suffix(TARGET_SUFFIX)))

    def convert(self, tool_path: str, source_text: str) -> bytes:
        job: ConversionJob | None = None
        try:
            job = self.new_job()
            with open(job.source_path, "w", encoding="utf-8") as f:
                f.write(source_text)

            logger.debug("running %s %s %s", tool_path, job.source_path, job.target_path)
            proc = subprocess.Popen(
                [tool_path, job.source_path, job.target_path],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                shell=False,
                creationflags=_NO_WINDOW,
            )
            # The tool signals failure through stderr, not its exit code.
            with proc:
                error = proc.stderr.read().decode("utf-8", errors="replace").strip()
                if error:
                    raise ExternalToolError(error)
                proc.wait()

            with open(job.target_path, "rb") as f:
                return f.read()
        finally:
            if job is not None:
                self.cleanup(job)

    @staticmethod
    def cleanup(job: ConversionJob) -> None:
        for path in (job.source_path, job.target_path):
            try:
                if os.path.exists(path):
                    os.remove(path)
            except OSError as e:
                logger.debug("could not remove temp file %s: %s", path, e)
