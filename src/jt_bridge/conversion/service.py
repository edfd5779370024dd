import asyncio
import logging
import os
from typing import Mapping

from ..errors import ValidationError
from .interfaces import ConverterGateway

logger = logging.getLogger(__name__)

TOOL_ARGUMENT = "ajt2jt"
SOURCE_ARGUMENT = "ajtSource"


class ConversionService:
    """Core domain service for the convertAjtToJt command.

    This service is framework-agnostic. It validates the command arguments
    and runs the blocking converter gateway in a worker thread, so a slow
    conversion never holds up the event loop that reads further messages.
    """

    def __init__(self, converter: ConverterGateway) -> None:
        self._converter = converter

    @property
    def converter(self) -> ConverterGateway:
        return self._converter

    def validate(self, arguments: Mapping[str, str]) -> tuple[str, str]:
        """Return (tool_path, source_text) or raise ValidationError.

        The checks run in order: converter path first, then source text.
        """
        tool_path = arguments.get(TOOL_ARGUMENT)
        if not tool_path or not tool_path.strip() or not os.path.isfile(tool_path):
            raise ValidationError(f"Path '{tool_path or ''}' to AJT to JT converter is not valid.")

        source = arguments.get(SOURCE_ARGUMENT)
        if not source or not source.strip():
            raise ValidationError("No AJT data provided.")
        return tool_path, source

    async def convert(self, arguments: Mapping[str, str]) -> bytes:
        tool_path, source = self.validate(arguments)
        logger.info("converting %d characters of AJT with %s", len(source), tool_path)
        jt = await asyncio.to_thread(self._converter.convert, tool_path, source)
        logger.info("conversion produced %d bytes of JT", len(jt))
        return jt
