from dataclasses import dataclass
from typing import Protocol


class ConverterGateway(Protocol):
    def convert(self, tool_path: str, source_text: str) -> bytes:
        """Convert AJT source text into JT bytes using the tool at tool_path.
        This is a blocking call; callers should offload to threads if needed.
        Raises ExternalToolError when the tool reports a failure.
        """


@dataclass(frozen=True)
class ConversionJob:
    source_path: str
    target_path: str
