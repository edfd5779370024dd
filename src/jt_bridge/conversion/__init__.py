"""
Domain layer for AJT to JT conversion.
Provides the converter gateway, its subprocess adapter and a service that
validates command arguments, so front-ends (WebSocket or others) can use the
same core logic.
"""

from .interfaces import ConversionJob, ConverterGateway
from .adapters import SubprocessAjtConverter
from .service import ConversionService
