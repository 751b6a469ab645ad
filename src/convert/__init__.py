"""
Convert layer: 렌더링된 DOCX → 다른 형식 (PDF).

역할:
- broker: deadline, 동시 실행 제한, 취소/정리
- backends: 외부 변환기 명령 (LibreOffice)
"""

from .backends import ConversionBackend, LibreOfficeBackend
from .broker import ConversionBroker, ConverterConfig

__all__ = [
    "ConversionBroker",
    "ConverterConfig",
    "ConversionBackend",
    "LibreOfficeBackend",
]
