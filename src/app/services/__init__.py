"""
Application Services.

역할:
- generate: 템플릿 렌더링 → (선택) PDF 변환 파이프라인
"""

from .generate import GeneratedDocument, GenerationService

__all__ = [
    "GenerationService",
    "GeneratedDocument",
]
