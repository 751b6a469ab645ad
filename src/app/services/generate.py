"""
Generation Service: 업로드된 템플릿 → 최종 문서.

흐름:
    DocxPackage.open → DocxRenderer.render → serialize
    → (출력 형식이 DOCX가 아니면) ConversionBroker.convert

규칙:
- 렌더링은 CPU 작업 → 스레드풀에서 실행 (이벤트 루프 차단 금지)
- 부분 성공 없음: 완전한 결과 또는 PolicyRejectError
- PDF 실패 시 DOCX로 조용히 대체하지 않음
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from fastapi.concurrency import run_in_threadpool

from src.convert.broker import ConversionBroker
from src.core.package import DocxPackage
from src.domain.constants import OUTPUT_FILENAME_SUFFIX, build_output_filename, get_mime_type
from src.domain.schemas import OutputFormat
from src.render.word import DocxRenderer

logger = logging.getLogger(__name__)


@dataclass
class GeneratedDocument:
    """생성 결과."""
    content: bytes
    filename: str
    media_type: str
    output_format: OutputFormat


class GenerationService:
    """
    템플릿 렌더링 + 형식 변환 파이프라인.

    Usage:
        service = GenerationService(DocxRenderer(), ConversionBroker())
        result = await service.generate(data, "invoice.docx", {"name": "Ada"}, OutputFormat.PDF)
    """

    def __init__(
        self,
        renderer: DocxRenderer,
        broker: ConversionBroker,
        output_suffix: str = OUTPUT_FILENAME_SUFFIX,
    ):
        self.renderer = renderer
        self.broker = broker
        self.output_suffix = output_suffix

    def render(self, template: bytes, values: Mapping[str, Any]) -> bytes:
        """패키지 열기 → 렌더링 → 직렬화 (동기)."""
        package = DocxPackage.open(template)
        self.renderer.render(package, values)
        return package.serialize()

    async def generate(
        self,
        template: bytes,
        template_name: str | None,
        values: Mapping[str, Any],
        output_format: OutputFormat,
        timeout: float | None = None,
    ) -> GeneratedDocument:
        """
        최종 문서 생성.

        Args:
            template: 업로드된 DOCX 바이트
            template_name: 업로드 파일명 (출력 파일명 생성용)
            values: 정규화된 ValueSet
            output_format: 출력 형식
            timeout: 변환 deadline (초, None이면 설정값)

        Returns:
            GeneratedDocument

        Raises:
            PolicyRejectError: CORRUPT_ARCHIVE, TEMPLATE_ERROR, 변환 오류 등
        """
        rendered = await run_in_threadpool(self.render, template, values)

        content = await self.broker.convert(
            rendered,
            OutputFormat.DOCX,
            output_format,
            timeout=timeout,
        )

        filename = build_output_filename(
            template_name,
            output_format.extension,
            suffix=self.output_suffix,
        )
        logger.info(f"Generated {filename} ({len(content)} bytes)")

        return GeneratedDocument(
            content=content,
            filename=filename,
            media_type=get_mime_type(filename),
            output_format=output_format,
        )
