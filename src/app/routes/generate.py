"""
Generate Routes: 템플릿 업로드 → 문서 생성.

- POST /api/generate → 렌더링된 DOCX 또는 PDF 반환
- GET /api/generate/runs → 최근 run log 목록

규칙:
- 업로드 리소스는 모든 경로에서 정확히 한 번 해제 (finally)
- Run Log: 항상 완료 처리 (성공/실패/거절 모두)
- 에러 응답: detail = PolicyRejectError.to_dict() (항목별 목록 포함)
- 클라이언트 연결이 끊기면 변환 프로세스까지 취소
"""

import asyncio
import json
import logging
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import quote

from fastapi import APIRouter, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

from src.app.services.generate import GeneratedDocument, GenerationService
from src.core.ids import sanitize_for_filename
from src.core.logging import (
    complete_run_log,
    create_run_log,
    list_run_logs,
    load_run_log,
    save_run_log,
)
from src.core.storage import atomic_write_bytes
from src.domain.errors import ErrorCodes, PolicyRejectError
from src.domain.schemas import normalize_values, parse_output_format

logger = logging.getLogger(__name__)

api_router = APIRouter()  # API endpoints

T = TypeVar("T")

# 에러 코드 → HTTP 상태
STATUS_BY_CODE = {
    ErrorCodes.CORRUPT_ARCHIVE: 400,
    ErrorCodes.PART_NOT_FOUND: 400,
    ErrorCodes.INVALID_VALUES: 400,
    ErrorCodes.UNSUPPORTED_FORMAT: 400,
    ErrorCodes.TEMPLATE_ERROR: 422,
    ErrorCodes.BACKEND_ERROR: 502,
    ErrorCodes.BACKEND_UNAVAILABLE: 503,
    ErrorCodes.CONVERSION_TIMEOUT: 504,
}

# nginx 관례: 클라이언트가 응답 전에 연결을 닫음
CLIENT_CLOSED_REQUEST = 499

DISCONNECT_POLL_SECONDS = 0.5


# =============================================================================
# API Routes
# =============================================================================

@api_router.post("")
async def generate_document(
    request: Request,
    template: UploadFile | None = File(None),
    data: str = Form("{}"),
    output_format: str = Form("docx", alias="outputFormat"),
) -> Response:
    """
    템플릿 + 값 → 최종 문서.

    Args:
        template: DOCX 템플릿 파일
        data: 키 → 값 JSON (반복 영역은 객체 배열)
        output_format: docx (기본) 또는 pdf

    Returns:
        문서 바이트 (Content-Disposition: attachment)
    """
    service: GenerationService = request.app.state.generation_service
    config: dict = request.app.state.config

    template_name = (template.filename if template else None) or ""
    run_log = create_run_log(template_name, output_format)

    success = False
    result: GeneratedDocument | None = None
    error_code: str | None = None
    error_context: dict[str, Any] | None = None

    try:
        if template is None or not template.filename:
            raise HTTPException(
                status_code=400,
                detail={"code": "NO_FILE", "message": "No file uploaded."},
            )

        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise PolicyRejectError(
                ErrorCodes.INVALID_VALUES,
                reason="data must be valid JSON",
                error=str(e),
            ) from None

        values = normalize_values(parsed)
        target = parse_output_format(output_format)
        template_bytes = await template.read()

        result = await _run_until_disconnect(
            request,
            service.generate(template_bytes, template_name, values, target),
        )

        deliverables_dir = config.get("paths", {}).get("deliverables_dir")
        if deliverables_dir:
            stem = sanitize_for_filename(Path(result.filename).stem)
            atomic_write_bytes(
                Path(deliverables_dir) / f"{run_log.run_id}_{stem}{result.output_format.extension}",
                result.content,
            )

        success = True
        return Response(
            content=result.content,
            media_type=result.media_type,
            headers={"Content-Disposition": _content_disposition(result.filename)},
        )

    except PolicyRejectError as e:
        error_code = e.code
        error_context = e.to_dict()
        raise HTTPException(
            status_code=STATUS_BY_CODE.get(e.code, 500),
            detail=e.to_dict(),
        ) from e

    except HTTPException as e:
        # NO_FILE, CLIENT_DISCONNECTED
        if isinstance(e.detail, dict):
            error_code = e.detail.get("code")
            error_context = e.detail
        raise

    except Exception as e:
        logger.error(f"Unexpected error while generating document: {e}", exc_info=True)
        error_code = ErrorCodes.INTERNAL_ERROR
        error_context = {"error": str(e)}
        raise HTTPException(
            status_code=500,
            detail={"code": ErrorCodes.INTERNAL_ERROR, "message": "An internal server error occurred."},
        ) from e

    finally:
        if template is not None:
            await template.close()

        complete_run_log(
            run_log=run_log,
            success=success,
            output_filename=result.filename if success and result else None,
            output_size=len(result.content) if success and result else None,
            error_code=error_code,
            error_context=error_context,
        )
        logs_dir = config.get("paths", {}).get("logs_dir")
        if logs_dir:
            try:
                save_run_log(run_log, Path(logs_dir))
            except (OSError, TypeError, ValueError) as e:
                # 저장 실패는 응답에 영향 없음
                logger.warning(f"Failed to save run log {run_log.run_id}: {e}")


@api_router.get("/runs")
async def list_runs(request: Request, limit: int = Query(20, ge=1)) -> dict[str, Any]:
    """최근 run log 목록 (logs_dir 미설정 시 빈 목록, 읽을 수 없는 파일은 건너뜀)."""
    config: dict = request.app.state.config
    logs_dir = config.get("paths", {}).get("logs_dir")
    if not logs_dir:
        return {"runs": []}

    runs: list[dict[str, Any]] = []
    for path in list_run_logs(Path(logs_dir)):
        if len(runs) >= limit:
            break
        try:
            runs.append(load_run_log(path))
        except (OSError, ValueError) as e:
            # json.JSONDecodeError, UnicodeDecodeError 포함
            logger.warning(f"Skipping unreadable run log {path.name}: {e}")
    return {"runs": runs}


# =============================================================================
# Helpers
# =============================================================================

async def _run_until_disconnect(request: Request, work: Awaitable[T]) -> T:
    """
    클라이언트 연결을 감시하며 작업 실행.

    연결이 끊기면 작업을 취소 → ConversionBroker가 백엔드 프로세스 종료.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.warning("Client disconnected, cancelling document generation")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                raise HTTPException(
                    status_code=CLIENT_CLOSED_REQUEST,
                    detail={"code": "CLIENT_DISCONNECTED"},
                )
    finally:
        if not task.done():
            task.cancel()


def _content_disposition(filename: str) -> str:
    """attachment 헤더 (비ASCII 파일명은 RFC 5987 filename*)."""
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'
