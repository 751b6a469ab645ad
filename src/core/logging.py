"""
Run logging: generate 요청 단위 실행 기록.

규칙:
- 성공/실패/거절 모두 기록 (라우트의 finally에서 완료 처리)
- 실패 시 error_code + error_context 필수
- logs_dir 설정 시 run_<run_id>.json으로 원자적 저장
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.core.ids import generate_run_id
from src.core.storage import atomic_write_json
from src.domain.schemas import RunLog

# =============================================================================
# Run Log Management
# =============================================================================


def create_run_log(template_name: str, output_format: str) -> RunLog:
    """
    새 RunLog 생성.

    Args:
        template_name: 업로드된 템플릿 파일명
        output_format: 요청된 출력 형식

    Returns:
        초기화된 RunLog
    """
    now = datetime.now(UTC).isoformat()

    return RunLog(
        run_id=generate_run_id(),
        template_name=template_name,
        output_format=output_format,
        started_at=now,
        result="pending",
    )


def complete_run_log(
    run_log: RunLog,
    success: bool,
    output_filename: str | None = None,
    output_size: int | None = None,
    error_code: str | None = None,
    error_context: dict[str, Any] | None = None,
) -> None:
    """
    RunLog 완료 처리.

    Args:
        run_log: RunLog 인스턴스
        success: 성공 여부
        output_filename: 응답 파일명 (성공 시)
        output_size: 출력 바이트 수 (성공 시)
        error_code: 에러 코드 (실패 시)
        error_context: 에러 컨텍스트 (실패 시)
    """
    run_log.finished_at = datetime.now(UTC).isoformat()
    run_log.result = "success" if success else "failed"
    run_log.output_filename = output_filename
    run_log.output_size = output_size

    if not success:
        run_log.error_code = error_code
        run_log.error_context = error_context
        if error_context:
            run_log.missing_keys = list(error_context.get("missing_keys", []))


def save_run_log(run_log: RunLog, logs_dir: Path) -> Path:
    """
    RunLog를 파일로 저장.

    Args:
        run_log: RunLog 인스턴스
        logs_dir: 로그 디렉터리 경로

    Returns:
        저장된 파일 경로
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"run_{run_log.run_id}.json"
    atomic_write_json(log_path, run_log.to_dict())
    return log_path


def load_run_log(log_path: Path) -> dict[str, Any]:
    """RunLog 파일 로드."""
    data: dict[str, Any] = json.loads(log_path.read_text(encoding="utf-8"))
    return data


def list_run_logs(logs_dir: Path) -> list[Path]:
    """
    로그 디렉터리의 모든 run log 파일 목록.

    Returns:
        로그 파일 경로 목록 (최신순)
    """
    if not logs_dir.exists():
        return []

    logs = list(logs_dir.glob("run_*.json"))
    logs.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    return logs
