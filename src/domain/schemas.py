"""
Data schemas for the pipeline.

규칙:
- ValueSet: 키 대소문자 구분, 렌더링 중 변경 금지
- 값은 문자열 또는 반복 영역용 ValueSet 목록만 허용
- 누락 키는 빈 문자열이 아니라 에러
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.domain.errors import ErrorCodes, PolicyRejectError

# =============================================================================
# Formats
# =============================================================================

class OutputFormat(str, Enum):
    """지원 출력 형식."""
    DOCX = "docx"  # 원본 패키지 형식 (변환 없음)
    PDF = "pdf"    # 고정 레이아웃 (외부 변환기 필요)

    @property
    def extension(self) -> str:
        return f".{self.value}"


def parse_output_format(value: str | None) -> OutputFormat:
    """
    요청 문자열 → OutputFormat.

    Raises:
        PolicyRejectError: UNSUPPORTED_FORMAT
    """
    normalized = (value or OutputFormat.DOCX.value).strip().lower().lstrip(".")
    try:
        return OutputFormat(normalized)
    except ValueError:
        raise PolicyRejectError(
            ErrorCodes.UNSUPPORTED_FORMAT,
            requested=value,
            supported=[f.value for f in OutputFormat],
        ) from None


# =============================================================================
# Template Schemas
# =============================================================================

class TokenKind(str, Enum):
    """스캐너가 인식하는 토큰 종류."""
    PLACEHOLDER = "placeholder"    # {key}
    REPEAT_OPEN = "repeat_open"    # {#items}
    REPEAT_CLOSE = "repeat_close"  # {/items}


@dataclass(frozen=True)
class TemplateProblem:
    """
    템플릿 문제 한 건.

    위치는 바이트 오프셋이 아닌 파트 이름 + 문단 번호로 표시
    (오프셋은 사용자에게 의미 없음).
    """
    code: str  # MISSING_KEY, MALFORMED_TOKEN, UNMATCHED_CLOSE_DELIMITER
    part: str
    paragraph_index: int
    key: str = ""
    message: str = ""

    def describe(self) -> str:
        where = f"{self.part} paragraph {self.paragraph_index}"
        if self.code == ErrorCodes.MISSING_KEY:
            return f"Missing value for '{self.key}' ({where})"
        detail = self.message or self.code
        return f"{detail} ({where})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "key": self.key,
            "part": self.part,
            "paragraph_index": self.paragraph_index,
            "message": self.message,
        }


def normalize_values(data: Any) -> dict[str, Any]:
    """
    요청 데이터 → ValueSet.

    허용:
    - str → 그대로
    - int/float/bool (JSON 편의) → str
    - list[dict] → 반복 영역용 ValueSet 목록 (각 항목도 재귀 정규화)

    Args:
        data: JSON 파싱 결과

    Returns:
        정규화된 ValueSet (새 dict, 입력은 변경하지 않음)

    Raises:
        PolicyRejectError: INVALID_VALUES
    """
    if not isinstance(data, Mapping):
        raise PolicyRejectError(
            ErrorCodes.INVALID_VALUES,
            reason="values must be a JSON object",
            got=type(data).__name__,
        )

    values: dict[str, Any] = {}
    for key, value in data.items():
        if not isinstance(key, str) or not key:
            raise PolicyRejectError(
                ErrorCodes.INVALID_VALUES,
                reason="keys must be non-empty strings",
                key=key,
            )
        values[key] = _normalize_value(key, value)
    return values


def _normalize_value(key: str, value: Any) -> Any:
    if isinstance(value, str):
        return value
    # bool은 int의 하위 타입이므로 먼저 처리
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, list):
        items = []
        for index, item in enumerate(value):
            if not isinstance(item, Mapping):
                raise PolicyRejectError(
                    ErrorCodes.INVALID_VALUES,
                    reason="repeat items must be objects",
                    key=key,
                    index=index,
                )
            items.append(normalize_values(item))
        return items
    raise PolicyRejectError(
        ErrorCodes.INVALID_VALUES,
        reason="unsupported value type",
        key=key,
        got=type(value).__name__,
    )


# =============================================================================
# Run Log Schema
# =============================================================================

@dataclass
class RunLog:
    """
    실행 로그.

    generate 요청 1건의 실행 결과 및 메타데이터.
    """
    run_id: str
    template_name: str
    output_format: str
    started_at: str  # ISO 8601
    finished_at: str | None = None
    result: str = "pending"  # pending, success, failed

    output_filename: str | None = None
    output_size: int | None = None
    missing_keys: list[str] = field(default_factory=list)

    # Error (if failed)
    error_code: str | None = None
    error_context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "template_name": self.template_name,
            "output_format": self.output_format,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": self.result,
            "output_filename": self.output_filename,
            "output_size": self.output_size,
            "missing_keys": self.missing_keys,
            "error_code": self.error_code,
            "error_context": self.error_context,
        }
