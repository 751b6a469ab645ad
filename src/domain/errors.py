"""
Error definitions for the pipeline.

규칙:
- 조용한 실패 금지 → PolicyRejectError로 명시적 실패
- 부분 성공 금지: 완전한 결과물 또는 항목별 실패 목록만 반환
- 하위 예외(zipfile, lxml, subprocess)는 모듈 경계에서 에러 코드로 변환
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.domain.schemas import TemplateProblem


class PolicyRejectError(Exception):
    """
    파이프라인 정책 위반 시 발생하는 에러.

    즉시 중단이 필요한 경우에만 사용:
    - 손상된 패키지 (zip 구조 오류, 본문 파트 누락)
    - 템플릿 토큰 오류, 누락 키
    - 변환 백엔드 타임아웃/실패/사용 불가

    Usage:
        raise PolicyRejectError("CORRUPT_ARCHIVE", reason="bad central directory")
    """

    def __init__(self, code: str, **context: Any) -> None:
        self.code = code
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"[{self.code}] {ctx_str}" if ctx_str else f"[{self.code}]"

    def to_dict(self) -> dict[str, Any]:
        """로그/JSON 직렬화용."""
        return {
            "code": self.code,
            **self.context,
        }


class TemplateRenderError(PolicyRejectError):
    """
    템플릿 렌더링 실패 (전체 파트에서 수집된 문제 목록).

    첫 번째 문제에서 멈추지 않고 모든 파트를 끝까지 스캔한 뒤
    한 번에 발생시킴 → 호출자는 한 번의 왕복으로 전체 목록을 받음.
    """

    def __init__(self, problems: list["TemplateProblem"]) -> None:
        self.problems = problems
        super().__init__(
            ErrorCodes.TEMPLATE_ERROR,
            problem_count=len(problems),
        )

    @property
    def missing_keys(self) -> list[str]:
        """누락 키 목록 (등장 순서, 중복 제거)."""
        keys: list[str] = []
        for problem in self.problems:
            if problem.code == ErrorCodes.MISSING_KEY and problem.key not in keys:
                keys.append(problem.key)
        return keys

    @property
    def malformed_tokens(self) -> list["TemplateProblem"]:
        """키 누락 이외의 토큰 구조 문제."""
        return [p for p in self.problems if p.code != ErrorCodes.MISSING_KEY]

    @property
    def message(self) -> str:
        """사람이 읽을 수 있는 한 줄씩의 요약."""
        return "\n".join(p.describe() for p in self.problems)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "missing_keys": self.missing_keys,
            "malformed_tokens": [p.to_dict() for p in self.malformed_tokens],
            "problems": [p.to_dict() for p in self.problems],
        }


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCodes:
    """에러 코드 상수. 새 코드 추가 시 routes/generate.py의 상태 코드 매핑도 갱신."""

    # === Package ===
    CORRUPT_ARCHIVE = "CORRUPT_ARCHIVE"
    PART_NOT_FOUND = "PART_NOT_FOUND"

    # === Template ===
    TEMPLATE_ERROR = "TEMPLATE_ERROR"  # aggregate
    MISSING_KEY = "MISSING_KEY"
    MALFORMED_TOKEN = "MALFORMED_TOKEN"
    UNMATCHED_CLOSE_DELIMITER = "UNMATCHED_CLOSE_DELIMITER"

    # === Request ===
    INVALID_VALUES = "INVALID_VALUES"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # === Conversion ===
    CONVERSION_TIMEOUT = "CONVERSION_TIMEOUT"
    BACKEND_ERROR = "BACKEND_ERROR"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
