"""
ID 생성: run_id

규칙:
- generate 요청마다 새 run_id 발급
- 파일명으로 사용 가능한 문자만
"""

import uuid
from datetime import UTC, datetime

from src.domain.constants import RUN_ID_PREFIX


def generate_run_id() -> str:
    """
    Run ID 생성.

    고유성 보장: UUID v4
    포맷: RUN-{timestamp}-{uuid[:8]}

    Returns:
        run_id 문자열
    """
    now = datetime.now(UTC)
    timestamp = now.strftime("%Y%m%d%H%M%S")
    unique = uuid.uuid4().hex[:8]

    return f"{RUN_ID_PREFIX}{timestamp}-{unique}"


def sanitize_for_filename(value: str, max_length: int = 40) -> str:
    """
    로그/산출물 파일명에 사용할 수 있도록 문자열 정리.

    - 공백/구분자 → 밑줄
    - 특수문자/비ASCII 제거
    - 최대 max_length자
    """
    sanitized = ""
    for c in value:
        if c.isascii() and c.isalnum():
            sanitized += c
        elif c in " _-.":
            sanitized += "_"
        # 그 외 문자는 무시 (한글 등 비ASCII 포함)

    # 연속 밑줄 정리
    while "__" in sanitized:
        sanitized = sanitized.replace("__", "_")

    sanitized = sanitized.strip("_")

    return sanitized[:max_length] if sanitized else "UNKNOWN"
