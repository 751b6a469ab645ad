"""
Domain Constants: 파이프라인 전역 상수.

OOXML 파트 이름, 파일명 정책, MIME 타입 등 시스템 전반에서 사용되는 값들.
"""

import os

# =============================================================================
# OOXML Parts (패키지 파트 이름)
# =============================================================================
# word/document.xml: 본문 (필수)
# word/headerN.xml, word/footerN.xml: 머리글/바닥글
# word/footnotes.xml, word/endnotes.xml: 각주/미주

MAIN_DOCUMENT_PART = "word/document.xml"

# 텍스트를 담는 파트 (정적 열거, 순서 = 문제 보고 순서)
DEFAULT_TEXT_PARTS = (
    MAIN_DOCUMENT_PART,
    "word/header*.xml",
    "word/footer*.xml",
    "word/footnotes.xml",
    "word/endnotes.xml",
)

WORDPROCESSING_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
XML_NS = "http://www.w3.org/XML/1998/namespace"

# =============================================================================
# Template Syntax (기본 구분자)
# =============================================================================
# 예: {name}, 반복 영역 {#items} ... {/items}

DEFAULT_OPEN_DELIMITER = "{"
DEFAULT_CLOSE_DELIMITER = "}"
DEFAULT_REPEAT_OPEN_PREFIX = "#"
DEFAULT_REPEAT_CLOSE_PREFIX = "/"

# =============================================================================
# Output Filenames (출력 파일명 정책)
# =============================================================================
# <입력 파일 stem><suffix>.<ext>  예: invoice.docx → invoice-generated.pdf

OUTPUT_FILENAME_SUFFIX = "-generated"
FALLBACK_FILENAME_STEM = "document"

# =============================================================================
# Run Log
# =============================================================================

RUN_ID_PREFIX = "RUN-"

# =============================================================================
# MIME Types
# =============================================================================

MIME_TYPES = {
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".pdf": "application/pdf",
    ".json": "application/json",
    ".yaml": "application/x-yaml",
    ".zip": "application/zip",
}


def get_mime_type(filename: str) -> str:
    """
    파일명에서 MIME 타입 추출.

    Args:
        filename: 파일명 (확장자 포함)

    Returns:
        MIME 타입 문자열 (알 수 없으면 octet-stream)
    """
    ext = os.path.splitext(filename)[1].lower()
    return MIME_TYPES.get(ext, "application/octet-stream")


def build_output_filename(
    original_name: str | None,
    extension: str,
    suffix: str = OUTPUT_FILENAME_SUFFIX,
) -> str:
    """
    출력 파일명 생성.

    Args:
        original_name: 업로드된 템플릿 파일명 (경로 포함 가능)
        extension: 출력 확장자 (".pdf" 또는 "pdf")
        suffix: stem 뒤에 붙일 고정 접미사

    Returns:
        예: "invoice-generated.pdf"
    """
    # 클라이언트가 보낸 경로 구분자 제거 (Windows 경로 포함)
    base = (original_name or "").replace("\\", "/").rsplit("/", 1)[-1]
    stem = os.path.splitext(base)[0].strip() or FALLBACK_FILENAME_STEM
    ext = extension if extension.startswith(".") else f".{extension}"
    return f"{stem}{suffix}{ext}"
