"""
Render layer: 템플릿 + ValueSet → 렌더링된 DOCX.

역할:
- scanner: run으로 쪼개진 placeholder까지 인식
- word: 치환, 문단 반복, all-or-nothing 오류 수집
"""

from .scanner import ScannedParagraph, TextRun, Token, TokenScanner
from .word import DocxRenderer, RenderConfig, render_docx

__all__ = [
    "render_docx",
    "DocxRenderer",
    "RenderConfig",
    "TokenScanner",
    "ScannedParagraph",
    "TextRun",
    "Token",
]
