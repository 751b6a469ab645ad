"""
Token Scanner: 파트 XML에서 placeholder 토큰 인식.

문제:
- Word는 서식 변경/맞춤법 검사 등으로 "{name}" 하나를 여러 w:r/w:t로 쪼갬
  예: <w:t>{na</w:t></w:r><w:r><w:rPr><w:b/></w:rPr><w:t>me}</w:t>
- raw XML에 정규식을 적용하면 이런 토큰을 놓치거나 마크업을 깨뜨림

접근:
- 문단(w:p)마다 자신의 w:t 텍스트를 이어붙인 "논리 텍스트" 생성
- TextRun 목록(side table)으로 논리 오프셋 → w:t 요소 역매핑
- 토큰 인식은 논리 텍스트에서만 수행 → 마크업 구조와 분리
- 문제는 예외로 던지지 않고 문단에 기록 (렌더러가 전체 수집)
"""

from collections.abc import Iterator
from dataclasses import dataclass, field

from docx.oxml.ns import qn
from lxml import etree

from src.domain.constants import (
    DEFAULT_CLOSE_DELIMITER,
    DEFAULT_OPEN_DELIMITER,
    DEFAULT_REPEAT_CLOSE_PREFIX,
    DEFAULT_REPEAT_OPEN_PREFIX,
)
from src.domain.errors import ErrorCodes, PolicyRejectError
from src.domain.schemas import TemplateProblem, TokenKind

W_P = qn("w:p")
W_R = qn("w:r")
W_T = qn("w:t")

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)


# =============================================================================
# Types
# =============================================================================


@dataclass
class TextRun:
    """논리 텍스트 [start, end) 구간을 담는 w:t 요소."""

    element: etree._Element
    start: int
    end: int

    @property
    def text(self) -> str:
        return self.element.text or ""


@dataclass(frozen=True)
class Token:
    """인식된 토큰. start/end는 구분자를 포함한 논리 오프셋."""

    kind: TokenKind
    key: str
    start: int
    end: int
    paragraph_index: int


@dataclass
class ScannedParagraph:
    """스캔된 문단: 논리 텍스트 + side table + 토큰 + 문제."""

    index: int
    element: etree._Element
    text: str
    runs: list[TextRun] = field(default_factory=list)
    tokens: list[Token] = field(default_factory=list)
    problems: list[TemplateProblem] = field(default_factory=list)

    def segments(self) -> Iterator[str | Token]:
        """리터럴 텍스트와 토큰을 문서 순서대로 반환."""
        cursor = 0
        for token in self.tokens:
            if token.start > cursor:
                yield self.text[cursor:token.start]
            yield token
            cursor = token.end
        if cursor < len(self.text):
            yield self.text[cursor:]

    def is_marker_only(self) -> bool:
        """토큰 하나만 있고 나머지는 공백인 문단 (반복 영역 마커용)."""
        if len(self.tokens) != 1:
            return False
        token = self.tokens[0]
        rest = self.text[:token.start] + self.text[token.end:]
        return not rest.strip()

    def rebind(self, element: etree._Element) -> "ScannedParagraph":
        """
        복제된 문단(deepcopy)에 같은 스캔 결과를 연결.

        구조가 동일하므로 w:t 요소를 순서대로 1:1 매핑하면
        기존 오프셋/토큰을 그대로 재사용 가능.
        """
        elements = list(iter_paragraph_text(element))
        runs = [
            TextRun(element=new, start=run.start, end=run.end)
            for run, new in zip(self.runs, elements, strict=True)
        ]
        return ScannedParagraph(
            index=self.index,
            element=element,
            text=self.text,
            runs=runs,
            tokens=list(self.tokens),
            problems=[],
        )


# =============================================================================
# XML helpers
# =============================================================================


def parse_part(xml: bytes, part_name: str) -> etree._Element:
    """
    파트 XML 파싱.

    Raises:
        PolicyRejectError: CORRUPT_ARCHIVE (텍스트 파트 XML 손상)
    """
    try:
        return etree.fromstring(xml, _PARSER)
    except etree.XMLSyntaxError as e:
        raise PolicyRejectError(
            ErrorCodes.CORRUPT_ARCHIVE,
            reason="invalid XML in text part",
            part=part_name,
            error=str(e),
        ) from e


def serialize_part(root: etree._Element) -> bytes:
    """파트 XML 직렬화 (XML 선언/standalone 유지)."""
    docinfo = root.getroottree().docinfo
    return etree.tostring(
        root,
        xml_declaration=True,
        encoding="UTF-8",
        standalone=docinfo.standalone,
    )


def owning_paragraph(element: etree._Element) -> etree._Element | None:
    """가장 가까운 상위 w:p."""
    parent = element.getparent()
    while parent is not None and parent.tag != W_P:
        parent = parent.getparent()
    return parent


def iter_paragraph_text(paragraph: etree._Element) -> Iterator[etree._Element]:
    """
    문단 자신의 w:t 요소 (문서 순서).

    텍스트 상자 등 중첩 문단의 w:t는 제외 (중첩 문단이 따로 스캔됨).
    """
    for t in paragraph.iter(W_T):
        if owning_paragraph(t) is paragraph:
            yield t


# =============================================================================
# Scanner
# =============================================================================


class TokenScanner:
    """
    파트 단위 토큰 스캐너.

    Usage:
        scanner = TokenScanner()
        for paragraph in scanner.scan_part(xml_bytes, "word/document.xml"):
            for segment in paragraph.segments():
                ...
    """

    def __init__(
        self,
        open_delimiter: str = DEFAULT_OPEN_DELIMITER,
        close_delimiter: str = DEFAULT_CLOSE_DELIMITER,
        repeat_open_prefix: str = DEFAULT_REPEAT_OPEN_PREFIX,
        repeat_close_prefix: str = DEFAULT_REPEAT_CLOSE_PREFIX,
    ):
        if not open_delimiter or not close_delimiter:
            raise ValueError("delimiters must be non-empty")
        if open_delimiter == close_delimiter:
            raise ValueError("open and close delimiters must differ")
        self.open_delimiter = open_delimiter
        self.close_delimiter = close_delimiter
        self.repeat_open_prefix = repeat_open_prefix
        self.repeat_close_prefix = repeat_close_prefix

    def scan_part(self, xml: bytes, part_name: str) -> Iterator[ScannedParagraph]:
        """XML 바이트를 파싱한 뒤 스캔 (읽기 전용 용도)."""
        root = parse_part(xml, part_name)
        yield from self.scan(root, part_name)

    def scan(self, root: etree._Element, part_name: str) -> Iterator[ScannedParagraph]:
        """
        파싱된 파트의 모든 문단을 문서 순서대로 스캔 (lazy).

        Args:
            root: 파트 루트 요소
            part_name: 문제 보고용 파트 이름
        """
        for index, paragraph in enumerate(root.iter(W_P)):
            runs: list[TextRun] = []
            offset = 0
            for t in iter_paragraph_text(paragraph):
                text = t.text or ""
                runs.append(TextRun(element=t, start=offset, end=offset + len(text)))
                offset += len(text)

            text = "".join(run.text for run in runs)
            tokens, problems = self.scan_text(text, part_name, index)
            yield ScannedParagraph(
                index=index,
                element=paragraph,
                text=text,
                runs=runs,
                tokens=tokens,
                problems=problems,
            )

    def scan_text(
        self,
        text: str,
        part_name: str,
        paragraph_index: int,
    ) -> tuple[list[Token], list[TemplateProblem]]:
        """
        논리 텍스트 한 문단에서 토큰 인식.

        Returns:
            (토큰 목록, 문제 목록)
        """
        open_d, close_d = self.open_delimiter, self.close_delimiter
        tokens: list[Token] = []
        problems: list[TemplateProblem] = []

        def problem(code: str, message: str, key: str = "") -> None:
            problems.append(
                TemplateProblem(
                    code=code,
                    part=part_name,
                    paragraph_index=paragraph_index,
                    key=key,
                    message=message,
                )
            )

        open_at: int | None = None
        i = 0
        while i < len(text):
            if text.startswith(open_d, i):
                if open_at is not None:
                    # 중첩 금지: 앞의 열린 토큰은 버리고 새 위치에서 재시작
                    problem(
                        ErrorCodes.MALFORMED_TOKEN,
                        f"Nested open delimiter inside '{text[open_at:i]}'",
                        key=text[open_at + len(open_d):i].strip(),
                    )
                open_at = i
                i += len(open_d)
                continue

            if text.startswith(close_d, i):
                end = i + len(close_d)
                if open_at is None:
                    problem(
                        ErrorCodes.UNMATCHED_CLOSE_DELIMITER,
                        f"Close delimiter '{close_d}' without preceding open delimiter",
                    )
                else:
                    raw = text[open_at + len(open_d):i]
                    token = self._classify(raw, open_at, end, paragraph_index)
                    if token is None:
                        problem(
                            ErrorCodes.MALFORMED_TOKEN,
                            f"Empty tag '{text[open_at:end]}'",
                        )
                    else:
                        tokens.append(token)
                    open_at = None
                i = end
                continue

            i += 1

        if open_at is not None:
            problem(
                ErrorCodes.MALFORMED_TOKEN,
                f"Unclosed tag '{text[open_at:]}'",
                key=text[open_at + len(open_d):].strip(),
            )

        return tokens, problems

    def _classify(
        self,
        raw: str,
        start: int,
        end: int,
        paragraph_index: int,
    ) -> Token | None:
        key = raw.strip()
        kind = TokenKind.PLACEHOLDER
        if self.repeat_open_prefix and key.startswith(self.repeat_open_prefix):
            kind = TokenKind.REPEAT_OPEN
            key = key[len(self.repeat_open_prefix):].strip()
        elif self.repeat_close_prefix and key.startswith(self.repeat_close_prefix):
            kind = TokenKind.REPEAT_CLOSE
            key = key[len(self.repeat_close_prefix):].strip()

        if not key:
            return None
        return Token(kind=kind, key=key, start=start, end=end, paragraph_index=paragraph_index)
