"""
Word (DOCX) 렌더러: placeholder 치환 + 문단 반복.

역할:
- 텍스트 파트(본문, 머리글, 바닥글, 각주/미주)마다 TokenScanner 실행
- {key} → 값 치환 (토큰 첫 run의 서식 유지, 중간 run 제거)
- {#items} ... {/items} 문단 반복 영역 전개
- 모든 파트의 문제를 수집한 뒤 한 번에 TemplateRenderError
- all-or-nothing: 하나라도 실패하면 패키지는 변경되지 않음
"""

import copy
import fnmatch
import logging
from collections import ChainMap
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from docx.oxml.ns import qn
from lxml import etree

from src.core.package import DocxPackage
from src.domain.constants import (
    DEFAULT_CLOSE_DELIMITER,
    DEFAULT_OPEN_DELIMITER,
    DEFAULT_REPEAT_CLOSE_PREFIX,
    DEFAULT_REPEAT_OPEN_PREFIX,
    DEFAULT_TEXT_PARTS,
    XML_NS,
)
from src.domain.errors import ErrorCodes, TemplateRenderError
from src.domain.schemas import TemplateProblem, TokenKind, normalize_values
from src.render.scanner import (
    W_P,
    W_R,
    ScannedParagraph,
    Token,
    TokenScanner,
    parse_part,
    serialize_part,
)

logger = logging.getLogger(__name__)

W_BR = qn("w:br")
W_T = qn("w:t")
W_RPR = qn("w:rPr")
W_PPR = qn("w:pPr")
W_SECTPR = qn("w:sectPr")
W_TC = qn("w:tc")
XML_SPACE = f"{{{XML_NS}}}space"


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class RenderConfig:
    """렌더러 설정 (default.yaml의 template 섹션)."""

    open_delimiter: str = DEFAULT_OPEN_DELIMITER
    close_delimiter: str = DEFAULT_CLOSE_DELIMITER
    repeat_open_prefix: str = DEFAULT_REPEAT_OPEN_PREFIX
    repeat_close_prefix: str = DEFAULT_REPEAT_CLOSE_PREFIX
    linebreaks: bool = True
    text_parts: tuple[str, ...] = DEFAULT_TEXT_PARTS

    @classmethod
    def from_config(cls, config: dict) -> "RenderConfig":
        section = config.get("template", {}) or {}
        return cls(
            open_delimiter=section.get("open_delimiter", DEFAULT_OPEN_DELIMITER),
            close_delimiter=section.get("close_delimiter", DEFAULT_CLOSE_DELIMITER),
            repeat_open_prefix=section.get("repeat_open_prefix", DEFAULT_REPEAT_OPEN_PREFIX),
            repeat_close_prefix=section.get("repeat_close_prefix", DEFAULT_REPEAT_CLOSE_PREFIX),
            linebreaks=bool(section.get("linebreaks", True)),
            text_parts=tuple(section.get("text_parts") or DEFAULT_TEXT_PARTS),
        )


@dataclass
class RepeatRegion:
    """반복 영역: 마커 문단 사이의 형제 요소들."""

    key: str
    open_paragraph: ScannedParagraph
    close_paragraph: ScannedParagraph
    body: list[etree._Element]
    paragraphs: list[ScannedParagraph]


# =============================================================================
# Renderer
# =============================================================================


class DocxRenderer:
    """
    Word 문서 렌더러.

    Usage:
        renderer = DocxRenderer(RenderConfig())
        renderer.render(package, {"name": "Ada"})
        output = package.serialize()
    """

    def __init__(self, config: RenderConfig | None = None):
        self.config = config or RenderConfig()
        self.scanner = TokenScanner(
            open_delimiter=self.config.open_delimiter,
            close_delimiter=self.config.close_delimiter,
            repeat_open_prefix=self.config.repeat_open_prefix,
            repeat_close_prefix=self.config.repeat_close_prefix,
        )

    def text_parts(self, package: DocxPackage) -> list[str]:
        """텍스트를 담는 파트 이름 (설정 패턴 순서, 패턴 내에서는 아카이브 순서)."""
        names = package.names()
        parts: list[str] = []
        for pattern in self.config.text_parts:
            for name in names:
                if name not in parts and fnmatch.fnmatchcase(name, pattern):
                    parts.append(name)
        return parts

    def render(self, package: DocxPackage, values: Mapping[str, Any]) -> DocxPackage:
        """
        템플릿에 값을 채워 패키지 갱신.

        Args:
            package: 열린 템플릿 패키지
            values: ValueSet (normalize_values 결과)

        Returns:
            갱신된 같은 패키지

        Raises:
            TemplateRenderError: 누락 키/잘못된 토큰 (전체 목록)
            PolicyRejectError: CORRUPT_ARCHIVE (텍스트 파트 XML 손상)
        """
        problems: list[TemplateProblem] = []
        rendered: dict[str, bytes] = {}

        for part_name in self.text_parts(package):
            root = parse_part(package.part(part_name), part_name)
            paragraphs = list(self.scanner.scan(root, part_name))

            part_problems = [p for para in paragraphs for p in para.problems]
            if not part_problems and not any(para.tokens for para in paragraphs):
                continue  # 토큰 없는 파트는 원본 바이트 유지

            part_problems.extend(self._render_part(paragraphs, values, part_name))
            problems.extend(sorted(part_problems, key=lambda p: p.paragraph_index))
            rendered[part_name] = serialize_part(root)

        if problems:
            error = TemplateRenderError(_dedupe(problems))
            logger.info(
                f"Template rendering rejected: {len(error.problems)} problem(s), "
                f"missing keys={error.missing_keys}"
            )
            raise error

        for part_name, data in rendered.items():
            package.replace(part_name, data)

        logger.info(f"Rendered {len(rendered)} part(s): {list(rendered)}")
        return package

    def get_placeholders(self, package: DocxPackage) -> list[str]:
        """
        템플릿에서 사용된 키 목록 추출 (반복 영역 키 포함).

        Returns:
            정렬된 키 목록 (예: ["amount", "items", "name"])
        """
        keys: set[str] = set()
        for part_name in self.text_parts(package):
            for paragraph in self.scanner.scan_part(package.part(part_name), part_name):
                keys.update(token.key for token in paragraph.tokens)
        return sorted(keys)

    # -------------------------------------------------------------------------
    # Part rendering
    # -------------------------------------------------------------------------

    def _render_part(
        self,
        paragraphs: list[ScannedParagraph],
        values: Mapping[str, Any],
        part_name: str,
    ) -> list[TemplateProblem]:
        regions, problems = self._find_regions(paragraphs, part_name)

        in_region: set[etree._Element] = set()
        for region in regions:
            in_region.add(region.open_paragraph.element)
            in_region.add(region.close_paragraph.element)
            in_region.update(p.element for p in region.paragraphs)

        for paragraph in paragraphs:
            if paragraph.element not in in_region:
                problems.extend(self._substitute(paragraph, values, part_name))

        for region in regions:
            problems.extend(self._expand(region, values, part_name))

        return problems

    def _find_regions(
        self,
        paragraphs: list[ScannedParagraph],
        part_name: str,
    ) -> tuple[list[RepeatRegion], list[TemplateProblem]]:
        """반복 마커를 짝지어 RepeatRegion 목록 생성 (중첩 금지)."""
        regions: list[RepeatRegion] = []
        problems: list[TemplateProblem] = []
        opened: tuple[ScannedParagraph, Token] | None = None

        def problem(token: Token, message: str) -> None:
            problems.append(
                TemplateProblem(
                    code=ErrorCodes.MALFORMED_TOKEN,
                    part=part_name,
                    paragraph_index=token.paragraph_index,
                    key=token.key,
                    message=message,
                )
            )

        for paragraph in paragraphs:
            for token in paragraph.tokens:
                if token.kind is TokenKind.PLACEHOLDER:
                    continue

                if not paragraph.is_marker_only():
                    problem(token, f"Repeat marker '{token.key}' must be alone in its paragraph")
                    continue

                if token.kind is TokenKind.REPEAT_OPEN:
                    if opened is not None:
                        problem(token, f"Nested repeat '{token.key}' inside '{opened[1].key}'")
                        continue
                    opened = (paragraph, token)
                    continue

                # REPEAT_CLOSE
                if opened is None:
                    problem(token, f"Repeat close '{token.key}' without matching open")
                    continue
                open_paragraph, open_token = opened
                if token.key != open_token.key:
                    problem(token, f"Repeat close '{token.key}' does not match open '{open_token.key}'")
                    continue
                if paragraph.element.getparent() is not open_paragraph.element.getparent():
                    problem(token, f"Repeat '{token.key}' markers must share the same container")
                    opened = None
                    continue

                body = self._region_body(open_paragraph.element, paragraph.element)
                members: set[etree._Element] = {p for el in body for p in el.iter(W_P)}
                regions.append(
                    RepeatRegion(
                        key=token.key,
                        open_paragraph=open_paragraph,
                        close_paragraph=paragraph,
                        body=body,
                        paragraphs=[p for p in paragraphs if p.element in members],
                    )
                )
                opened = None

        if opened is not None:
            problem(opened[1], f"Unclosed repeat '{opened[1].key}'")

        return regions, problems

    @staticmethod
    def _region_body(
        open_element: etree._Element,
        close_element: etree._Element,
    ) -> list[etree._Element]:
        body = []
        for sibling in open_element.itersiblings():
            if sibling is close_element:
                break
            body.append(sibling)
        return body

    def _expand(
        self,
        region: RepeatRegion,
        values: Mapping[str, Any],
        part_name: str,
    ) -> list[TemplateProblem]:
        """반복 영역을 항목 수만큼 복제 후 치환. 마커와 원본은 제거."""
        problems: list[TemplateProblem] = []
        items = values.get(region.key)

        if region.key not in values:
            problems.append(
                TemplateProblem(
                    code=ErrorCodes.MISSING_KEY,
                    part=part_name,
                    paragraph_index=region.open_paragraph.index,
                    key=region.key,
                )
            )
        elif not isinstance(items, list):
            problems.append(
                TemplateProblem(
                    code=ErrorCodes.MALFORMED_TOKEN,
                    part=part_name,
                    paragraph_index=region.open_paragraph.index,
                    key=region.key,
                    message=f"Repeat '{region.key}' requires a list of value sets",
                )
            )

        anchor = region.close_paragraph.element
        for item in items if isinstance(items, list) else []:
            scope = ChainMap(item, values)
            for element in region.body:
                clone = copy.deepcopy(element)
                mapping = dict(zip(element.iter(W_P), clone.iter(W_P), strict=True))
                anchor.addprevious(clone)
                for paragraph in region.paragraphs:
                    if paragraph.element in mapping:
                        rebound = paragraph.rebind(mapping[paragraph.element])
                        problems.extend(self._substitute(rebound, scope, part_name))

        parent = anchor.getparent()
        for element in region.body:
            parent.remove(element)
        _remove_marker(region.open_paragraph.element)
        _remove_marker(region.close_paragraph.element)

        if parent.tag == W_TC and parent.find(W_P) is None:
            # 표 셀에는 문단이 최소 하나 있어야 함
            etree.SubElement(parent, W_P)

        return problems

    # -------------------------------------------------------------------------
    # Placeholder substitution
    # -------------------------------------------------------------------------

    def _substitute(
        self,
        paragraph: ScannedParagraph,
        scope: Mapping[str, Any],
        part_name: str,
    ) -> list[TemplateProblem]:
        problems: list[TemplateProblem] = []
        edits: list[tuple[Token, str]] = []

        for token in paragraph.tokens:
            if token.kind is not TokenKind.PLACEHOLDER:
                continue
            if token.key not in scope:
                problems.append(
                    TemplateProblem(
                        code=ErrorCodes.MISSING_KEY,
                        part=part_name,
                        paragraph_index=token.paragraph_index,
                        key=token.key,
                    )
                )
                continue
            value = scope[token.key]
            if not isinstance(value, str):
                problems.append(
                    TemplateProblem(
                        code=ErrorCodes.MALFORMED_TOKEN,
                        part=part_name,
                        paragraph_index=token.paragraph_index,
                        key=token.key,
                        message=f"'{token.key}' must be bound to a text value",
                    )
                )
                continue
            edits.append((token, value))

        if edits:
            self._apply_edits(paragraph, edits)
        return problems

    def _apply_edits(self, paragraph: ScannedParagraph, edits: list[tuple[Token, str]]) -> None:
        """
        논리 오프셋 기준 치환을 run 텍스트에 반영.

        뒤에서부터 적용하므로 앞쪽 토큰의 오프셋은 그대로 유효.
        값은 토큰이 시작하는 run에 들어가고, 걸쳐 있던 나머지 run은 비워짐.
        """
        runs = paragraph.runs
        texts = [run.text for run in runs]
        consumed: set[int] = set()

        for token, value in reversed(edits):
            first = _run_at(runs, token.start)
            last = _run_at(runs, token.end - 1)
            head = texts[first][:token.start - runs[first].start]
            tail = texts[last][token.end - runs[last].start:]
            if first == last:
                texts[first] = head + value + tail
                continue
            texts[first] = head + value
            for index in range(first + 1, last):
                texts[index] = ""
                consumed.add(index)
            texts[last] = tail
            if not tail:
                consumed.add(last)

        for index, run in enumerate(runs):
            if texts[index] == run.text:
                continue
            if index in consumed and not texts[index]:
                _drop_text(run.element)
            else:
                self._set_text(run.element, texts[index])

    def _set_text(self, t: etree._Element, text: str) -> None:
        lines = text.replace("\r\n", "\n").split("\n") if self.config.linebreaks else [text]
        t.text = lines[0]
        t.set(XML_SPACE, "preserve")
        anchor = t
        for line in lines[1:]:
            br = t.makeelement(W_BR, {})
            anchor.addnext(br)
            new_t = t.makeelement(W_T, {XML_SPACE: "preserve"})
            new_t.text = line
            br.addnext(new_t)
            anchor = new_t


# =============================================================================
# Helpers
# =============================================================================


def _run_at(runs: list, offset: int) -> int:
    """논리 오프셋을 포함하는 TextRun 인덱스 (빈 run은 건너뜀)."""
    for index, run in enumerate(runs):
        if run.start <= offset < run.end:
            return index
    raise IndexError(f"offset {offset} outside paragraph text")


def _drop_text(t: etree._Element) -> None:
    """비워진 w:t 제거, 서식 외에 남은 내용이 없으면 w:r도 제거."""
    run = t.getparent()
    run.remove(t)
    if run.tag == W_R and all(child.tag == W_RPR for child in run):
        parent = run.getparent()
        if parent is not None:
            parent.remove(run)


def _remove_marker(paragraph: etree._Element) -> None:
    """마커 문단 제거. 구역 속성(w:sectPr)을 가진 문단은 pPr만 남김."""
    ppr = paragraph.find(W_PPR)
    if ppr is not None and ppr.find(W_SECTPR) is not None:
        for child in list(paragraph):
            if child is not ppr:
                paragraph.remove(child)
        return
    parent = paragraph.getparent()
    if parent is not None:
        parent.remove(paragraph)


def _dedupe(problems: list[TemplateProblem]) -> list[TemplateProblem]:
    """반복 영역에서 같은 문제가 항목마다 반복되므로 순서 유지 중복 제거."""
    seen: set[TemplateProblem] = set()
    unique = []
    for problem in problems:
        if problem not in seen:
            seen.add(problem)
            unique.append(problem)
    return unique


def render_docx(
    template: bytes,
    values: Mapping[str, Any],
    config: RenderConfig | None = None,
) -> bytes:
    """
    Word 문서 생성 (간편 함수).

    Args:
        template: DOCX 템플릿 바이트
        values: 키 → 값 (JSON 호환, normalize_values로 정규화)
        config: 렌더러 설정

    Returns:
        렌더링된 DOCX 바이트
    """
    package = DocxPackage.open(template)
    DocxRenderer(config).render(package, normalize_values(values))
    return package.serialize()
