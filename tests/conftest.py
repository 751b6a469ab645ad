"""
Pytest fixtures for the pipeline tests.

테스트 구성:
- python-docx로 실제 DOCX 템플릿 생성 (run 분할, 머리글/바닥글 포함)
- 변환 테스트는 현재 파이썬 인터프리터를 "변환기"로 사용 (LibreOffice 불필요)
"""

import asyncio
import io
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml
from docx import Document

from src.domain.schemas import OutputFormat

# =============================================================================
# Path Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """프로젝트 루트 경로."""
    return Path(__file__).parent.parent


@pytest.fixture
def default_config_path(project_root: Path) -> Path:
    """default.yaml 경로."""
    return project_root / "default.yaml"


@pytest.fixture
def default_config(default_config_path: Path) -> dict:
    """기본 설정 로드."""
    with open(default_config_path, encoding="utf-8") as f:
        return yaml.safe_load(f)


# =============================================================================
# DOCX Fixtures
# =============================================================================

def build_docx(
    paragraphs: list,
    header: str | None = None,
    footer: str | None = None,
) -> bytes:
    """
    DOCX 바이트 생성.

    paragraphs 항목:
    - str: run 하나짜리 문단
    - list: run 목록. 각 run은 str 또는 (text, bold) 튜플
    """
    doc = Document()
    for para in paragraphs:
        p = doc.add_paragraph()
        runs = [para] if isinstance(para, str) else para
        for run in runs:
            if isinstance(run, tuple):
                text, bold = run
                p.add_run(text).bold = bold
            else:
                p.add_run(run)

    section = doc.sections[0]
    if header is not None:
        section.header.add_paragraph(header)
    if footer is not None:
        section.footer.add_paragraph(footer)

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def body_texts(data: bytes) -> list[str]:
    """본문 문단 텍스트 목록."""
    return [p.text for p in Document(io.BytesIO(data)).paragraphs]


@pytest.fixture
def make_docx() -> Callable[..., bytes]:
    """DOCX 생성 함수."""
    return build_docx


@pytest.fixture
def read_body() -> Callable[[bytes], list[str]]:
    """본문 문단 텍스트 추출 함수."""
    return body_texts


@pytest.fixture
def invoice_docx() -> bytes:
    """기본 시나리오 템플릿: Hello {name}, you owe {amount}."""
    return build_docx(["Hello {name}, you owe {amount}."])


# =============================================================================
# Conversion Fixtures
# =============================================================================

class ScriptBackend:
    """
    테스트용 변환 백엔드: `python -c <script> <input> <output> [extra...]`.

    스크립트가 output 경로에 파일을 쓰면 성공으로 간주.
    """

    name = "script"

    def __init__(self, script: str, extra: list[str] | None = None):
        self.script = script
        self.extra = extra or []
        self.calls = 0

    def _output_path(self, input_path: Path, output_dir: Path, target: OutputFormat) -> Path:
        return output_dir / f"{input_path.stem}{target.extension}"

    def build_command(self, input_path: Path, output_dir: Path, target: OutputFormat) -> list[str]:
        self.calls += 1
        output_path = self._output_path(input_path, output_dir, target)
        return [sys.executable, "-c", self.script, str(input_path), str(output_path), *self.extra]

    def locate_output(self, input_path: Path, output_dir: Path, target: OutputFormat) -> Path | None:
        path = self._output_path(input_path, output_dir, target)
        return path if path.exists() else None


# 입력 앞 4바이트를 붙인 가짜 PDF 생성
COPY_SCRIPT = (
    "import sys, pathlib\n"
    "data = pathlib.Path(sys.argv[1]).read_bytes()\n"
    "pathlib.Path(sys.argv[2]).write_bytes(b'%PDF-fake' + data[:4])\n"
)

# PID 기록 후 오래 대기 (타임아웃/취소 테스트용)
SLEEP_SCRIPT = (
    "import os, sys, time\n"
    "open(sys.argv[3], 'w').write(str(os.getpid()))\n"
    "time.sleep(30)\n"
)

# 잠깐 대기 후 출력 (동시성 테스트용)
SLOW_COPY_SCRIPT = (
    "import sys, time, pathlib\n"
    "time.sleep(float(sys.argv[3]))\n"
    "pathlib.Path(sys.argv[2]).write_bytes(b'%PDF-slow')\n"
)

# 자식 프로세스를 남기고 리더만 종료 (argv[3]: 자식 PID 파일)
# argv[4]가 있으면 자식을 파이프에서 분리하고 출력까지 작성
SPAWN_CHILD_SCRIPT = (
    "import os, subprocess, sys, pathlib\n"
    "detach = len(sys.argv) > 4\n"
    "devnull = subprocess.DEVNULL if detach else None\n"
    "child = subprocess.Popen(\n"
    "    [sys.executable, '-c', 'import time; time.sleep(30)'],\n"
    "    stdin=devnull, stdout=devnull, stderr=devnull,\n"
    ")\n"
    "pathlib.Path(sys.argv[3]).write_text(str(child.pid))\n"
    "if detach:\n"
    "    pathlib.Path(sys.argv[2]).write_bytes(b'%PDF-child')\n"
    "os._exit(0)\n"
)

FAIL_SCRIPT = (
    "import sys\n"
    "sys.stderr.write('boom: source file could not be loaded')\n"
    "sys.exit(3)\n"
)


@pytest.fixture
def script_backend() -> Callable[..., ScriptBackend]:
    """ScriptBackend 생성 함수."""
    return ScriptBackend


@pytest.fixture
def copy_backend() -> ScriptBackend:
    return ScriptBackend(COPY_SCRIPT)


@pytest.fixture
def fail_backend() -> ScriptBackend:
    return ScriptBackend(FAIL_SCRIPT)


@pytest.fixture
def sleep_backend(tmp_path: Path) -> ScriptBackend:
    """PID 파일 경로: backend.extra[0]."""
    return ScriptBackend(SLEEP_SCRIPT, extra=[str(tmp_path / "backend.pid")])


@pytest.fixture
def slow_copy_script() -> str:
    return SLOW_COPY_SCRIPT


@pytest.fixture
def spawn_child_script() -> str:
    return SPAWN_CHILD_SCRIPT


def is_running(pid: int) -> bool:
    """프로세스 생존 여부 (회수 전 좀비는 종료로 간주)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    stat = Path(f"/proc/{pid}/stat")
    if not stat.exists():
        return True
    try:
        state = stat.read_text().rsplit(")", 1)[1].split()[0]
    except (OSError, IndexError):
        return False
    return state != "Z"


async def wait_until_gone(pid: int, timeout: float = 5.0) -> bool:
    """pid가 사라질 때까지 대기. 사라지면 True."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if not is_running(pid):
            return True
        await asyncio.sleep(0.05)
    return not is_running(pid)


@pytest.fixture
def process_gone() -> Callable[..., Any]:
    """프로세스 종료 대기 함수 (await process_gone(pid))."""
    return wait_until_gone


@pytest.fixture
def process_running() -> Callable[[int], bool]:
    return is_running
