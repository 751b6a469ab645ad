"""
Conversion Broker: 외부 변환 프로세스 실행 (DOCX → PDF).

규칙:
- source == target → 백엔드 호출 없이 입력 그대로 반환
- 모든 호출은 deadline으로 제한, 초과 시 프로세스 그룹 종료 후 CONVERSION_TIMEOUT
- 호출자 취소(연결 끊김) 시에도 프로세스 종료 후 취소 전파
- 동시 실행 수 제한 (Semaphore). 대기는 같은 deadline 안에서만, 초과 시 BACKEND_UNAVAILABLE
- 재시도 없음 (재시도 정책은 호출자 책임)
- 작업 파일은 임시 디렉터리에 두고 모든 경로에서 삭제
"""

import asyncio
import logging
import os
import signal
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from src.convert.backends import ConversionBackend, LibreOfficeBackend
from src.domain.errors import ErrorCodes, PolicyRejectError
from src.domain.schemas import OutputFormat

logger = logging.getLogger(__name__)

# BACKEND_ERROR detail에 남길 진단 텍스트 최대 길이
DETAIL_MAX_CHARS = 2000

SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class ConverterConfig:
    """변환기 설정 (default.yaml의 conversion 섹션)."""

    command: str = "soffice"
    timeout_seconds: float = 60.0
    max_concurrency: int = 2
    kill_grace_seconds: float = 5.0
    targets: tuple[OutputFormat, ...] = (OutputFormat.PDF,)

    @classmethod
    def from_config(cls, config: dict) -> "ConverterConfig":
        section = config.get("conversion", {}) or {}
        targets = section.get("targets") or [OutputFormat.PDF.value]
        return cls(
            command=section.get("command", "soffice"),
            timeout_seconds=float(section.get("timeout_seconds", 60.0)),
            max_concurrency=max(1, int(section.get("max_concurrency", 2))),
            kill_grace_seconds=float(section.get("kill_grace_seconds", 5.0)),
            targets=tuple(OutputFormat(t) for t in targets),
        )


# =============================================================================
# Broker
# =============================================================================


class ConversionBroker:
    """
    외부 변환기 호출 브로커.

    Usage:
        broker = ConversionBroker(config=ConverterConfig(timeout_seconds=30))
        pdf = await broker.convert(docx_bytes, OutputFormat.DOCX, OutputFormat.PDF)
    """

    def __init__(
        self,
        backend: ConversionBackend | None = None,
        config: ConverterConfig | None = None,
    ):
        self.config = config or ConverterConfig()
        self.backend = backend or LibreOfficeBackend(self.config.command)
        self._gate = asyncio.Semaphore(self.config.max_concurrency)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        """현재 실행 중인 백엔드 프로세스 수."""
        return self._in_flight

    async def convert(
        self,
        data: bytes,
        source: OutputFormat,
        target: OutputFormat,
        timeout: float | None = None,
    ) -> bytes:
        """
        문서 형식 변환.

        Args:
            data: 입력 바이트
            source: 입력 형식
            target: 목표 형식
            timeout: deadline까지 남은 시간(초). None이면 설정값

        Returns:
            변환된 바이트

        Raises:
            PolicyRejectError: UNSUPPORTED_FORMAT, BACKEND_UNAVAILABLE,
                CONVERSION_TIMEOUT, BACKEND_ERROR
        """
        if source == target:
            return data

        if target not in self.config.targets:
            raise PolicyRejectError(
                ErrorCodes.UNSUPPORTED_FORMAT,
                source=source.value,
                target=target.value,
                supported=[t.value for t in self.config.targets],
            )

        budget = self.config.timeout_seconds if timeout is None else timeout
        deadline = time.monotonic() + budget

        try:
            await asyncio.wait_for(self._gate.acquire(), timeout=max(budget, 0))
        except TimeoutError:
            raise PolicyRejectError(
                ErrorCodes.BACKEND_UNAVAILABLE,
                reason="all conversion slots busy until deadline",
                max_concurrency=self.config.max_concurrency,
            ) from None

        self._in_flight += 1
        try:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PolicyRejectError(ErrorCodes.CONVERSION_TIMEOUT, timeout_seconds=budget)
            return await self._run(data, source, target, remaining, budget)
        finally:
            self._in_flight -= 1
            self._gate.release()

    async def _run(
        self,
        data: bytes,
        source: OutputFormat,
        target: OutputFormat,
        remaining: float,
        budget: float,
    ) -> bytes:
        started = time.monotonic()
        with tempfile.TemporaryDirectory(prefix="convert-") as tmp:
            workdir = Path(tmp)
            input_path = workdir / f"document{source.extension}"
            output_dir = workdir / "out"
            output_dir.mkdir()
            input_path.write_bytes(data)

            command = self.backend.build_command(input_path, output_dir, target)
            try:
                proc = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=workdir,
                    start_new_session=True,
                )
            except OSError as e:
                # FileNotFoundError, PermissionError 등: 실행 파일 없음/실행 불가
                raise PolicyRejectError(
                    ErrorCodes.BACKEND_UNAVAILABLE,
                    backend=self.backend.name,
                    command=command[0],
                    error=str(e),
                ) from e

            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=remaining)
            except TimeoutError:
                await asyncio.shield(self._terminate(proc))
                logger.warning(
                    f"Conversion timed out after {budget:.1f}s "
                    f"(backend={self.backend.name}, pid={proc.pid})"
                )
                raise PolicyRejectError(
                    ErrorCodes.CONVERSION_TIMEOUT,
                    timeout_seconds=budget,
                ) from None
            except asyncio.CancelledError:
                logger.warning(f"Conversion cancelled by caller, stopping pid={proc.pid}")
                await asyncio.shield(self._terminate(proc))
                raise

            # 리더 종료 후 세션에 남은 자식 정리
            _signal_group(proc, SIGKILL)

            output_path = self.backend.locate_output(input_path, output_dir, target)
            output = output_path.read_bytes() if output_path is not None else b""
            if not output:
                raise PolicyRejectError(
                    ErrorCodes.BACKEND_ERROR,
                    backend=self.backend.name,
                    returncode=proc.returncode,
                    detail=_diagnostic(stderr, stdout),
                )
            if proc.returncode != 0:
                logger.warning(
                    f"Backend exited with {proc.returncode} but produced output; "
                    f"accepting {len(output)} bytes"
                )

        logger.info(
            f"Converted {source.value} -> {target.value} "
            f"in {time.monotonic() - started:.2f}s ({len(output)} bytes)"
        )
        return output

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """
        프로세스 그룹 종료: SIGTERM → grace → SIGKILL, 이후 회수.

        리더가 이미 종료됐어도 같은 세션의 자식이 파이프를 잡고 남아 있을 수 있으므로
        returncode와 무관하게 항상 그룹 전체에 신호를 보낸다.
        """
        _signal_group(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.config.kill_grace_seconds)
        except TimeoutError:
            logger.warning(f"Backend pid={proc.pid} ignored SIGTERM, sending SIGKILL")
        _signal_group(proc, SIGKILL)
        await proc.wait()


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        if hasattr(os, "killpg"):
            # start_new_session=True → pgid == pid (soffice.bin 자식까지 종료)
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
    except ProcessLookupError:
        pass  # 이미 종료됨
    except PermissionError as e:
        logger.warning(f"Failed to signal backend process {proc.pid}: {e}")


def _diagnostic(stderr: bytes, stdout: bytes) -> str:
    text = (stderr or b"").decode("utf-8", errors="replace").strip()
    if not text:
        text = (stdout or b"").decode("utf-8", errors="replace").strip()
    if not text:
        return "backend produced no output file"
    return text[-DETAIL_MAX_CHARS:]
