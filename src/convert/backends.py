"""
변환 백엔드: 외부 프로세스 명령 구성.

브로커는 프로세스 실행/타임아웃/정리만 담당하고,
"어떤 명령을 실행하고 결과가 어디에 생기는지"는 백엔드가 정의.
"""

from pathlib import Path
from typing import Protocol

from src.domain.schemas import OutputFormat


class ConversionBackend(Protocol):
    """외부 변환기 인터페이스."""

    name: str

    def build_command(
        self,
        input_path: Path,
        output_dir: Path,
        target: OutputFormat,
    ) -> list[str]:
        """
        실행할 명령 (argv).

        Args:
            input_path: 변환할 파일 (작업 임시 디렉터리 안)
            output_dir: 결과를 쓸 디렉터리
            target: 목표 형식
        """
        ...

    def locate_output(
        self,
        input_path: Path,
        output_dir: Path,
        target: OutputFormat,
    ) -> Path | None:
        """변환 결과 파일 경로 (없으면 None)."""
        ...


class LibreOfficeBackend:
    """
    LibreOffice headless 변환기.

    동시 실행 시 사용자 프로필 잠금 충돌을 피하기 위해
    작업마다 별도 프로필 디렉터리(-env:UserInstallation)를 사용.
    """

    name = "libreoffice"

    def __init__(self, command: str = "soffice", extra_args: list[str] | None = None):
        self.command = command
        self.extra_args = list(extra_args or [])

    def build_command(
        self,
        input_path: Path,
        output_dir: Path,
        target: OutputFormat,
    ) -> list[str]:
        profile_dir = output_dir.parent / "profile"
        return [
            self.command,
            f"-env:UserInstallation={profile_dir.resolve().as_uri()}",
            "--headless",
            "--nologo",
            "--nodefault",
            "--nolockcheck",
            "--norestore",
            *self.extra_args,
            "--convert-to",
            target.value,
            "--outdir",
            str(output_dir),
            str(input_path),
        ]

    def locate_output(
        self,
        input_path: Path,
        output_dir: Path,
        target: OutputFormat,
    ) -> Path | None:
        expected = output_dir / f"{input_path.stem}{target.extension}"
        if expected.exists():
            return expected
        # 일부 버전은 파일명을 바꿔서 저장
        for candidate in sorted(output_dir.glob(f"*{target.extension}")):
            return candidate
        return None
