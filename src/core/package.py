"""
Package Store: OOXML 패키지 (zip 아카이브) 읽기/쓰기.

규칙:
- 파트 이름 유일 (중복 → CORRUPT_ARCHIVE)
- 손상된 아카이브는 즉시 실패, 부분 패키지 반환 금지
- 건드리지 않은 파트는 순서/압축 방식/타임스탬프/내용 그대로 재출력
- 비즈니스 로직 없음 (순수 아카이브 코덱)
"""

import io
import zipfile
import zlib
from dataclasses import dataclass

from src.domain.constants import MAIN_DOCUMENT_PART
from src.domain.errors import ErrorCodes, PolicyRejectError


@dataclass
class _PartEntry:
    """아카이브 엔트리 (원본 메타데이터 + 압축 해제된 바이트)."""
    info: zipfile.ZipInfo
    data: bytes


class DocxPackage:
    """
    DOCX 패키지: 파트 이름 → 바이트 (아카이브 순서 유지).

    Usage:
        package = DocxPackage.open(uploaded_bytes)
        xml = package.part("word/document.xml")
        package.replace("word/document.xml", new_xml)
        output = package.serialize()
    """

    def __init__(self, entries: list[_PartEntry], comment: bytes = b"") -> None:
        self._entries: dict[str, _PartEntry] = {e.info.filename: e for e in entries}
        self.comment = comment

    @classmethod
    def open(cls, data: bytes) -> "DocxPackage":
        """
        바이트 → DocxPackage.

        Args:
            data: 업로드된 패키지 바이트

        Raises:
            PolicyRejectError: CORRUPT_ARCHIVE
        """
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                entries: list[_PartEntry] = []
                seen: set[str] = set()
                for info in zf.infolist():
                    if info.filename in seen:
                        raise PolicyRejectError(
                            ErrorCodes.CORRUPT_ARCHIVE,
                            reason="duplicate part name",
                            part=info.filename,
                        )
                    seen.add(info.filename)
                    # read()는 CRC 검증까지 수행
                    entries.append(_PartEntry(info=info, data=zf.read(info)))
                comment = zf.comment
        except PolicyRejectError:
            raise
        except (zipfile.BadZipFile, zlib.error, EOFError, ValueError, NotImplementedError) as e:
            raise PolicyRejectError(
                ErrorCodes.CORRUPT_ARCHIVE,
                reason=str(e) or type(e).__name__,
            ) from e

        package = cls(entries, comment)
        if not package.has_part(MAIN_DOCUMENT_PART):
            raise PolicyRejectError(
                ErrorCodes.CORRUPT_ARCHIVE,
                reason="missing main document part",
                part=MAIN_DOCUMENT_PART,
            )
        return package

    def names(self) -> list[str]:
        """파트 이름 목록 (아카이브 순서)."""
        return list(self._entries)

    def has_part(self, name: str) -> bool:
        return name in self._entries

    def part(self, name: str) -> bytes:
        """
        파트 바이트 조회.

        Raises:
            PolicyRejectError: PART_NOT_FOUND
        """
        try:
            return self._entries[name].data
        except KeyError:
            raise PolicyRejectError(ErrorCodes.PART_NOT_FOUND, part=name) from None

    def replace(self, name: str, data: bytes) -> None:
        """
        기존 파트 내용 교체 (위치/메타데이터 유지).

        Raises:
            PolicyRejectError: PART_NOT_FOUND
        """
        entry = self._entries.get(name)
        if entry is None:
            raise PolicyRejectError(ErrorCodes.PART_NOT_FOUND, part=name)
        entry.data = data

    def serialize(self) -> bytes:
        """패키지 → zip 바이트."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            for entry in self._entries.values():
                zf.writestr(_copy_info(entry.info), entry.data)
            zf.comment = self.comment
        return buffer.getvalue()

    def __len__(self) -> int:
        return len(self._entries)


def _copy_info(info: zipfile.ZipInfo) -> zipfile.ZipInfo:
    """
    writestr()가 ZipInfo를 변경하므로 직렬화마다 새 인스턴스 사용.

    원본의 extra(zip64 등)는 새 오프셋과 맞지 않을 수 있어 복사하지 않음.
    """
    copied = zipfile.ZipInfo(info.filename, date_time=info.date_time)
    copied.compress_type = info.compress_type
    copied.external_attr = info.external_attr
    copied.create_system = info.create_system
    copied.comment = info.comment
    return copied
