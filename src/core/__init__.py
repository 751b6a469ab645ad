"""
Core layer: 패키지 코덱, 실행 기록, 원자적 저장.

역할:
- package: OOXML zip 읽기/쓰기 (건드리지 않은 파트 보존)
- logging: generate 요청 run log
- storage: temp → rename 원자적 쓰기
"""

from .ids import generate_run_id
from .logging import complete_run_log, create_run_log, list_run_logs, save_run_log
from .package import DocxPackage
from .storage import atomic_write_bytes, atomic_write_json

__all__ = [
    # package
    "DocxPackage",
    # ids
    "generate_run_id",
    # logging
    "create_run_log",
    "complete_run_log",
    "save_run_log",
    "list_run_logs",
    # storage
    "atomic_write_bytes",
    "atomic_write_json",
]
