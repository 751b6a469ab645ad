"""
test_logging.py - RunLog 관리 테스트

DoD:
- run log 스키마대로 저장
- 실패 시 error_code/error_context/누락 키 기록
"""

import time
from datetime import UTC, datetime
from pathlib import Path

from src.core.logging import (
    complete_run_log,
    create_run_log,
    list_run_logs,
    load_run_log,
    save_run_log,
)

# =============================================================================
# create_run_log 테스트
# =============================================================================

class TestCreateRunLog:
    """create_run_log 함수 테스트."""

    def test_creates_with_template_name(self):
        """템플릿 이름/형식으로 RunLog 생성."""
        run_log = create_run_log("invoice.docx", "pdf")

        assert run_log.template_name == "invoice.docx"
        assert run_log.output_format == "pdf"
        assert run_log.run_id.startswith("RUN-")
        assert run_log.result == "pending"

    def test_has_started_at(self):
        """started_at 타임스탬프 포함."""
        before = datetime.now(UTC)
        run_log = create_run_log("invoice.docx", "docx")
        after = datetime.now(UTC)

        started = datetime.fromisoformat(run_log.started_at)
        assert before <= started <= after

    def test_empty_missing_keys(self):
        run_log = create_run_log("invoice.docx", "docx")

        assert run_log.missing_keys == []


# =============================================================================
# complete_run_log 테스트
# =============================================================================

class TestCompleteRunLog:
    """complete_run_log 함수 테스트."""

    def test_success_completion(self):
        """성공 완료 처리."""
        run_log = create_run_log("invoice.docx", "docx")

        complete_run_log(
            run_log,
            success=True,
            output_filename="invoice-generated.docx",
            output_size=1234,
        )

        assert run_log.result == "success"
        assert run_log.finished_at is not None
        assert run_log.output_filename == "invoice-generated.docx"
        assert run_log.output_size == 1234
        assert run_log.error_code is None

    def test_failure_completion(self):
        """실패 완료 처리."""
        run_log = create_run_log("invoice.docx", "pdf")

        complete_run_log(
            run_log,
            success=False,
            error_code="CONVERSION_TIMEOUT",
            error_context={"code": "CONVERSION_TIMEOUT", "timeout_seconds": 60.0},
        )

        assert run_log.result == "failed"
        assert run_log.error_code == "CONVERSION_TIMEOUT"
        assert run_log.error_context == {"code": "CONVERSION_TIMEOUT", "timeout_seconds": 60.0}
        assert run_log.missing_keys == []

    def test_failure_records_missing_keys(self):
        """템플릿 에러의 누락 키 목록 기록."""
        run_log = create_run_log("invoice.docx", "docx")

        complete_run_log(
            run_log,
            success=False,
            error_code="TEMPLATE_ERROR",
            error_context={"code": "TEMPLATE_ERROR", "missing_keys": ["amount", "date"]},
        )

        assert run_log.missing_keys == ["amount", "date"]

    def test_finished_at_set(self):
        """finished_at 설정됨."""
        run_log = create_run_log("invoice.docx", "docx")

        before = datetime.now(UTC)
        complete_run_log(run_log, success=True)
        after = datetime.now(UTC)

        finished = datetime.fromisoformat(run_log.finished_at)
        assert before <= finished <= after


# =============================================================================
# save_run_log / load_run_log 테스트
# =============================================================================

class TestSaveLoadRunLog:
    """save_run_log / load_run_log 함수 테스트."""

    def test_save_creates_file(self, tmp_path: Path):
        """파일 생성됨."""
        logs_dir = tmp_path / "logs"
        run_log = create_run_log("invoice.docx", "docx")

        log_path = save_run_log(run_log, logs_dir)

        assert log_path.exists()
        assert log_path.parent == logs_dir
        assert log_path.name == f"run_{run_log.run_id}.json"

    def test_save_creates_directory(self, tmp_path: Path):
        """디렉터리 자동 생성."""
        logs_dir = tmp_path / "nested" / "logs"
        run_log = create_run_log("invoice.docx", "docx")

        save_run_log(run_log, logs_dir)

        assert logs_dir.exists()

    def test_round_trip_preserves_data(self, tmp_path: Path):
        """저장 → 로드 시 데이터 보존."""
        logs_dir = tmp_path / "logs"
        run_log = create_run_log("견적서.docx", "docx")
        complete_run_log(
            run_log,
            success=False,
            error_code="TEMPLATE_ERROR",
            error_context={"code": "TEMPLATE_ERROR", "missing_keys": ["amount"]},
        )

        loaded = load_run_log(save_run_log(run_log, logs_dir))

        assert isinstance(loaded, dict)
        assert loaded == run_log.to_dict()
        assert loaded["template_name"] == "견적서.docx"
        assert loaded["missing_keys"] == ["amount"]


# =============================================================================
# list_run_logs 테스트
# =============================================================================

class TestListRunLogs:
    """list_run_logs 함수 테스트."""

    def test_returns_empty_for_nonexistent(self, tmp_path: Path):
        """존재하지 않는 디렉터리는 빈 리스트."""
        assert list_run_logs(tmp_path / "nonexistent") == []

    def test_lists_run_log_files(self, tmp_path: Path):
        """run_*.json 파일 목록 반환."""
        logs_dir = tmp_path / "logs"

        for i in range(3):
            save_run_log(create_run_log(f"t{i}.docx", "docx"), logs_dir)

        result = list_run_logs(logs_dir)

        assert len(result) == 3
        assert all(p.name.startswith("run_") for p in result)

    def test_sorted_by_mtime_descending(self, tmp_path: Path):
        """최신순 정렬."""
        logs_dir = tmp_path / "logs"

        run_log1 = create_run_log("first.docx", "docx")
        save_run_log(run_log1, logs_dir)
        time.sleep(0.1)

        run_log2 = create_run_log("second.docx", "docx")
        save_run_log(run_log2, logs_dir)

        result = list_run_logs(logs_dir)

        # 최신 파일이 먼저
        assert run_log2.run_id in result[0].name
        assert run_log1.run_id in result[1].name

    def test_ignores_non_run_files(self, tmp_path: Path):
        """run_*.json이 아닌 파일 무시."""
        logs_dir = tmp_path / "logs"
        logs_dir.mkdir()
        (logs_dir / "other.json").write_text("{}")
        (logs_dir / "run_log.txt").write_text("not json")

        save_run_log(create_run_log("invoice.docx", "docx"), logs_dir)

        assert len(list_run_logs(logs_dir)) == 1
