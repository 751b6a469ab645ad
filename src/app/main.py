"""
FastAPI 애플리케이션 진입점.

실행:
- 개발: uv run uvicorn src.app.main:app --reload
- 프로덕션: uv run uvicorn src.app.main:app
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import yaml
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.app.routes import generate
from src.app.services.generate import GenerationService
from src.convert.broker import ConversionBroker, ConverterConfig
from src.domain.constants import OUTPUT_FILENAME_SUFFIX
from src.render.word import DocxRenderer, RenderConfig

# =============================================================================
# Configuration
# =============================================================================


def load_config(config_path: Path | None = None) -> dict:
    """설정 파일 로드."""
    if config_path is None:
        # 프로젝트 루트의 default.yaml
        config_path = Path(__file__).parent.parent.parent / "default.yaml"

    if not config_path.exists():
        return {}

    with open(config_path, encoding="utf-8") as f:
        data: dict[Any, Any] = yaml.safe_load(f) or {}
        return data


def build_generation_service(config: dict) -> GenerationService:
    """설정 → 렌더러/브로커/서비스 구성 (전역 상태 없음)."""
    renderer = DocxRenderer(RenderConfig.from_config(config))
    broker = ConversionBroker(config=ConverterConfig.from_config(config))
    suffix = config.get("output", {}).get("suffix", OUTPUT_FILENAME_SUFFIX)
    return GenerationService(renderer, broker, output_suffix=suffix)


def cors_origins(config: dict) -> list[str]:
    """CORS 허용 origin 목록 (미설정 시 전체 허용)."""
    origins = (config.get("cors", {}) or {}).get("allow_origins")
    return list(origins) if origins else ["*"]


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    애플리케이션 생명주기 관리.

    시작 시: 설정 로드, 렌더러/변환 브로커 생성
    종료 시: 리소스 정리
    """
    # Startup
    app.state.config = load_config()
    app.state.generation_service = build_generation_service(app.state.config)

    yield

    # Shutdown
    # (변환 프로세스는 요청 단위로 정리됨)


# =============================================================================
# App Instance
# =============================================================================

app = FastAPI(
    title="DOCX Template Fill Service",
    description="DOCX 템플릿 + 값 → 완성 문서 (DOCX/PDF)",
    version="0.1.0",
    lifespan=lifespan,
)

# 브라우저 클라이언트가 생성 파일명을 읽을 수 있도록 Content-Disposition 노출
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(load_config()),
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


# =============================================================================
# Routes
# =============================================================================

app.include_router(generate.api_router, prefix="/api/generate", tags=["Generate API"])


# =============================================================================
# Root Endpoints
# =============================================================================


@app.get("/")
async def root() -> dict[str, Any]:
    """서비스 정보."""
    return {
        "message": "DOCX Template Fill Service",
        "endpoints": {
            "generate": "/api/generate",
            "runs": "/api/generate/runs",
            "health": "/health",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    """헬스 체크."""
    return {"status": "ok"}


# =============================================================================
# CLI Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
