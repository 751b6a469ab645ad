"""
App layer: API 서버 (FastAPI).

역할:
- 템플릿 업로드, 값 파싱, 응답 헤더 구성
- run log 기록, 업로드 리소스 정리
- ⚠️ 렌더링/변환 로직 없음 (render, convert에 위임)
"""
