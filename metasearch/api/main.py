from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from metasearch.config import Config
from metasearch.data.repository import Repository
from metasearch.ranking.service import FeedbackEvent, SearchService
from metasearch.ranking.types import AggregationMethod, WeightProfile
from metasearch.sources.search_source import SearchSource


class SearchRequest(BaseModel):
    user_id: str
    query: str
    aggregation_method: Optional[str] = None


class SourceRankOut(BaseModel):
    source: str
    rank: int


class MergedDocumentOut(BaseModel):
    rank: int
    url: str
    title: str
    snippet: str
    score: float
    sources: List[SourceRankOut]
    result_ids: Dict[str, int]


class SourceSummaryOut(BaseModel):
    source: str
    count: int
    error: Optional[str] = None


class SearchResponse(BaseModel):
    session_id: int
    query: str
    aggregation_method: str
    merged: List[MergedDocumentOut]
    sources: List[SourceSummaryOut]


class FeedbackRequest(BaseModel):
    user_id: str
    result_id: int
    event: FeedbackEvent
    value: Optional[int] = Field(default=None, ge=0)


class FeedbackOut(BaseModel):
    click_order: Optional[int]
    dwell_time_ms: int
    printed: bool
    saved: bool
    bookmarked: bool
    emailed: bool
    copy_paste_chars: int


class SessionRequest(BaseModel):
    user_id: str
    session_id: int


class SQMOut(BaseModel):
    source: str
    score: float
    sample_count: int


class LearningEntryOut(BaseModel):
    url: str
    title: str
    snippet: str
    learned_score: float
    matched_queries: List[str]


class ProfileIn(BaseModel):
    weight_v: float = Field(default=1.0, ge=0)
    weight_t: float = Field(default=1.0, ge=0)
    weight_p: float = Field(default=1.0, ge=0)
    weight_s: float = Field(default=1.0, ge=0)
    weight_b: float = Field(default=1.0, ge=0)
    weight_e: float = Field(default=1.0, ge=0)
    weight_c: float = Field(default=1.0, ge=0)
    reading_speed: float = Field(default=10.0, gt=0)
    default_aggregation_method: AggregationMethod = AggregationMethod.BORDA


def create_app(
    config: Config | None = None,
    sources_factory: Callable[[Config], Sequence[SearchSource]] | None = None,
) -> FastAPI:
    app = FastAPI(title="Metasearch API")
    cfg = config or Config()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def open_service() -> SearchService:
        sources = sources_factory(cfg) if sources_factory is not None else None
        return SearchService(Repository(cfg.db_path), cfg, sources=sources)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.post("/search", response_model=SearchResponse)
    def search(payload: SearchRequest) -> SearchResponse:
        service = open_service()
        try:
            result = service.search(
                payload.user_id, payload.query, payload.aggregation_method
            )
            return SearchResponse(**result)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        finally:
            service.close()

    @app.post("/feedback", response_model=FeedbackOut)
    def record_feedback(payload: FeedbackRequest) -> FeedbackOut:
        service = open_service()
        try:
            signals = service.record_feedback(
                payload.user_id, payload.result_id, payload.event, payload.value
            )
            return FeedbackOut(**vars(signals))
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        finally:
            service.close()

    @app.post("/sqm")
    def compute_sqm(payload: SessionRequest) -> dict:
        service = open_service()
        try:
            return service.compute_sqm(payload.user_id, payload.session_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        finally:
            service.close()

    @app.get("/sqm/{user_id}", response_model=list[SQMOut])
    def list_sqm(user_id: str) -> list[SQMOut]:
        repo = Repository(cfg.db_path)
        try:
            return [
                SQMOut(
                    source=record.source_name,
                    score=record.score,
                    sample_count=record.sample_count,
                )
                for record in repo.list_sqm(user_id)
            ]
        finally:
            repo.close()

    @app.post("/learning-index")
    def update_learning_index(payload: SessionRequest) -> dict:
        service = open_service()
        try:
            return service.update_learning_index(payload.user_id, payload.session_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        finally:
            service.close()

    @app.get("/learning-index/{user_id}", response_model=list[LearningEntryOut])
    def list_learning_index(user_id: str, limit: int = 50) -> list[LearningEntryOut]:
        repo = Repository(cfg.db_path)
        try:
            return [
                LearningEntryOut(
                    url=entry.url,
                    title=entry.title,
                    snippet=entry.snippet,
                    learned_score=entry.learned_score,
                    matched_queries=sorted(entry.matched_queries),
                )
                for entry in repo.list_learning_entries(user_id, max(1, limit))
            ]
        finally:
            repo.close()

    @app.get("/profiles/{user_id}", response_model=ProfileIn)
    def get_profile(user_id: str) -> ProfileIn:
        service = open_service()
        try:
            return _profile_out(service.get_profile(user_id))
        finally:
            service.close()

    @app.put("/profiles/{user_id}", response_model=ProfileIn)
    def save_profile(user_id: str, payload: ProfileIn) -> ProfileIn:
        service = open_service()
        try:
            service.save_profile(
                user_id,
                WeightProfile(
                    w_v=payload.weight_v,
                    w_t=payload.weight_t,
                    w_p=payload.weight_p,
                    w_s=payload.weight_s,
                    w_b=payload.weight_b,
                    w_e=payload.weight_e,
                    w_c=payload.weight_c,
                    reading_speed=payload.reading_speed,
                    default_method=payload.default_aggregation_method,
                ),
            )
            return _profile_out(service.get_profile(user_id))
        finally:
            service.close()

    return app


def _profile_out(profile: WeightProfile) -> ProfileIn:
    return ProfileIn(
        weight_v=profile.w_v,
        weight_t=profile.w_t,
        weight_p=profile.w_p,
        weight_s=profile.w_s,
        weight_b=profile.w_b,
        weight_e=profile.w_e,
        weight_c=profile.w_c,
        reading_speed=profile.reading_speed,
        default_aggregation_method=profile.default_method,
    )


app = create_app()
