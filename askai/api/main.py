"""
FastAPI web interface for AskAI.
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..config import settings
from ..exceptions import EmptyGenerationError, IndexUnavailableError, InputError, ProviderError
from ..models import QueryRequest, QueryResult, QueryStatus, UsageStats
from ..text2sql import Text2SQL

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="AskAI API",
    description="Natural-language questions about event participants, answered with SQL",
    version=__version__,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_text2sql() -> Text2SQL:
    """Build the pipeline once, on first use."""
    return Text2SQL.from_settings(settings)


# Pydantic models
class QueryBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(default="", description="Natural language query")
    application_id: int = Field(..., alias="applicationId", description="Tenant (application) id")
    event_id: int = Field(default=0, alias="eventId", description="Event id, 0 for all events")
    user_id: Optional[str] = Field(default=None, alias="userId")


class UsageStatsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_tokens: int = Field(alias="totalTokens")
    total_requests: int = Field(alias="totalRequests")
    successful_requests: int = Field(alias="successfulRequests")
    failed_requests: int = Field(alias="failedRequests")
    token_limit: int = Field(alias="tokenLimit")
    remaining_tokens: Optional[int] = Field(default=None, alias="remainingTokens")

    @classmethod
    def from_stats(cls, stats: UsageStats) -> "UsageStatsResponse":
        return cls(**stats.model_dump())


class QueryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    generated_sql: Optional[str] = Field(default=None, alias="generatedSQL")
    success: bool
    data: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    usage_stats: Optional[UsageStatsResponse] = Field(default=None, alias="usageStats")

    @classmethod
    def from_result(cls, result: QueryResult) -> "QueryResponse":
        return cls(
            query=result.query,
            generated_sql=result.generated_sql,
            success=result.success,
            data=result.data,
            columns=result.columns,
            error=result.error,
            usage_stats=(
                UsageStatsResponse.from_stats(result.usage_stats) if result.usage_stats else None
            ),
        )


class ValidateRequest(BaseModel):
    sql: str = Field(..., description="SQL query to validate")
    application_id: Optional[int] = Field(default=None, alias="applicationId")


class ValidateResponse(BaseModel):
    is_valid: bool
    error: Optional[str]


def _failure_payload(message: str, tokens_used: int, request_id: Optional[str]) -> Dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "tokensUsed": tokens_used,
        "requestId": request_id,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "AskAI API",
        "version": __version__,
        "docs": "/docs"
    }


@app.post("/query")
async def query_to_sql(body: QueryBody, text2sql: Text2SQL = Depends(get_text2sql)):
    """Convert a natural language query to SQL and run it."""
    try:
        request = QueryRequest(
            query=body.query,
            application_id=body.application_id,
            event_id=body.event_id,
            user_id=body.user_id or "anonymous-user",
        )
        result = await text2sql.query_to_sql(request)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ProviderError, IndexUnavailableError, EmptyGenerationError) as e:
        logger.error(f"Error in query_to_sql: {e}")
        raise HTTPException(status_code=500, detail=f"Error processing query: {e}")

    if result.status == QueryStatus.QUOTA_EXCEEDED:
        return JSONResponse(
            status_code=406,
            content=_failure_payload(result.error, 0, result.request_id),
        )
    if result.status == QueryStatus.VALIDATION_FAILED:
        return JSONResponse(
            status_code=400,
            content=_failure_payload(result.error, result.tokens_used, result.request_id),
        )

    return QueryResponse.from_result(result).model_dump(by_alias=True)


@app.post("/validate", response_model=ValidateResponse)
async def validate_sql(request: ValidateRequest, text2sql: Text2SQL = Depends(get_text2sql)):
    """Run the SQL safety validator."""
    verdict = text2sql.validate_sql(request.sql, request.application_id)
    return ValidateResponse(is_valid=verdict.is_valid, error=verdict.reason)


@app.get("/usage/{application_id}")
async def get_usage(application_id: int, text2sql: Text2SQL = Depends(get_text2sql)):
    """Token usage for one application."""
    stats = await text2sql.token_ledger.stats(application_id)
    return UsageStatsResponse.from_stats(stats).model_dump(by_alias=True)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": __version__
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "askai.api.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug
    )
