"""Query endpoint - POST /query answers questions from the team's documents."""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.app.api.auth import get_current_context
from backend.app.api.deps import get_services
from backend.app.db.context import RequestContext
from backend.app.docs.answer import RagAnswer
from backend.app.services import RagServices

router = APIRouter(tags=["query"])


class QueryRequest(BaseModel):
    """Request body for POST /query."""

    query: str = Field(..., min_length=1, max_length=4000, description="Question to answer")


@router.post("/query", response_model=RagAnswer)
async def query_documents(
    request: QueryRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    services: Annotated[RagServices, Depends(get_services)],
) -> RagAnswer:
    """Answer a question grounded in the team's documents, with sources.

    Provider failures produce an apology answer (200); an exhausted query
    allowance is rejected with 429.
    """
    return await services.composer.answer(request.query, ctx.team_id, ctx.user_id)
