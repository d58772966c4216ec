"""RAG answer composer - grounded answers with sources and usage metering."""

import logging
from uuid import UUID

from pydantic import BaseModel, Field

from backend.app.docs.retriever import SimilaritySearch
from backend.app.errors import (
    ConfigurationError,
    LimitExceeded,
    NotFoundError,
    ProviderError,
    RagError,
    StoreError,
)
from backend.app.llm.client import LLMClient
from backend.app.models.documents import AnswerOutcome, ChunkMatch, Source
from backend.app.models.usage import LimitCheck, LimitStatus, UsageEventType
from backend.app.usage.metering import UsageMeter
from backend.app.utils.logging import log_structured
from backend.app.utils.metrics import metrics

logger = logging.getLogger(__name__)

NO_CONTEXT_ANSWER = (
    "I couldn't find any relevant information in your documents to answer this question."
)
ERROR_ANSWER = "Sorry, I encountered an error while processing your request."

SYSTEM_PROMPT = (
    "You answer questions about a team's documents. Use only the numbered context "
    "passages you are given. If they do not contain enough information to answer, "
    "say so clearly. Refer to passages by their number when relevant."
)


class UsageInfo(BaseModel):
    """Query allowance after this request."""

    queries_used: int
    query_limit: int
    status: LimitStatus
    warning: str | None = None


class RagAnswer(BaseModel):
    """Answer to a user query with citations."""

    answer: str
    sources: list[Source] = Field(default_factory=list)
    used_context: bool
    outcome: AnswerOutcome
    error_kind: str | None = None
    usage: UsageInfo | None = None


def build_prompt(query: str, matches: list[ChunkMatch]) -> str:
    """User prompt with numbered context blocks followed by the question."""
    context = "\n\n".join(f"[{i}] {match.content}" for i, match in enumerate(matches, start=1))
    return (
        "Based on the following context from the user's documents, answer their question. "
        "If the context doesn't contain enough information to answer the question, "
        "say so clearly.\n\n"
        f"Context:\n{context}\n\n"
        f"Question: {query}\n\n"
        "Answer based only on the provided context."
    )


def make_preview(content: str, max_chars: int = 200) -> str:
    """First ``max_chars`` characters, with an ellipsis when truncated."""
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "..."


def to_sources(matches: list[ChunkMatch], preview_chars: int = 200) -> list[Source]:
    return [
        Source(
            document_id=match.document_id,
            filename=match.original_name,
            chunk_index=match.chunk_index,
            preview=make_preview(match.content, preview_chars),
            similarity=match.similarity,
        )
        for match in matches
    ]


def usage_info_after_query(check: LimitCheck) -> UsageInfo:
    """Usage info counting the query being answered."""
    used = check.used + 1
    if check.unlimited:
        return UsageInfo(queries_used=used, query_limit=check.limit, status=LimitStatus.within)

    warning = None
    if check.status == LimitStatus.near:
        warning = f"You have used {used} of {check.limit} queries this month"
    return UsageInfo(
        queries_used=used, query_limit=check.limit, status=check.status, warning=warning
    )


class RagAnswerComposer:
    """Check the query allowance, retrieve context, and ask the LLM."""

    def __init__(
        self,
        search: SimilaritySearch,
        llm: LLMClient,
        meter: UsageMeter,
        *,
        preview_chars: int = 200,
    ) -> None:
        self._search = search
        self._llm = llm
        self._meter = meter
        self._preview_chars = preview_chars

    async def answer(self, query: str, tenant_id: UUID, user_id: UUID | None) -> RagAnswer:
        """Answer a query from the tenant's documents.

        Exactly one ``query`` usage event is recorded for every call that
        passes the limit check, whatever the outcome. When usage cannot be
        read the query is allowed and ``usage`` is left empty.

        Raises:
            LimitExceeded: Tenant is over its query limit (nothing recorded)
            NotFoundError: Tenant has no plan
        """
        check = await self._check_allowance(tenant_id)
        if check is not None and check.status == LimitStatus.over:
            raise LimitExceeded(UsageEventType.query.value, check.used, check.limit)

        result = await self._compose(query, tenant_id)
        if check is not None:
            result.usage = usage_info_after_query(check)

        metrics.inc_query(result.outcome.value)
        await self._meter.record(
            tenant_id,
            user_id,
            UsageEventType.query,
            metadata={
                "used_context": result.used_context,
                "source_count": len(result.sources),
                "outcome": result.outcome.value,
            },
        )
        return result

    async def _check_allowance(self, tenant_id: UUID) -> LimitCheck | None:
        try:
            return await self._meter.check_limit(tenant_id, UsageEventType.query)
        except NotFoundError:
            raise
        except RagError:
            logger.exception(f"Query limit check failed for team {tenant_id}, allowing query")
            return None

    async def _compose(self, query: str, tenant_id: UUID) -> RagAnswer:
        try:
            matches = await self._search.search(query, tenant_id)
        except (ConfigurationError, ProviderError, StoreError) as e:
            return self._error_answer(tenant_id, "search", e.kind, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error searching documents of team {tenant_id}")
            return self._error_answer(tenant_id, "search", "internal", str(e))

        if not matches:
            return RagAnswer(
                answer=NO_CONTEXT_ANSWER, used_context=False, outcome=AnswerOutcome.no_context
            )

        try:
            text = await self._llm.generate(
                system_prompt=SYSTEM_PROMPT, user_prompt=build_prompt(query, matches)
            )
        except ProviderError as e:
            return self._error_answer(tenant_id, "generation", e.kind, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error generating answer for team {tenant_id}")
            return self._error_answer(tenant_id, "generation", "internal", str(e))

        return RagAnswer(
            answer=text,
            sources=to_sources(matches, self._preview_chars),
            used_context=True,
            outcome=AnswerOutcome.answered,
        )

    def _error_answer(self, tenant_id: UUID, stage: str, kind: str, message: str) -> RagAnswer:
        log_structured(
            logger,
            logging.WARNING,
            f"Query {stage} failed: {message}",
            team_id=str(tenant_id),
            stage=stage,
            error_kind=kind,
        )
        return RagAnswer(
            answer=ERROR_ANSWER,
            used_context=False,
            outcome=AnswerOutcome.error,
            error_kind=kind,
        )
