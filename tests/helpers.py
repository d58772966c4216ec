"""Test doubles and builders shared by unit and integration tests."""

import asyncio
import uuid

from backend.app.db.repositories import NewDocument

KEYWORDS = ("refund", "shipping", "security")

TEAM_A = uuid.UUID("aaaaaaaa-0000-0000-0000-000000000001")
TEAM_B = uuid.UUID("bbbbbbbb-0000-0000-0000-000000000001")
USER_A = uuid.UUID("aaaaaaaa-0000-0000-0000-000000000002")
USER_B = uuid.UUID("bbbbbbbb-0000-0000-0000-000000000002")

# Team on a custom plan with tiny allowances
TEAM_TINY = uuid.UUID("cccccccc-0000-0000-0000-000000000001")

REFUND_TEXT = (
    "Refund policy. A refund is issued within 30 days of purchase. "
    "Every refund request needs the original receipt."
)
SHIPPING_TEXT = "Shipping takes five business days. Express shipping is available."


def auth_header(team_id: uuid.UUID, user_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {team_id}:{user_id}"}


class KeywordEmbedder:
    """Deterministic embedder: one axis per keyword plus a fallback axis.

    Texts about the same keyword point the same way, so similarity scores
    are easy to reason about in tests.
    """

    def __init__(self) -> None:
        self.dimensions = len(KEYWORDS) + 1
        self.calls: list[str] = []
        self.fail_with: Exception | None = None
        self.in_flight = 0
        self.max_in_flight = 0
        # When set, embed() blocks on the gate after signalling ``started``
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1

        lowered = text.lower()
        vector = [float(lowered.count(keyword)) for keyword in KEYWORDS]
        vector.append(0.0 if any(vector) else 1.0)
        return vector


class RecordingLLM:
    """LLM double that records prompts and returns a canned answer."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.answer = "Refunds are issued within 30 days of purchase [1]."

    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.fail_with is not None:
            raise self.fail_with
        return self.answer


def new_document(
    team_id: uuid.UUID,
    content: str,
    *,
    name: str = "policy.txt",
    user_id: uuid.UUID | None = None,
    size_bytes: int | None = None,
) -> NewDocument:
    """Upload record for ``content``."""
    return NewDocument(
        team_id=team_id,
        uploaded_by_id=user_id,
        filename=f"stored-{name}",
        original_name=name,
        mime_type="text/plain",
        size_bytes=len(content.encode("utf-8")) if size_bytes is None else size_bytes,
        content=content,
    )
