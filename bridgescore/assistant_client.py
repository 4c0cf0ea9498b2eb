"""
Client for the external conversational assistant service.

The scoring engine only depends on the small conversation/run contract in
``AssistantService``. ``OpenAIAssistantService`` implements it on top of the
OpenAI Assistants API (threads, messages, runs).
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional

from dotenv import load_dotenv
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field

from .errors import RemoteTransportError
from .schemas import RemoteCredentials

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class RunHandle(BaseModel):
    id: str
    status: str = Field(..., description="queued, in_progress, completed, failed, cancelled, expired, ...")
    last_error: Optional[str] = None


class AssistantMessage(BaseModel):
    role: str
    content: str


class AssistantService(ABC):
    """Stateful conversation protocol of the assistant service"""

    @abstractmethod
    async def create_conversation(self) -> str:
        """Open a new conversation and return its id"""

    @abstractmethod
    async def post_message(self, conversation_id: str, content: str) -> None:
        """Append a user message to the conversation"""

    @abstractmethod
    async def start_run(self, conversation_id: str, assistant_id: str) -> RunHandle:
        """Start a unit of assistant work on the conversation"""

    @abstractmethod
    async def get_run_status(self, conversation_id: str, run_id: str) -> RunHandle:
        """Current status of a run"""

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[AssistantMessage]:
        """Messages of the conversation, most recent first"""

    async def close(self) -> None:
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class OpenAIAssistantService(AssistantService):
    """AssistantService backed by the OpenAI Assistants API.

    One instance (and one SDK client) per scoring call: credentials belong to
    a single tenant and are never shared through a module-level cache.
    """

    def __init__(self, api_key: str, timeout: Optional[float] = None, max_retries: Optional[int] = None):
        if not api_key:
            raise ValueError("api_key is required for the OpenAI assistant service")

        self.timeout = timeout if timeout is not None else float(os.getenv("OPENAI_REQUEST_TIMEOUT", "60"))
        self.max_retries = max_retries if max_retries is not None else int(os.getenv("OPENAI_MAX_RETRIES", "2"))
        self.client = AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=self.max_retries)

    @classmethod
    def from_credentials(cls, credentials: RemoteCredentials) -> "OpenAIAssistantService":
        return cls(api_key=credentials.api_key.get_secret_value())

    async def create_conversation(self) -> str:
        try:
            thread = await self.client.beta.threads.create()
        except OpenAIError as e:
            raise RemoteTransportError(f"Failed to create thread: {e}") from e
        return thread.id

    async def post_message(self, conversation_id: str, content: str) -> None:
        try:
            await self.client.beta.threads.messages.create(
                thread_id=conversation_id,
                role="user",
                content=content,
            )
        except OpenAIError as e:
            raise RemoteTransportError(f"Failed to post message to thread {conversation_id}: {e}") from e

    async def start_run(self, conversation_id: str, assistant_id: str) -> RunHandle:
        try:
            run = await self.client.beta.threads.runs.create(
                thread_id=conversation_id,
                assistant_id=assistant_id,
            )
        except OpenAIError as e:
            raise RemoteTransportError(f"Failed to start run on thread {conversation_id}: {e}") from e
        return self._to_handle(run)

    async def get_run_status(self, conversation_id: str, run_id: str) -> RunHandle:
        try:
            run = await self.client.beta.threads.runs.retrieve(run_id=run_id, thread_id=conversation_id)
        except OpenAIError as e:
            raise RemoteTransportError(f"Failed to retrieve run {run_id}: {e}") from e
        return self._to_handle(run)

    async def list_messages(self, conversation_id: str) -> List[AssistantMessage]:
        try:
            page = await self.client.beta.threads.messages.list(thread_id=conversation_id, order="desc")
        except OpenAIError as e:
            raise RemoteTransportError(f"Failed to list messages on thread {conversation_id}: {e}") from e

        messages = []
        for message in page.data:
            text_parts = [
                block.text.value
                for block in (message.content or [])
                if getattr(block, "type", None) == "text"
            ]
            messages.append(AssistantMessage(role=message.role, content="\n".join(text_parts)))
        return messages

    async def close(self) -> None:
        await self.client.close()

    def _to_handle(self, run) -> RunHandle:
        last_error = getattr(run, "last_error", None)
        return RunHandle(
            id=run.id,
            status=run.status,
            last_error=getattr(last_error, "message", None) if last_error else None,
        )
