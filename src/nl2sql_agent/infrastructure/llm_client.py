"""
LLM client for OpenRouter using LangChain.

This module provides an async LLM client that uses LangChain's ChatOpenAI
with OpenRouter API. It is the only place in the project that knows about
LangChain message types; callers pass domain ConversationMessage objects.
"""

import asyncio
from typing import Any, Dict, List, Optional

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from ..config import LLMConfig
from ..domain.base_enums import MessageRole
from ..domain.errors import LLMError
from ..domain.pipeline import ConversationMessage, ToolCall, ToolCallingTurn
from ..domain.types import StructuredSchema, ToolDefinition
from ..utils.logging import get_module_logger
from ..utils.token_utils import InputValidator
from ..utils.tracing import current_trace_id


logger = get_module_logger()


class LLMClient:
    """
    LLM client using LangChain's ChatOpenAI with OpenRouter.

    This is a thin infrastructure layer for LLM operations using OpenRouter API.
    Prompt construction and output parsing live in the repositories.

    Features:
    - OpenRouter API integration via LangChain
    - Per-call temperature through bind()
    - Strict JSON-schema structured output
    - Tool calling with parallel calls disabled
    - Every call bounded by timeout_seconds
    - Input size validation against max_input_chars

    Errors:
        Transport failures, timeouts and oversized inputs raise LLMError.
        An empty completion is returned as "" so callers can treat it as
        a parse problem rather than a service outage.

    Usage:
        client = LLMClient(config)
        await client.connect()

        text = await client.generate(
            system_prompt="You are a SQL expert.",
            conversation=[ConversationMessage(role=MessageRole.USER, content="...")],
            temperature=0.1,
        )

        await client.close()
    """

    def __init__(self, config: LLMConfig):
        """
        Initialize LLM client with configuration.

        Args:
            config: LLM configuration
        """
        self.config = config
        self._llm: Optional[ChatOpenAI] = None
        self._is_connected = False

        logger.info(
            "LLMClient initialized",
            default_model=config.default_model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds
        )

    async def connect(self) -> None:
        """
        Initialize LangChain ChatOpenAI client.

        Note: This creates the client configuration but doesn't make any API calls.

        Raises:
            LLMError: If initialization fails
        """
        if self._is_connected:
            logger.warning("LLM client already connected")
            return

        trace_id = current_trace_id()
        logger.info("Initializing LLM client", trace_id=trace_id)

        try:
            self._llm = ChatOpenAI(
                model=self.config.default_model,
                api_key=SecretStr(self.config.openrouter_api_key),
                base_url=self.config.base_url,
                temperature=self.config.temperature,
                max_completion_tokens=self.config.max_tokens,
                top_p=self.config.top_p,
                timeout=self.config.timeout_seconds,
                max_retries=self.config.max_retries
            )

            self._is_connected = True
            logger.info("LLM client initialized successfully", trace_id=trace_id)

        except Exception as e:
            error_msg = f"Failed to initialize LLM client: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise LLMError(error_msg) from e

    async def close(self) -> None:
        """Close LLM client and release resources."""
        trace_id = current_trace_id()
        logger.info("Closing LLM client", trace_id=trace_id)

        # LangChain ChatOpenAI doesn't need explicit cleanup
        self._is_connected = False
        self._llm = None

        logger.info("LLM client closed", trace_id=trace_id)

    def is_connected(self) -> bool:
        """Check if LLM client is connected."""
        return self._is_connected and self._llm is not None

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate(
        self,
        system_prompt: str,
        conversation: List[ConversationMessage],
        temperature: Optional[float] = None,
        structured_schema: Optional[StructuredSchema] = None
    ) -> str:
        """
        Generate a text response from the LLM.

        Args:
            system_prompt: System prompt for the call
            conversation: Conversation turns after the system prompt, oldest first
            temperature: Optional temperature override (0.0-1.0)
            structured_schema: Optional {"name": ..., "schema": {...}} requesting
                strict JSON-schema output

        Returns:
            Generated text ("" when the model returned no content)

        Raises:
            LLMError: If the call fails, times out or input exceeds max_input_chars

        Example:
            response = await client.generate(
                system_prompt="Classify the question.",
                conversation=[ConversationMessage(role=MessageRole.USER, content="How many users?")],
                temperature=0.0,
                structured_schema={"name": "question_classification", "schema": {...}},
            )
        """
        llm = self._require_llm()
        self._validate_input(system_prompt, conversation)

        trace_id = current_trace_id()
        logger.info(
            "Generating LLM response",
            system_prompt_length=len(system_prompt),
            conversation_length=len(conversation),
            temperature=temperature,
            structured=structured_schema is not None,
            trace_id=trace_id
        )

        bind_kwargs: Dict[str, Any] = {}
        if temperature is not None:
            bind_kwargs["temperature"] = temperature
        if structured_schema is not None:
            bind_kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": structured_schema["name"],
                    "strict": True,
                    "schema": structured_schema["schema"],
                },
            }

        runnable = llm.bind(**bind_kwargs) if bind_kwargs else llm
        response = await self._invoke(runnable, self._to_messages(system_prompt, conversation))

        content = self._content_text(response)
        if not content:
            logger.warning("LLM returned empty response", trace_id=trace_id)

        logger.info("LLM response generated", response_length=len(content), trace_id=trace_id)
        return content

    async def generate_with_tools(
        self,
        system_prompt: str,
        conversation: List[ConversationMessage],
        tools: List[ToolDefinition],
        temperature: Optional[float] = None
    ) -> ToolCallingTurn:
        """
        Generate one assistant turn with tools available.

        Parallel tool calls are disabled, so the model requests at most one
        action at a time and results can feed the next request.

        Args:
            system_prompt: System prompt for the call
            conversation: Conversation so far, including earlier tool turns
            tools: OpenAI-format tool definitions
            temperature: Optional temperature override

        Returns:
            ToolCallingTurn with assistant text and requested tool calls.
            Calls whose arguments could not be decoded carry an error.

        Raises:
            LLMError: If the call fails, times out or input exceeds max_input_chars
        """
        llm = self._require_llm()
        self._validate_input(system_prompt, conversation)

        trace_id = current_trace_id()
        logger.info(
            "Generating LLM response with tools",
            system_prompt_length=len(system_prompt),
            conversation_length=len(conversation),
            tool_names=[tool.get("function", {}).get("name") for tool in tools],
            temperature=temperature,
            trace_id=trace_id
        )

        bind_kwargs: Dict[str, Any] = {"parallel_tool_calls": False}
        if temperature is not None:
            bind_kwargs["temperature"] = temperature

        runnable = llm.bind_tools(tools, **bind_kwargs)
        response = await self._invoke(runnable, self._to_messages(system_prompt, conversation))

        tool_calls: List[ToolCall] = []
        for call in getattr(response, "tool_calls", None) or []:
            tool_calls.append(ToolCall(
                id=call.get("id") or "",
                name=call.get("name") or "",
                arguments=call.get("args") or {},
            ))
        for call in getattr(response, "invalid_tool_calls", None) or []:
            tool_calls.append(ToolCall(
                id=call.get("id") or "",
                name=call.get("name") or "",
                error=call.get("error") or f"Could not parse tool arguments: {call.get('args')}",
            ))

        content = self._content_text(response)
        logger.info(
            "LLM tool turn generated",
            response_length=len(content),
            tool_call_count=len(tool_calls),
            trace_id=trace_id
        )
        return ToolCallingTurn(content=content, tool_calls=tool_calls)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_llm(self) -> ChatOpenAI:
        if not self.is_connected() or self._llm is None:
            raise LLMError("LLM client is not connected")
        return self._llm

    def _validate_input(self, system_prompt: str, conversation: List[ConversationMessage]) -> None:
        try:
            InputValidator.validate_conversation_chars(
                system_prompt=system_prompt,
                messages=[message.content for message in conversation],
                max_chars=self.config.max_input_chars
            )
        except ValueError as e:
            raise LLMError(str(e)) from e

    async def _invoke(self, runnable: Any, messages: List[BaseMessage]) -> Any:
        """Run one bounded model call; every failure except cancellation becomes LLMError."""
        trace_id = current_trace_id()
        try:
            return await asyncio.wait_for(
                runnable.ainvoke(messages),
                timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            error_msg = f"LLM request timed out after {self.config.timeout_seconds}s"
            logger.error(error_msg, trace_id=trace_id)
            raise LLMError(error_msg) from e
        except LLMError:
            raise
        except Exception as e:
            error_msg = f"LLM generation failed: {e}"
            logger.error(
                error_msg,
                error_type=type(e).__name__,
                message_count=len(messages),
                trace_id=trace_id
            )
            raise LLMError(error_msg) from e

    @staticmethod
    def _content_text(response: Any) -> str:
        """Flatten message content (string or list of content blocks) to text."""
        content = getattr(response, "content", None)
        if not content:
            return ""
        if isinstance(content, str):
            return content
        parts: List[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)

    @staticmethod
    def _to_messages(system_prompt: str, conversation: List[ConversationMessage]) -> List[BaseMessage]:
        """Convert domain conversation turns to LangChain messages."""
        messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
        for message in conversation:
            if message.role == MessageRole.SYSTEM:
                messages.append(SystemMessage(content=message.content))
            elif message.role == MessageRole.USER:
                messages.append(HumanMessage(content=message.content))
            elif message.role == MessageRole.ASSISTANT:
                messages.append(AIMessage(
                    content=message.content,
                    tool_calls=[
                        {"name": call.name, "args": call.arguments, "id": call.id}
                        for call in message.tool_calls
                    ],
                ))
            elif message.role == MessageRole.TOOL:
                messages.append(ToolMessage(
                    content=message.content,
                    tool_call_id=message.tool_call_id or "",
                ))
        return messages
