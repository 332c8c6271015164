"""
AI Agent runner for Kontextor.

This module handles communication with Ollama and runs the agents that
consume assembled workspace context.
"""

import httpx
import json
import time
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..assembly import assemble_context, extract_system_prompt
from ..config import config
from ..exceptions import AgentError, InvalidStateError, NotFoundError
from ..models import Block, ContextMessage, ConversationMessage
from ..references import ReferenceManager
from .registry import agent_registry


class AgentRunner:
    """
    Manages communication with Ollama and runs AI agents.
    """

    def __init__(self, references: ReferenceManager, ollama_host: Optional[str] = None,
                 model: Optional[str] = None):
        """
        Initialize the agent runner.

        Args:
            references: Reference manager used to read and update blocks
            ollama_host: The Ollama server URL (defaults to config value)
            model: The model name to use for inference (defaults to config value)
        """
        self.references = references
        self.db = references.db
        self.ollama_host = ollama_host or config.ollama_host
        self.model = model or config.model_name
        self.client = httpx.Client(timeout=config.ollama_timeout)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.client.close()

    def _call_ollama_chat(
        self,
        messages: Sequence[ContextMessage],
        system_prompt: Optional[str] = None,
        agent_name: str = "unknown",
        workspace_id: Optional[str] = None,
        block_id: Optional[str] = None
    ) -> str:
        """
        Send a non-streaming chat request to Ollama and log the call.

        Args:
            messages: Assembled messages, system prompt excluded
            system_prompt: Optional system prompt sent as the first message
            agent_name: Name of the agent making the call
            workspace_id: Related workspace (optional)
            block_id: Related block (optional)

        Returns:
            The model's response text

        Raises:
            AgentError: If the Ollama request fails
        """
        start_time = time.time()
        success = False
        error_message = None
        raw_response = ""

        payload_messages: List[Dict[str, Any]] = []
        if system_prompt:
            payload_messages.append({"role": "system", "content": system_prompt})
        payload_messages.extend(m.model_dump() for m in messages)

        try:
            response = self.client.post(
                f"{self.ollama_host}/api/chat",
                json={
                    "model": self.model,
                    "messages": payload_messages,
                    "stream": False
                }
            )
            response.raise_for_status()

            result = response.json()
            raw_response = result.get("message", {}).get("content", "")
            success = True

            return raw_response

        except httpx.RequestError as e:
            error_message = f"Failed to connect to Ollama: {e}"
            raise AgentError(error_message) from e
        except httpx.HTTPStatusError as e:
            error_message = f"Ollama request failed: {e}"
            raise AgentError(error_message) from e
        except ValueError as e:
            error_message = f"Ollama returned invalid JSON: {e}"
            raise AgentError(error_message) from e
        finally:
            # Log the call to the database for reproducibility
            execution_time_ms = int((time.time() - start_time) * 1000)

            if self.db.connection:
                try:
                    self.db.log_generation(
                        agent_name=agent_name,
                        messages=json.dumps(payload_messages),
                        model_name=self.model,
                        raw_response=raw_response,
                        system_prompt=system_prompt,
                        success=success,
                        error_message=error_message,
                        execution_time_ms=execution_time_ms,
                        workspace_id=workspace_id,
                        block_id=block_id
                    )
                except Exception as log_error:
                    logging.warning(f"Failed to log generation: {log_error}")

    def build_request(
        self,
        blocks: List[Block],
        prompt: str,
        history: Optional[Sequence[ConversationMessage]] = None
    ) -> Dict[str, Any]:
        """
        Build the system prompt and messages for a model request.

        Returns:
            Dictionary with "system_prompt" and "messages"
        """
        agent_config = agent_registry.get_agent("assistant")
        system_prompt = extract_system_prompt(blocks)
        if system_prompt is None and agent_config:
            system_prompt = agent_config.system_prompt
        return {
            "system_prompt": system_prompt,
            "messages": assemble_context(blocks, prompt, history)
        }

    def generate(
        self,
        workspace_id: str,
        prompt: str,
        history: Optional[Sequence[ConversationMessage]] = None
    ) -> str:
        """
        Answer a prompt against a workspace's assembled context.

        Args:
            workspace_id: The workspace whose blocks form the context
            prompt: The new user prompt
            history: Optional prior conversational turns

        Returns:
            The model's response text
        """
        blocks = self.references.list_blocks(workspace_id)
        request = self.build_request(blocks, prompt, history)
        logging.info(
            f"Generating for workspace {workspace_id} with {len(request['messages'])} message(s)"
        )
        return self._call_ollama_chat(
            request["messages"],
            system_prompt=request["system_prompt"],
            agent_name="assistant",
            workspace_id=workspace_id
        )

    def compress_block(self, block_id: str, strategy: str = "llm") -> Block:
        """
        Run the Compressor agent on a block and store the rewrite in place.

        Args:
            block_id: The block to compress; must be a regular block
            strategy: Label recorded as the compression strategy

        Returns:
            The compressed block

        Raises:
            NotFoundError: If the block does not exist
            InvalidStateError: If the block is linked
            AgentError: If the model call fails or returns nothing
        """
        agent_config = agent_registry.get_agent("compressor")
        if not agent_config:
            raise ValueError("Compressor agent not found in registry")

        block = self.references.get_block(block_id)
        if block is None:
            raise NotFoundError(f"Block not found: {block_id}")
        if block.is_linked:
            raise InvalidStateError(f"Cannot compress linked block {block_id}; unlink it first")

        compressed = self._call_ollama_chat(
            [ContextMessage(role="user", content=block.content)],
            system_prompt=agent_config.system_prompt,
            agent_name="compressor",
            workspace_id=block.workspace_id,
            block_id=block_id
        ).strip()

        if not compressed:
            raise AgentError(f"Compressor returned no content for block {block_id}")

        return self.references.compress(block_id, compressed, strategy=strategy)
