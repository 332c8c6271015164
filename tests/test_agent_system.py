"""
Tests for the AI agent system.

The Ollama HTTP client is mocked; these tests check the request built from a
workspace, the handling of failures and the generation log.
"""

import json
import unittest
from unittest.mock import Mock, patch

import httpx

from kontextor.agents import AgentRunner, AgentRegistry, AgentConfig, agent_registry
from kontextor.database import DatabaseManager
from kontextor.exceptions import AgentError, InvalidStateError, NotFoundError
from kontextor.models import Zone
from kontextor.references import ReferenceManager


def ollama_response(content):
    response = Mock()
    response.raise_for_status.return_value = None
    response.json.return_value = {"message": {"role": "assistant", "content": content}}
    return response


class TestAgentRegistry(unittest.TestCase):
    """Test agent registry functionality."""

    def test_default_agents(self):
        registry = AgentRegistry()
        self.assertEqual(set(registry.list_agents()), {"assistant", "compressor"})
        self.assertIn("Output only the rewritten text", registry.get_agent("compressor").system_prompt)

    def test_register_agent(self):
        registry = AgentRegistry()
        registry.register_agent(AgentConfig(name="critic", description="Finds gaps", system_prompt="Critique."))
        self.assertEqual(registry.get_agent("critic").timeout, 60.0)
        self.assertIsNone(registry.get_agent("missing"))


class TestAgentRunner(unittest.TestCase):
    """Test AgentRunner against a mocked Ollama server."""

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.db.connect()
        self.db.initialize_database()
        self.references = ReferenceManager(self.db)
        with self.db.transaction():
            self.workspace_id = self.db.create_workspace(name="Chat").workspace_id
        self.runner = AgentRunner(self.references, ollama_host="http://ollama.test", model="test-model")

    def tearDown(self):
        self.runner.client.close()
        self.db.disconnect()

    def test_generate_sends_assembled_context(self):
        self.references.create_block(
            self.workspace_id, "Answer in French.", kind="system_prompt", zone=Zone.PERMANENT
        )
        self.references.create_block(self.workspace_id, "Glossary", zone=Zone.STABLE)

        with patch.object(self.runner.client, "post", return_value=ollama_response("Bonjour")) as post:
            answer = self.runner.generate(self.workspace_id, "Hello")

        self.assertEqual(answer, "Bonjour")
        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        self.assertEqual(url, "http://ollama.test/api/chat")
        self.assertEqual(payload["model"], "test-model")
        self.assertFalse(payload["stream"])
        self.assertEqual(
            payload["messages"],
            [
                {"role": "system", "content": "Answer in French."},
                {"role": "user", "content": "Reference Material:\n\nGlossary"},
                {"role": "user", "content": "Hello"},
            ]
        )

        generations = self.db.get_generations(workspace_id=self.workspace_id)
        self.assertEqual(len(generations), 1)
        self.assertTrue(generations[0]["success"])
        self.assertEqual(generations[0]["agent_name"], "assistant")
        self.assertEqual(json.loads(generations[0]["messages"])[-1]["content"], "Hello")

    def test_fallback_system_prompt(self):
        request = self.runner.build_request([], "Hi")
        self.assertEqual(request["system_prompt"], agent_registry.get_agent("assistant").system_prompt)
        self.assertEqual(len(request["messages"]), 1)

    def test_connection_failure_is_logged(self):
        error = httpx.ConnectError("refused")
        with patch.object(self.runner.client, "post", side_effect=error):
            with self.assertRaises(AgentError):
                self.runner.generate(self.workspace_id, "Hello")

        generations = self.db.get_generations()
        self.assertEqual(len(generations), 1)
        self.assertFalse(generations[0]["success"])
        self.assertIn("Failed to connect", generations[0]["error_message"])
        self.assertEqual(self.db.get_generations(success_only=True), [])

    def test_compress_block(self):
        block = self.references.create_block(self.workspace_id, "A long and wordy paragraph " * 4)

        with patch.object(self.runner.client, "post", return_value=ollama_response("  Short.  ")):
            compressed = self.runner.compress_block(block.block_id)

        self.assertEqual(compressed.content, "Short.")
        self.assertTrue(compressed.is_compressed)
        self.assertEqual(compressed.compression_strategy, "llm")
        self.assertEqual(compressed.original_token_count, block.token_count)
        self.assertEqual(self.db.get_generations(agent_name="compressor")[0]["block_id"], block.block_id)

    def test_compress_rejects_linked_and_missing_blocks(self):
        with self.db.transaction():
            library = self.db.create_workspace(name="Library").workspace_id
        canonical = self.references.create_block(library, "Shared")
        linked = self.references.create_linked(self.workspace_id, canonical.block_id)

        with patch.object(self.runner.client, "post") as post:
            with self.assertRaises(InvalidStateError):
                self.runner.compress_block(linked.block_id)
            with self.assertRaises(NotFoundError):
                self.runner.compress_block("missing")
            post.assert_not_called()

    def test_empty_compression_is_rejected(self):
        block = self.references.create_block(self.workspace_id, "Keep me")

        with patch.object(self.runner.client, "post", return_value=ollama_response("   ")):
            with self.assertRaises(AgentError):
                self.runner.compress_block(block.block_id)

        self.assertEqual(self.references.get_block(block.block_id).content, "Keep me")


if __name__ == "__main__":
    unittest.main()
