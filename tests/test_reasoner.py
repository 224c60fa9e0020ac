"""
Test cases for the reasoner adapters.
"""
import base64
import unittest
import sys
from pathlib import Path

from aiohttp import test_utils, web

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from nodcam.config import ReasonerConfig
from nodcam.reasoner import GeminiReasoner, OllamaReasoner, create_reasoner


def reasoner_config(provider, api_key=None):
    return ReasonerConfig(provider=provider, model="llava", ollama_url="http://localhost:11434",
                          system_prompt="Answer yes or no.", analysis_prompt="Describe.",
                          api_key=api_key)


class TestCreateReasoner(unittest.TestCase):
    """Test reasoner selection from configuration."""

    def test_ollama(self):
        """Test that the ollama provider needs no API key."""
        reasoner = create_reasoner(reasoner_config("ollama"))

        self.assertIsInstance(reasoner, OllamaReasoner)
        self.assertEqual(reasoner.model, "llava")

    def test_gemini_requires_key(self):
        """Test that Gemini without an API key is a configuration error."""
        with self.assertRaises(ValueError):
            create_reasoner(reasoner_config("gemini"))
        with self.assertRaises(ValueError):
            GeminiReasoner(api_key="")

    def test_unknown_provider(self):
        """Test that an unknown provider is rejected."""
        with self.assertRaises(ValueError):
            create_reasoner(reasoner_config("mystery"))


class TestOllamaReasoner(unittest.IsolatedAsyncioTestCase):
    """Test the Ollama chat adapter against a local server."""

    async def start(self, reply=None, status=200):
        self.payloads = []

        async def chat(request):
            self.payloads.append(await request.json())
            if status != 200:
                return web.Response(status=status, text="model not loaded")
            return web.json_response(reply)

        app = web.Application()
        app.router.add_post("/api/chat", chat)
        server = test_utils.TestServer(app)
        await server.start_server()
        self.addAsyncCleanup(server.close)
        return OllamaReasoner("llava", base_url=f"http://127.0.0.1:{server.port}/")

    async def test_answer_with_image(self):
        """Test that the prompt and base64 image are sent and the reply text returned."""
        reasoner = await self.start({"message": {"role": "assistant", "content": "Yes."}})

        answer = await reasoner.ask("Answer yes or no.", "Is there a cat?", b"\xff\xd8jpeg")

        self.assertEqual(answer, "Yes.")
        payload = self.payloads[0]
        self.assertEqual(payload["model"], "llava")
        self.assertFalse(payload["stream"])
        self.assertEqual(payload["messages"][0], {"role": "system", "content": "Answer yes or no."})
        self.assertEqual(payload["messages"][1]["images"],
                         [base64.b64encode(b"\xff\xd8jpeg").decode("ascii")])

    async def test_error_status(self):
        """Test that a server error yields no answer instead of raising."""
        reasoner = await self.start(status=500)

        self.assertIsNone(await reasoner.ask("s", "u"))

    async def test_missing_message(self):
        """Test that a reply without a message yields no answer."""
        reasoner = await self.start({"error": "oops"})

        self.assertIsNone(await reasoner.ask("s", "u"))

    async def test_unexpected_json_shapes(self):
        """Test that replies which are not chat objects yield no answer instead of raising."""
        for reply in (["Yes."], "Yes.", {"message": "Yes."}, {"message": {"content": 42}}):
            with self.subTest(reply=reply):
                reasoner = await self.start(reply)
                self.assertIsNone(await reasoner.ask("s", "u"))

    async def test_unreachable(self):
        """Test that a stopped server yields no answer."""
        reasoner = OllamaReasoner("llava", base_url=f"http://127.0.0.1:{test_utils.unused_port()}")

        self.assertIsNone(await reasoner.ask("s", "u"))


if __name__ == '__main__':
    unittest.main()
