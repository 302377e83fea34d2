import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from roboprep.config import Settings
from roboprep.models.gemini import (
    SYSTEM_INSTRUCTION,
    AiProviderError,
    GeminiClient,
    GeminiInvalidResponseException,
    is_retryable,
)


def _response(text="Here is your bio."):
    return SimpleNamespace(
        text=text,
        usage_metadata=SimpleNamespace(
            prompt_token_count=11, candidates_token_count=22, total_token_count=33
        ),
    )


class GeminiClientTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(
            gemini_api_key="test-key",
            gemini_model="gemini-test",
            ai_max_retries=3,
            ai_initial_retry_delay=1.0,
        )
        self.sleep = MagicMock()
        self.client = GeminiClient(self.settings, sleep=self.sleep)

    @patch("roboprep.models.gemini.genai.Client")
    def test_generate_response_substitutes_variables(self, mock_client_cls):
        models = mock_client_cls.return_value.models
        models.generate_content.return_value = _response()

        result = self.client.generate_response(
            "Write a bio of {{artist}}.", {"artist": "Prince"}
        )

        mock_client_cls.assert_called_once_with(api_key="test-key")
        kwargs = models.generate_content.call_args.kwargs
        self.assertEqual(kwargs["model"], "gemini-test")
        self.assertEqual(kwargs["contents"], "Write a bio of Prince.")
        self.assertEqual(kwargs["config"].system_instruction, SYSTEM_INSTRUCTION)
        self.assertEqual(kwargs["config"].max_output_tokens, 2048)
        self.assertEqual(kwargs["config"].temperature, 0.7)

        self.assertEqual(result.response_text, "Here is your bio.")
        self.assertEqual(result.model_used, "gemini-test")
        self.assertEqual(
            (result.prompt_tokens, result.completion_tokens, result.total_tokens),
            (11, 22, 33),
        )

    @patch("roboprep.models.gemini.genai.Client")
    def test_empty_response_raises(self, mock_client_cls):
        mock_client_cls.return_value.models.generate_content.return_value = _response("")
        with self.assertRaises(GeminiInvalidResponseException):
            self.client.generate_with_retry("Hello")
        self.sleep.assert_not_called()

    def test_missing_api_key(self):
        client = GeminiClient(Settings(gemini_api_key=None), sleep=self.sleep)
        with self.assertRaises(AiProviderError):
            client.generate_with_retry("Hello")

    @patch("roboprep.models.gemini.genai.Client")
    def test_retries_rate_limits_with_backoff(self, mock_client_cls):
        models = mock_client_cls.return_value.models
        models.generate_content.side_effect = [
            RuntimeError("429 Too Many Requests"),
            RuntimeError("503 Service Unavailable"),
            _response("Finally"),
        ]

        result = self.client.generate_with_retry("Hello")

        self.assertEqual(result.response_text, "Finally")
        self.assertEqual(models.generate_content.call_count, 3)
        self.assertEqual([c.args[0] for c in self.sleep.call_args_list], [1.0, 2.0])

    @patch("roboprep.models.gemini.genai.Client")
    def test_gives_up_after_max_attempts(self, mock_client_cls):
        models = mock_client_cls.return_value.models
        models.generate_content.side_effect = RuntimeError("Request timeout")

        with self.assertRaises(AiProviderError) as ctx:
            self.client.generate_with_retry("Hello")

        self.assertIn("timeout", str(ctx.exception))
        self.assertEqual(models.generate_content.call_count, 3)
        self.assertEqual(self.sleep.call_count, 2)

    @patch("roboprep.models.gemini.genai.Client")
    def test_non_retryable_error_fails_fast(self, mock_client_cls):
        models = mock_client_cls.return_value.models
        models.generate_content.side_effect = ValueError("400 invalid argument")

        with self.assertRaises(AiProviderError):
            self.client.generate_with_retry("Hello")

        self.assertEqual(models.generate_content.call_count, 1)
        self.sleep.assert_not_called()

    def test_is_retryable(self):
        self.assertTrue(is_retryable(RuntimeError("Rate limit exceeded")))
        self.assertTrue(is_retryable(RuntimeError("HTTP 429")))
        self.assertFalse(is_retryable(RuntimeError("permission denied")))


if __name__ == "__main__":
    unittest.main()
