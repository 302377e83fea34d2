# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from google import genai
from google.genai import types

from roboprep.config import Settings
from roboprep.shared.prompt_templates import replace_variables

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = "You are an AI assistant helping radio DJs create show content."
RETRYABLE_MARKERS = ("rate limit", "timeout", "503", "429")


class AiProviderError(Exception):
    pass


class GeminiInvalidResponseException(AiProviderError):
    pass


@dataclass
class AiResult:
    response_text: str
    model_used: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


def is_retryable(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


class GeminiClient:
    """Thin wrapper over google-genai configured from Settings."""

    def __init__(self, settings: Settings, sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self._sleep = sleep
        self._client = None

    def _get_client(self) -> genai.Client:
        if not self.settings.gemini_api_key:
            raise AiProviderError("AI API key is not configured")
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.gemini_api_key)
        return self._client

    def generate_response(
        self,
        prompt_text: str,
        variables: Optional[dict] = None,
        model: Optional[str] = None,
    ) -> AiResult:
        model = model or self.settings.gemini_model
        query = replace_variables(prompt_text, variables or {})
        truncated_query = (query[:200] + "...") if len(query) > 200 else query
        logger.info("Calling Gemini (%s), prompt: '%s'", model, truncated_query)

        start_time = time.time()
        response = self._get_client().models.generate_content(
            model=model,
            contents=query,
            config=types.GenerateContentConfig(
                system_instruction=SYSTEM_INSTRUCTION,
                temperature=self.settings.ai_temperature,
                max_output_tokens=self.settings.ai_max_output_tokens,
            ),
        )
        logger.info("Gemini call took: %.2fs", time.time() - start_time)
        if not response.text:
            raise GeminiInvalidResponseException("Model returned an empty response")

        usage = getattr(response, "usage_metadata", None)
        return AiResult(
            response_text=response.text,
            model_used=model,
            prompt_tokens=getattr(usage, "prompt_token_count", None),
            completion_tokens=getattr(usage, "candidates_token_count", None),
            total_tokens=getattr(usage, "total_token_count", None),
        )

    def generate_with_retry(
        self,
        prompt_text: str,
        variables: Optional[dict] = None,
        model: Optional[str] = None,
    ) -> AiResult:
        """
        Call generate_response, retrying rate-limit and timeout failures with
        exponential backoff. Non-retryable errors surface on the first attempt.
        """
        max_attempts = max(1, self.settings.ai_max_retries)
        delay = self.settings.ai_initial_retry_delay
        for attempt in range(1, max_attempts + 1):
            try:
                return self.generate_response(prompt_text, variables, model)
            except AiProviderError:
                raise
            except Exception as e:
                if attempt < max_attempts and is_retryable(e):
                    logger.warning(
                        "Gemini attempt %d/%d failed (%s); retrying in %.1fs",
                        attempt,
                        max_attempts,
                        e,
                        delay,
                    )
                    self._sleep(delay)
                    delay *= 2
                    continue
                logger.error("Gemini call failed after %d attempt(s): %s", attempt, e)
                raise AiProviderError(str(e)) from e
        raise AiProviderError("AI request failed")
