"""Ollama classifier client with rate limiting."""

import json
import logging
import re
import time
from collections import deque
from typing import Any, Optional, Sequence

import requests

logger = logging.getLogger(__name__)


class ClassifierError(Exception):
    """Raised when the classifier endpoint fails or answers unusably."""
    pass


class RateLimitExceeded(ClassifierError):
    """Raised when the client-side request budget would be exceeded."""

    def __init__(self, wait_seconds: float):
        self.wait_seconds = wait_seconds
        super().__init__(f"Rate limit reached. Wait {wait_seconds:.0f} seconds.")


PROMPT_TEMPLATE = """Analyze the following expense description and suggest the most appropriate category.
Categories: {categories}

Expense description: "{description}"

Respond with ONLY JSON in this format:
{{"category": "suggested_category", "confidence": 0.0, "reasoning": "brief explanation"}}

Guidelines:
- "travel" for transportation, hotels, flights, car rentals
- "food" for meals, catering, team lunches, coffee
- "supplies" for office supplies, stationery, materials
- "software" for SaaS subscriptions, licenses, development tools
- "hardware" for computers, devices, equipment
- "training" for courses, conferences, professional development
- "entertainment" for team events, client entertainment
- "other" for anything that doesn't fit above categories"""


class OllamaClassifier:
    """Category classifier backed by an Ollama-compatible generate endpoint."""

    RATE_LIMIT = 60  # requests per minute
    RATE_WINDOW = 60

    def __init__(self, host: str = "http://localhost:11434", model_name: str = "qwen3:8b",
                 timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.host = host.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_times: deque = deque(maxlen=self.RATE_LIMIT)

    def _check_rate_limit(self) -> None:
        """Ensure we don't exceed rate limits."""
        now = time.time()
        while self._request_times and self._request_times[0] < now - self.RATE_WINDOW:
            self._request_times.popleft()

        if len(self._request_times) >= self.RATE_LIMIT:
            wait_time = self._request_times[0] - (now - self.RATE_WINDOW)
            raise RateLimitExceeded(wait_time)

        self._request_times.append(now)

    @property
    def requests_remaining(self) -> int:
        """Get number of requests remaining in current window."""
        now = time.time()
        recent = sum(1 for t in self._request_times if t > now - self.RATE_WINDOW)
        return self.RATE_LIMIT - recent

    @staticmethod
    def _parse_json(text: str) -> dict[str, Any]:
        """Extract the first JSON object from a model response."""
        match = re.search(r"\{[^{}]*\}", text)
        if not match:
            raise ClassifierError(f"No JSON object in classifier response: {text[:100]!r}")
        try:
            return json.loads(match.group())
        except json.JSONDecodeError as e:
            raise ClassifierError(f"Malformed JSON from classifier: {e}") from e

    def suggest(self, description: str, categories: Sequence[str]) -> dict[str, Any]:
        """Ask the model for a category. Raises ClassifierError on any failure."""
        self._check_rate_limit()
        prompt = PROMPT_TEMPLATE.format(categories=", ".join(categories), description=description)

        try:
            response = self.session.post(
                f"{self.host}/api/generate",
                json={
                    "model": self.model_name,
                    "prompt": prompt,
                    "stream": False,
                    "format": "json",
                    "options": {"temperature": 0.3},
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ClassifierError(f"Classifier request failed: {e}") from e

        if response.status_code != 200:
            raise ClassifierError(f"Classifier API error: {response.status_code}")

        return self._parse_json(response.json().get("response", ""))

    def test_connection(self) -> bool:
        """Check the endpoint is up and the model is available."""
        try:
            response = self.session.get(f"{self.host}/api/tags", timeout=self.timeout)
        except requests.RequestException:
            return False
        if response.status_code != 200:
            return False

        model_names = [m.get("name") for m in response.json().get("models", [])]
        if self.model_name not in model_names:
            logger.warning(f"Model {self.model_name} not found. Available models: {model_names}")
            return False
        return True
