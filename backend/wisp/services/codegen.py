"""Code generation through an OpenRouter chat-completions model."""
import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as SchemaValidationError

from wisp.schemas.codegen import FileChange, FileChangeSet
from wisp.services.github import RepositoryContent
from wisp.utils.exceptions import ExternalServiceError, RateLimitedError, response_json
from wisp.utils.logger import logger
from wisp.utils.retry import Sleep

SYSTEM = "codegen"

SYSTEM_PROMPT = """You are wisp, an expert senior software developer with deep knowledge of React, Vite \
and progressive web apps. You are given a template repository set up with React and Vite-PWA and \
you change it to implement what you are asked.

Rules:
- Always return the COMPLETE content of every file you change, never a partial diff.
- Only touch files that need to change. Do not make unrelated modifications.
- Paths are relative to the repository root and contain only letters, digits, "-", "_", "." and "/".
- Change at most 20 files.
- Describe each change in 10 to 200 characters."""

RESPONSE_FORMAT = """Respond with JSON only, matching this structure:
```json
{"changes": [{"path": "src/App.tsx", "content": "<full file content>", "description": "<what changed and why>"}]}
```"""

DEFAULT_RETRY_AFTER = 30.0


def strip_json_fence(text: str) -> str:
    """Return the JSON payload from a response that may be wrapped in a markdown fence."""
    content = text.strip()
    if "```json" in content:
        content = content.split("```json")[1].split("```")[0].strip()
    elif "```" in content:
        content = content.split("```")[1].split("```")[0].strip()
    return content


def format_questions(questions: Optional[Dict[str, str]]) -> str:
    """Render clarifying question/answer pairs as an instruction appendix."""
    if not questions:
        return ""
    return "\n\nAdditional context from the user's answers to clarifying questions:\n" + json.dumps(
        questions, indent=2
    )


def _retry_after_seconds(response: httpx.Response) -> float:
    value = response.headers.get("retry-after")
    if value is None:
        return DEFAULT_RETRY_AFTER
    try:
        return max(float(value), 0.0)
    except ValueError:
        return DEFAULT_RETRY_AFTER


class CodeGenerator:
    """
    Code-generation capability.

    Given repository content and an instruction (a feature request or
    deployment error text), returns a bounded list of full-file changes. The
    result may be empty; malformed model output raises ExternalServiceError.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        rate_limit_retries: int = 3,
        max_tokens: int = 8192,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if not api_key:
            raise ValueError("API key required. Set CODEGEN_API_KEY environment variable.")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.rate_limit_retries = rate_limit_retries
        self.max_tokens = max_tokens
        self._transport = transport
        self._sleep = sleep
        logger.info(f"[CODEGEN] Initialized with model: {self.model}")

    async def generate_changes(
        self,
        repo_content: RepositoryContent,
        instruction: str,
        questions: Optional[Dict[str, str]] = None,
    ) -> List[FileChange]:
        """Generate the changes implementing a feature request."""
        prompt = (
            f"Repository content:\n\n{repo_content.render()}\n\n"
            f"Implement the following app idea in this repository:\n\n{instruction}"
            f"{format_questions(questions)}\n\n{RESPONSE_FORMAT}"
        )
        return await self._generate(prompt, operation="generate_code_changes")

    async def generate_fix(self, repo_content: RepositoryContent, error_text: str) -> List[FileChange]:
        """Generate a minimal, targeted fix for a deployment error."""
        prompt = (
            f"Fix the following deployment error in this repository:\n\nError: {error_text}\n\n"
            f"Repository content:\n{repo_content.render()}\n\n"
            "Generate the necessary fixes to resolve this deployment error. Focus ONLY on changes "
            "that would fix the error. Be precise and minimal in your changes. Do not add features "
            "or make unrelated modifications. Only include files that need to be modified to fix "
            f"the error.\n\n{RESPONSE_FORMAT}"
        )
        return await self._generate(prompt, operation="generate_deployment_fix")

    async def _generate(self, prompt: str, operation: str) -> List[FileChange]:
        attempt = 0
        while True:
            try:
                text = await self._complete(prompt, operation)
                break
            except RateLimitedError as e:
                attempt += 1
                if attempt > self.rate_limit_retries:
                    raise
                logger.warning(
                    f"[CODEGEN] Rate limited during {operation}; waiting {e.retry_after:.0f}s "
                    f"({attempt}/{self.rate_limit_retries})"
                )
                await self._sleep(e.retry_after)

        changes = self._parse_changes(text, operation)
        logger.info(f"[CODEGEN] {operation} produced {len(changes)} file change(s)")
        return changes

    async def _complete(self, prompt: str, operation: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://usewisp.app",
            "X-Title": "Wisp",
        }

        try:
            async with httpx.AsyncClient(timeout=300.0, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SYSTEM, f"Code generation request failed: {e}", operation=operation, cause=e
            )

        if response.status_code == 429:
            retry_after = _retry_after_seconds(response)
            raise RateLimitedError(
                SYSTEM,
                f"Code generation rate limited, retry after {retry_after:.0f}s",
                retry_after=retry_after,
                operation=operation,
            )
        if response.status_code != 200:
            logger.error(f"[CODEGEN] Error response: {response.status_code} - {response.text}")
            raise ExternalServiceError(
                SYSTEM,
                f"Code generation failed ({response.status_code}): {response.text}",
                operation=operation,
                details={"status_code": response.status_code},
            )

        result = response_json(response, SYSTEM, operation)
        if "choices" in result and len(result["choices"]) > 0:
            return result["choices"][0]["message"]["content"] or ""
        raise ExternalServiceError(
            SYSTEM, f"Unexpected response format: {result}", operation=operation
        )

    def _parse_changes(self, text: str, operation: str) -> List[FileChange]:
        try:
            data: Any = json.loads(strip_json_fence(text))
            return FileChangeSet.model_validate(data).changes
        except (json.JSONDecodeError, SchemaValidationError) as e:
            logger.error(f"[CODEGEN] Malformed output for {operation}: {text[:200]}")
            raise ExternalServiceError(
                SYSTEM,
                f"Code generator returned malformed output: {e}",
                operation=operation,
                cause=e,
            )
