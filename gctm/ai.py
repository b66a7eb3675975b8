# ai.py -- Commit message suggestions from language models
# Copyright (C) 2025 The gctm authors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gctm is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Commit message suggestions from hosted or local language models.

Requests are made with urllib3. Proxies configured through the
``https_proxy``, ``http_proxy`` or ``all_proxy`` environment variables are
honoured unless the endpoint matches ``no_proxy``.
"""

__all__ = [
    "PROVIDERS",
    "AIError",
    "CommitMessageAssistant",
    "SuggestionResult",
    "build_prompt",
    "clean_commit_message",
    "default_urllib3_manager",
    "parse_response",
]

import ipaddress
import json
import logging
import os
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import urllib3

from .config import AISettings
from .errors import GctmError

logger = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
GOOGLE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
LOCAL_URL = "http://localhost:11434"

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-20241022",
    "google": "gemini-2.5-flash",
    "local": "llama3.2",
}
PROVIDERS = tuple(DEFAULT_MODELS)

MAX_DIFF_PREVIEW = 1000
MAX_SUGGESTIONS = 5
MINIMAL_LENGTH = 50

SYSTEM_PROMPT = (
    "You are a helpful assistant that generates Git commit messages. "
    "Follow conventional commit standards when appropriate."
)

_STYLE_INSTRUCTIONS = {
    "conventional": {
        "en": "Use conventional commits format: type(scope): description. Types: feat, fix, docs, style, refactor, test, chore",
        "es": "Usa formato de commits convencionales: tipo(alcance): descripción. Tipos: feat, fix, docs, style, refactor, test, chore",
        "fr": "Utilise le format des commits conventionnels: type(portée): description. Types: feat, fix, docs, style, refactor, test, chore",
        "de": "Verwende konventionelles Commit-Format: typ(bereich): beschreibung. Typen: feat, fix, docs, style, refactor, test, chore",
        "tr": "Konvansiyonel commit formatı kullan: tip(kapsam): açıklama. Tipler: feat, fix, docs, style, refactor, test, chore",
    },
    "descriptive": {
        "en": "Write descriptive, detailed commit messages that explain what changed and why",
        "es": "Escribe mensajes de commit descriptivos y detallados que expliquen qué cambió y por qué",
        "fr": "Rédigez des messages de commit descriptifs et détaillés expliquant ce qui a changé et pourquoi",
        "de": "Schreibe beschreibende, detaillierte Commit-Nachrichten, die erklären was sich geändert hat und warum",
        "tr": "Ne değiştiğini ve neden olduğunu açıklayan açıklayıcı, detaylı commit mesajları yaz",
    },
    "minimal": {
        "en": "Write short, minimal commit messages (maximum 50 characters)",
        "es": "Escribe mensajes de commit cortos y mínimos (máximo 50 caracteres)",
        "fr": "Rédigez des messages de commit courts et minimaux (maximum 50 caractères)",
        "de": "Schreibe kurze, minimale Commit-Nachrichten (maximal 50 Zeichen)",
        "tr": "Kısa, minimal commit mesajları yaz (en fazla 50 karakter)",
    },
    "humorous": {
        "en": "Write creative, slightly humorous commit messages while still being professional",
        "es": "Escribe mensajes de commit creativos y ligeramente humorísticos manteniendo la profesionalidad",
        "fr": "Rédigez des messages de commit créatifs et légèrement humoristiques tout en restant professionnel",
        "de": "Schreibe kreative, leicht humorvolle Commit-Nachrichten, die immer noch professionell bleiben",
        "tr": "Hala profesyonel kalırken yaratıcı, esprili commit mesajları yaz",
    },
}

_LANGUAGE_INSTRUCTIONS = {
    "en": "Write the commit message in English.",
    "es": "Escribe el mensaje del commit en español.",
    "fr": "Rédigez le message de commit en français.",
    "de": "Schreibe die Commit-Nachricht auf Deutsch.",
    "tr": "Commit mesajını Türkçe yaz.",
}

_CONVENTIONAL_RE = re.compile(
    r"(feat|fix|docs|style|refactor|test|chore|perf|ci|build|revert)(\(.+\))?:"
)
_PREFIX_RE = re.compile(r"^(commit message:|message:|here'?s? )", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"^\d+\.\s*(.+)$")


class AIError(GctmError):
    """A language model request failed or returned something unusable."""


@dataclass
class SuggestionResult:
    success: bool
    suggestions: list[str] = field(default_factory=list)
    raw: str | None = None
    error: str | None = None


def style_instructions(style: str, language: str) -> str:
    try:
        return _STYLE_INSTRUCTIONS[style][language]
    except KeyError:
        return _STYLE_INSTRUCTIONS["conventional"]["en"]


def language_instructions(language: str) -> str:
    return _LANGUAGE_INSTRUCTIONS.get(language, _LANGUAGE_INSTRUCTIONS["en"])


def build_prompt(
    changed_files: Sequence[str] = (),
    diff: str = "",
    current_message: str = "",
    language: str = "en",
    style: str = "conventional",
    context: str = "",
    custom_instructions: str = "",
) -> str:
    """Build the prompt sent to the model."""
    parts = [
        "You are an expert Git commit message writer. Generate commit "
        "messages based on the provided changes.",
        "",
        language_instructions(language),
        "",
        style_instructions(style, language),
        "",
        "Changes:",
    ]
    if context:
        parts.append(f"Context: {context}")
    if changed_files:
        parts.append("")
        parts.append("Files changed:")
        parts.extend(f"- {name}" for name in changed_files)
    if diff:
        preview = diff[:MAX_DIFF_PREVIEW] + ("..." if len(diff) > MAX_DIFF_PREVIEW else "")
        parts.append("")
        parts.append(f"Diff preview (first {MAX_DIFF_PREVIEW} chars):")
        parts.append(preview)
    if current_message:
        parts.append("")
        parts.append(f'Current message to improve: "{current_message}"')
    if custom_instructions:
        parts.append("")
        parts.append(f"Additional instructions: {custom_instructions}")
    parts.extend(
        [
            "",
            "Generate a commit message that:",
            "1. Clearly describes what changed and why",
            "2. Follows the specified style and conventions",
            "3. Is written in the specified language",
            "4. Is concise but informative",
            "",
            "Provide 3 different options, numbered 1-3.",
        ]
    )
    return "\n".join(parts)


def clean_commit_message(message: str, style: str) -> str:
    """Strip quoting and chatter from a suggested message and apply the style."""
    cleaned = message.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    cleaned = _PREFIX_RE.sub("", cleaned).strip()
    if style == "minimal":
        cleaned = cleaned.split("\n", 1)[0][:MINIMAL_LENGTH]
    elif style == "conventional":
        if not _CONVENTIONAL_RE.match(cleaned):
            cleaned = f"chore: {cleaned}"
    return cleaned


def parse_response(response: str, style: str) -> list[str]:
    """Extract suggestions from a model response.

    Numbered lines are preferred; failing that every non-empty line that is
    not an introduction is used.
    """
    lines = [line.strip() for line in response.splitlines() if line.strip()]
    suggestions = []
    for line in lines:
        m = _NUMBERED_RE.match(line)
        if m:
            suggestions.append(m.group(1).strip())
    if not suggestions:
        suggestions = [
            line
            for line in lines
            if "here are" not in line.lower() and "commit message" not in line.lower()
        ]
    return [clean_commit_message(s, style) for s in suggestions[:MAX_SUGGESTIONS]]


def check_for_proxy_bypass(base_url: str | None) -> bool:
    """Check if proxy should be bypassed for the given URL."""
    if not base_url:
        return False
    no_proxy_str = os.environ.get("no_proxy") or os.environ.get("NO_PROXY")
    if not no_proxy_str:
        return False
    hostname = urlparse(base_url).hostname
    if not hostname:
        return False
    try:
        hostname_ip = ipaddress.ip_address(hostname)
    except ValueError:
        hostname_ip = None

    for no_proxy_value in no_proxy_str.split(","):
        no_proxy_value = no_proxy_value.strip().lower().lstrip(".")
        if not no_proxy_value:
            continue
        if hostname_ip:
            try:
                if hostname_ip in ipaddress.ip_network(no_proxy_value, strict=False):
                    return True
            except ValueError:
                pass
        if no_proxy_value == "*" or hostname == no_proxy_value:
            return True
        # add a dot to only match complete domains
        if hostname.endswith("." + no_proxy_value):
            return True
    return False


def default_user_agent_string() -> str:
    from . import __version__

    return "gctm/{}".format(".".join([str(x) for x in __version__]))


def default_urllib3_manager(
    base_url: str | None = None,
    timeout: float | None = None,
    pool_manager_cls: type | None = None,
    proxy_manager_cls: type | None = None,
) -> urllib3.PoolManager:
    """Return urllib3 connection pool manager.

    Honour proxy configuration from the environment.

    Args:
      base_url: Base URL for proxy bypass checks
      timeout: Timeout for HTTP requests in seconds
      pool_manager_cls: Pool manager class to use
      proxy_manager_cls: Proxy manager class to use
    Returns:
      A ProxyManager when a proxy applies, a PoolManager otherwise
    """
    proxy_server = None
    for proxyname in ("https_proxy", "http_proxy", "all_proxy"):
        proxy_server = os.environ.get(proxyname)
        if proxy_server:
            break
    if proxy_server and check_for_proxy_bypass(base_url):
        proxy_server = None

    headers = {"User-agent": default_user_agent_string()}
    kwargs: dict[str, Any] = {"cert_reqs": "CERT_REQUIRED"}
    if timeout is not None:
        kwargs["timeout"] = timeout

    if proxy_server:
        if proxy_manager_cls is None:
            proxy_manager_cls = urllib3.ProxyManager
        proxy_server_url = urlparse(proxy_server)
        if proxy_server_url.username is not None:
            proxy_headers = urllib3.make_headers(
                proxy_basic_auth=f"{proxy_server_url.username}:{proxy_server_url.password or ''}"
            )
        else:
            proxy_headers = {}
        return proxy_manager_cls(
            proxy_server, proxy_headers=proxy_headers, headers=headers, **kwargs
        )
    if pool_manager_cls is None:
        pool_manager_cls = urllib3.PoolManager
    return pool_manager_cls(headers=headers, **kwargs)


class CommitMessageAssistant:
    """Asks a language model for commit message suggestions."""

    def __init__(
        self, settings: AISettings, pool_manager: urllib3.PoolManager | None = None
    ) -> None:
        """Create an assistant.

        Args:
          settings: Provider, model, key and prompt settings
          pool_manager: urllib3 pool manager to use; one is created on first
            use if omitted
        """
        self.settings = settings
        self._pool_manager = pool_manager

    @property
    def provider(self) -> str:
        return self.settings.provider

    @property
    def model(self) -> str:
        return self.settings.model or DEFAULT_MODELS.get(self.provider, "")

    def _endpoint(self) -> str:
        if self.provider == "openai":
            return self.settings.base_url or OPENAI_URL
        elif self.provider == "anthropic":
            return self.settings.base_url or ANTHROPIC_URL
        elif self.provider == "google":
            return (self.settings.base_url or GOOGLE_URL).format(model=self.model)
        elif self.provider == "local":
            return (self.settings.base_url or LOCAL_URL).rstrip("/") + "/api/generate"
        raise AIError(f"Unsupported AI provider: {self.provider}")

    def _request(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> Any:
        if self._pool_manager is None:
            self._pool_manager = default_urllib3_manager(url)
        headers = {"Content-Type": "application/json", **headers}
        logger.debug("POST %s (model %s)", url, self.model)
        try:
            response = self._pool_manager.request(
                "POST",
                url,
                body=json.dumps(payload).encode("utf-8"),
                headers=headers,
                timeout=urllib3.Timeout(total=self.settings.timeout),
                retries=False,
            )
        except urllib3.exceptions.HTTPError as e:
            raise AIError(f"{self.provider} request failed: {e}") from e
        try:
            data = json.loads(response.data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise AIError(
                f"{self.provider} returned an invalid response (HTTP {response.status})"
            ) from e
        if response.status >= 400:
            message = None
            if isinstance(data, dict) and isinstance(data.get("error"), dict):
                message = data["error"].get("message")
            raise AIError(
                f"{self.provider} API error: {message or f'HTTP {response.status}'}"
            )
        return data

    def _call(self, prompt: str) -> str:
        s = self.settings
        provider = self.provider
        url = self._endpoint()
        if provider != "local" and not s.api_key:
            raise AIError("AI API key not configured")

        try:
            if provider == "openai":
                data = self._request(
                    url,
                    {
                        "model": self.model,
                        "messages": [
                            {"role": "system", "content": SYSTEM_PROMPT},
                            {"role": "user", "content": prompt},
                        ],
                        "max_tokens": s.max_tokens,
                        "temperature": s.temperature,
                    },
                    {"Authorization": f"Bearer {s.api_key}"},
                )
                return data["choices"][0]["message"]["content"]
            elif provider == "anthropic":
                data = self._request(
                    url,
                    {
                        "model": self.model,
                        "max_tokens": s.max_tokens,
                        "messages": [{"role": "user", "content": prompt}],
                        "temperature": s.temperature,
                    },
                    {"x-api-key": s.api_key or "", "anthropic-version": ANTHROPIC_VERSION},
                )
                return data["content"][0]["text"]
            elif provider == "google":
                data = self._request(
                    url,
                    {
                        "contents": [{"parts": [{"text": prompt}]}],
                        "generationConfig": {
                            "temperature": s.temperature,
                            "maxOutputTokens": s.max_tokens,
                            "candidateCount": 1,
                        },
                    },
                    {"x-goog-api-key": s.api_key or ""},
                )
                return data["candidates"][0]["content"]["parts"][0]["text"]
            else:
                data = self._request(
                    url,
                    {
                        "model": self.model,
                        "prompt": prompt,
                        "stream": False,
                        "options": {
                            "temperature": s.temperature,
                            "num_predict": s.max_tokens,
                        },
                    },
                    {},
                )
                return data["response"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIError(f"Invalid {provider} API response format: missing {e}") from e

    def generate(
        self,
        changed_files: Sequence[str] = (),
        diff: str = "",
        current_message: str = "",
        context: str = "",
        language: str | None = None,
        style: str | None = None,
    ) -> SuggestionResult:
        """Generate commit message suggestions.

        Returns: A SuggestionResult; failures are reported in ``error``
        """
        language = language or self.settings.language
        style = style or self.settings.style
        prompt = build_prompt(
            changed_files,
            diff,
            current_message,
            language=language,
            style=style,
            context=context,
            custom_instructions=self.settings.custom_instructions,
        )
        logger.info(
            "Generating AI commit message (%s style, %s language)...", style, language
        )
        try:
            raw = self._call(prompt)
        except AIError as e:
            logger.error("Failed to generate AI commit message: %s", e)
            return SuggestionResult(False, error=str(e))
        suggestions = parse_response(raw, style)
        if not suggestions:
            return SuggestionResult(False, raw=raw, error="The model returned no suggestions")
        return SuggestionResult(True, suggestions, raw=raw)

    def test_connection(self) -> SuggestionResult:
        """Send a trivial prompt to check that the provider is reachable."""
        try:
            raw = self._call(
                "Generate a simple test commit message for adding a new feature."
            )
        except AIError as e:
            return SuggestionResult(False, error=str(e))
        return SuggestionResult(True, [raw.strip()], raw=raw)
