"""Usage provider models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


GOOGLE_STATUS_URL = "https://www.google.com/appsstatus/dashboard/incidents.json"
GEMINI_PRODUCT_ID = "npdyhgECDJ6tB66MxXyo"


class StatusSourceType(str, Enum):
    """Where a provider's service health is published."""

    STATUSPAGE = "statuspage"
    GOOGLE_WORKSPACE = "google-workspace"


@dataclass(frozen=True)
class StatusSource:
    """Status page configuration for a provider."""
    type: StatusSourceType
    url: Optional[str] = None


@dataclass(frozen=True)
class DetectionHint:
    """Lower-case tokens used to recognise a provider from model metadata."""
    provider_tokens: tuple[str, ...] = field(default_factory=tuple)
    model_tokens: tuple[str, ...] = field(default_factory=tuple)


class ProviderName(str, Enum):
    """Providers whose usage is tracked.

    Declaration order is the registration order: it is the default
    ``provider_order`` and the tie-break for model detection.
    """

    ANTHROPIC = "anthropic"
    COPILOT = "copilot"
    ANTIGRAVITY = "antigravity"
    GEMINI = "gemini"
    CODEX = "codex"
    KIRO = "kiro"
    ZAI = "zai"

    @property
    def display_name(self) -> str:
        """Human-readable display name."""
        names = {
            self.ANTHROPIC: "Anthropic (Claude)",
            self.COPILOT: "GitHub Copilot",
            self.ANTIGRAVITY: "Antigravity",
            self.GEMINI: "Google Gemini",
            self.CODEX: "OpenAI Codex",
            self.KIRO: "AWS Kiro",
            self.ZAI: "z.ai",
        }
        return names.get(self, self.value)

    @property
    def detection(self) -> DetectionHint:
        """Tokens matched against a model's provider string and id."""
        hints = {
            self.ANTHROPIC: DetectionHint(("anthropic",), ("claude",)),
            self.COPILOT: DetectionHint(("copilot", "github"), ()),
            self.ANTIGRAVITY: DetectionHint(("antigravity",), ("antigravity",)),
            self.GEMINI: DetectionHint(("google", "gemini"), ("gemini",)),
            self.CODEX: DetectionHint(("openai", "codex"), ("gpt", "o1", "o3")),
            self.KIRO: DetectionHint(("kiro", "aws"), ()),
            self.ZAI: DetectionHint(("zai", "z.ai", "xai"), ()),
        }
        return hints.get(self, DetectionHint())

    @property
    def status_source(self) -> Optional[StatusSource]:
        """Public status page for the provider, if it has one."""
        sources = {
            self.ANTHROPIC: StatusSource(
                StatusSourceType.STATUSPAGE, "https://status.anthropic.com/api/v2/status.json"
            ),
            self.COPILOT: StatusSource(
                StatusSourceType.STATUSPAGE, "https://www.githubstatus.com/api/v2/status.json"
            ),
            self.ANTIGRAVITY: StatusSource(StatusSourceType.GOOGLE_WORKSPACE, GOOGLE_STATUS_URL),
            self.GEMINI: StatusSource(StatusSourceType.GOOGLE_WORKSPACE, GOOGLE_STATUS_URL),
            self.CODEX: StatusSource(
                StatusSourceType.STATUSPAGE, "https://status.openai.com/api/v2/status.json"
            ),
        }
        return sources.get(self)

    @property
    def uses_cli_quota(self) -> bool:
        """Whether usage is read by running a local CLI rather than an HTTP API."""
        return self in {self.KIRO}
