"""Agent profiles: system prompt, sampling and tool policy per run."""

from dataclasses import dataclass, field, replace

from .errors import ValidationError

DEFAULT_PROFILE_ID = "default"

DEFAULT_SYSTEM_PROMPT = (
    "You are a channel-agnostic company assistant. You plan, call tools, "
    "and stream intermediate results as events. Be concise, cite tools used "
    "when relevant, and respect policy and budgets."
)


@dataclass(frozen=True)
class Profile:
    """Per-run policy selected by ``profile_id``."""

    id: str
    name: str
    description: str
    temperature: float = 0.7
    max_rounds: int = 10
    tool_allowlist: list[str] = field(default_factory=lambda: ["*"])
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


PROFILES: dict[str, Profile] = {
    profile.id: profile
    for profile in (
        Profile(
            id=DEFAULT_PROFILE_ID,
            name="Assistant",
            description="Default company assistant",
        ),
        Profile(
            id="ops-triage",
            name="Operations Triage",
            description="Focused on operational tasks and triage",
            temperature=0.2,
            max_rounds=6,
            tool_allowlist=["gmail.*", "filesystem.read_file", "pymupdf4llm.*", "postgres.*"],
            system_prompt=(
                "You are an operations triage specialist. Focus on efficiency, "
                "accuracy, and clear communication. Prioritize urgent issues and "
                "provide actionable next steps."
            ),
        ),
        Profile(
            id="research",
            name="Research Assistant",
            description="Deep research and analysis",
            temperature=0.3,
            max_rounds=15,
            system_prompt=(
                "You are a research assistant. Provide thorough analysis, cite "
                "sources, and explore multiple perspectives. Take time to think "
                "through complex problems."
            ),
        ),
    )
}


class ProfileRegistry:
    """Lookup of available profiles.

    ``default_allowlist`` (from MCP_ALLOWED_TOOLS) replaces the default
    profile's allow-list when given.
    """

    def __init__(
        self,
        profiles: dict[str, Profile] | None = None,
        default_allowlist: list[str] | None = None,
    ):
        self._profiles = dict(PROFILES if profiles is None else profiles)
        if default_allowlist and DEFAULT_PROFILE_ID in self._profiles:
            self._profiles[DEFAULT_PROFILE_ID] = replace(
                self._profiles[DEFAULT_PROFILE_ID],
                tool_allowlist=list(default_allowlist),
            )

    def get(self, profile_id: str | None = None) -> Profile:
        """Resolve a profile; None means the default profile.

        Raises:
            ValidationError: If the profile id is unknown
        """
        profile = self._profiles.get(profile_id or DEFAULT_PROFILE_ID)
        if profile is None:
            raise ValidationError(f"Unknown profile: {profile_id}")
        return profile

    def list(self) -> list[Profile]:
        return list(self._profiles.values())


def get_profile(profile_id: str | None = None) -> Profile:
    """Resolve a built-in profile."""
    return ProfileRegistry().get(profile_id)
