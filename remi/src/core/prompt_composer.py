"""
Remi - Prompt Composer
=======================
Pure, deterministic merge of the sender's static profile, the retrieved
history and the new message into a ``(system_instruction, user_prompt)``
pair.  No I/O happens here.

The static user table is injected at construction as a read-only
mapping; there is no module-level user registry.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from remi.config.prompt_templates import ANONYMOUS_SYSTEM_PROMPT, CHANNEL_FORMAT_HINT, EXCHANGE_TEMPLATE, HISTORY_HEADER, HISTORY_USAGE_NOTE, KNOWN_USER_SYSTEM_PROMPT, MISSING_REPLY_PLACEHOLDER, NO_HISTORY_NOTICE, PROFILE_USAGE_NOTE, USER_PROMPT_TEMPLATE
from remi.config.settings import ProfileEntry
from remi.src.database.history_store import Exchange


@dataclass(frozen=True, slots=True)
class UserProfile:
    name: str
    role: str = ""
    known: bool = True


ANONYMOUS_PROFILE = UserProfile(name="Anonymous", role="", known=False)


@dataclass(frozen=True, slots=True)
class ComposedPrompt:
    system_instruction: str
    user_prompt: str


def profiles_from_settings(entries: Mapping[str, ProfileEntry]) -> dict[str, UserProfile]:
    """Convert the ``USER_PROFILES`` setting into ``UserProfile`` values."""
    return {user_id: UserProfile(name=entry.name, role=entry.role) for user_id, entry in entries.items()}


class PromptComposer:
    """
    Builds prompts for one turn.

    Parameters
    ----------
    profiles
        ``user_id → UserProfile``.  Copied and frozen; later changes to
        the caller's dict are not seen.
    channel_hint
        Output-format instruction appended to every system instruction.
    """

    __slots__ = ("_profiles", "_channel_hint")

    def __init__(self, profiles: Mapping[str, UserProfile] | None = None, channel_hint: str = CHANNEL_FORMAT_HINT) -> None:
        self._profiles: Mapping[str, UserProfile] = MappingProxyType(dict(profiles or {}))
        self._channel_hint = channel_hint


    def resolve_profile(self, user_id: str) -> UserProfile:
        """Look up *user_id*; unknown senders get ``ANONYMOUS_PROFILE``."""
        return self._profiles.get(user_id, ANONYMOUS_PROFILE)


    def compose(self, profile: UserProfile, retrieved_history: Sequence[Exchange], new_message: str) -> ComposedPrompt:
        """Render the system instruction and user prompt for one turn."""
        return ComposedPrompt(system_instruction=self._system_instruction(profile), user_prompt=USER_PROMPT_TEMPLATE.format(memory_block=self._memory_block(retrieved_history), message=new_message))


    def _system_instruction(self, profile: UserProfile) -> str:
        if profile.known:
            role = profile.role or "someone you talk with regularly"
            persona = KNOWN_USER_SYSTEM_PROMPT.format(name=profile.name, role=role) + " " + PROFILE_USAGE_NOTE
        else:
            persona = ANONYMOUS_SYSTEM_PROMPT
        return f"{persona}\n\n{self._channel_hint}"


    @staticmethod
    def _memory_block(history: Sequence[Exchange]) -> str:
        if not history:
            return NO_HISTORY_NOTICE

        rendered = [
            EXCHANGE_TEMPLATE.format(index=i, user_message=exchange.user_message, agent_message=exchange.agent_message if exchange.agent_message is not None else MISSING_REPLY_PLACEHOLDER)
            for i, exchange in enumerate(history, 1)
        ]
        return f"{HISTORY_HEADER}\n{HISTORY_USAGE_NOTE}\n\n" + "\n\n".join(rendered)
