from datetime import datetime, timezone

import pytest

from remi.config.prompt_templates import ANONYMOUS_SYSTEM_PROMPT, CHANNEL_FORMAT_HINT, HISTORY_HEADER, MISSING_REPLY_PLACEHOLDER, NO_HISTORY_NOTICE, PROFILE_USAGE_NOTE
from remi.config.settings import ProfileEntry
from remi.src.core.prompt_composer import ANONYMOUS_PROFILE, PromptComposer, UserProfile, profiles_from_settings
from remi.src.database.history_store import Exchange


def _exchange(user_message: str, agent_message: str | None, distance: float) -> Exchange:
    return Exchange(id=user_message, user_id="alice", user_display_name="Alice", user_message=user_message, agent_message=agent_message, embedding=[0.0] * 4, created_at=datetime.now(timezone.utc), distance=distance)


def test_empty_history_states_no_prior_context(composer):
    prompt = composer.compose(composer.resolve_profile("919235527628"), [], "What is my friend's name?")

    assert NO_HISTORY_NOTICE in prompt.user_prompt
    assert HISTORY_HEADER not in prompt.user_prompt
    assert HISTORY_HEADER not in prompt.system_instruction
    assert "past conversations" not in prompt.user_prompt.lower()
    assert prompt.user_prompt.rstrip().endswith("What is my friend's name?")


def test_history_rendered_in_retrieval_order(composer):
    history = [_exchange("My friend is Radhika", "Nice to meet her!", 0.01), _exchange("I like tea", "Noted.", 0.4)]

    prompt = composer.compose(ANONYMOUS_PROFILE, history, "Who is my friend?")

    assert HISTORY_HEADER in prompt.user_prompt
    assert NO_HISTORY_NOTICE not in prompt.user_prompt
    first = prompt.user_prompt.index('"My friend is Radhika"')
    second = prompt.user_prompt.index('"I like tea"')
    assert first < second
    assert '[1] User: "My friend is Radhika"' in prompt.user_prompt
    assert 'You: "Nice to meet her!"' in prompt.user_prompt


def test_missing_agent_reply_uses_placeholder(composer):
    prompt = composer.compose(ANONYMOUS_PROFILE, [_exchange("hello?", None, 0.0)], "anyone there?")

    assert MISSING_REPLY_PLACEHOLDER in prompt.user_prompt


def test_known_profile_is_named_and_marked_optional(composer):
    prompt = composer.compose(composer.resolve_profile("919235527628"), [], "hi")

    assert "Prakhar" in prompt.system_instruction
    assert "the Creator/Admin" in prompt.system_instruction
    assert PROFILE_USAGE_NOTE in prompt.system_instruction
    assert prompt.system_instruction.endswith(CHANNEL_FORMAT_HINT)


def test_unknown_sender_gets_anonymous_instruction(composer):
    profile = composer.resolve_profile("000000")
    prompt = composer.compose(profile, [], "hi")

    assert profile is ANONYMOUS_PROFILE
    assert prompt.system_instruction.startswith(ANONYMOUS_SYSTEM_PROMPT)
    assert PROFILE_USAGE_NOTE not in prompt.system_instruction
    assert CHANNEL_FORMAT_HINT in prompt.system_instruction


def test_compose_is_deterministic(composer):
    history = [_exchange("a", "b", 0.1)]

    assert composer.compose(ANONYMOUS_PROFILE, history, "c") == composer.compose(ANONYMOUS_PROFILE, history, "c")


def test_injected_profiles_are_read_only():
    source = {"1": UserProfile(name="One")}
    composer = PromptComposer(source)
    source["2"] = UserProfile(name="Two")

    assert composer.resolve_profile("2") is ANONYMOUS_PROFILE
    with pytest.raises(TypeError):
        composer._profiles["3"] = UserProfile(name="Three")  # type: ignore[index]


def test_profiles_from_settings_converts_entries():
    profiles = profiles_from_settings({"918471081276": ProfileEntry(name="Radhika", role="a close friend of the creator")})

    assert profiles == {"918471081276": UserProfile(name="Radhika", role="a close friend of the creator", known=True)}
