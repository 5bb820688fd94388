"""Mode policy tests.

System prompt augmentation per line mode and model id qualification.
"""

import pytest

from backend.app.core.conversation_schemas import LineMode
from backend.app.core.mode_policy import ModePolicy
from backend.app.settings import ECONOMY_SYSTEM_PROMPT_PREFIX


class TestAugmentSystemPrompt:
    """Line-mode persona prefixing."""

    def test_economy_none_is_prefix_only(self, mode_policy):
        assert mode_policy.augment_system_prompt(None, LineMode.ECONOMY) == ECONOMY_SYSTEM_PROMPT_PREFIX

    def test_economy_blank_is_prefix_only(self, mode_policy):
        assert mode_policy.augment_system_prompt("   \n", LineMode.ECONOMY) == ECONOMY_SYSTEM_PROMPT_PREFIX

    def test_economy_prepends_with_blank_line(self, mode_policy):
        result = mode_policy.augment_system_prompt("Be terse.", LineMode.ECONOMY)
        assert result == ECONOMY_SYSTEM_PROMPT_PREFIX + "\n\n" + "Be terse."

    def test_premium_passthrough(self, mode_policy):
        assert mode_policy.augment_system_prompt("Be terse.", LineMode.PREMIUM) == "Be terse."

    def test_premium_none_becomes_empty(self, mode_policy):
        assert mode_policy.augment_system_prompt(None, LineMode.PREMIUM) == ""

    def test_non_string_prompt_treated_as_empty(self, mode_policy):
        assert mode_policy.augment_system_prompt(42, LineMode.ECONOMY) == ECONOMY_SYSTEM_PROMPT_PREFIX

    def test_custom_prefix(self):
        policy = ModePolicy(economy_prefix="Be general.")
        assert policy.augment_system_prompt("x", LineMode.ECONOMY) == "Be general.\n\nx"

    @pytest.mark.parametrize("raw,expected", [
        ("economy", LineMode.ECONOMY),
        ("premium", LineMode.PREMIUM),
        (None, LineMode.PREMIUM),
        ("ECONOMY", LineMode.PREMIUM),
        ("bogus", LineMode.PREMIUM),
    ])
    def test_line_mode_parse(self, raw, expected):
        assert LineMode.parse(raw) == expected


class TestModelIds:
    """Provider-qualified model ids."""

    def test_qualify_bare(self, mode_policy):
        assert mode_policy.qualify_model_id("gpt-4") == "volcengine/gpt-4"

    def test_qualify_already_namespaced(self, mode_policy):
        assert mode_policy.qualify_model_id("acme/gpt-4") == "acme/gpt-4"

    def test_qualify_empty(self, mode_policy):
        assert mode_policy.qualify_model_id("") == ""

    def test_qualify_custom_namespace(self):
        assert ModePolicy(default_namespace="acme").qualify_model_id("m1") == "acme/m1"

    def test_qualify_is_idempotent(self, mode_policy):
        once = mode_policy.qualify_model_id("doubao-seed")
        assert mode_policy.qualify_model_id(once) == once

    def test_display_strips_namespace(self, mode_policy):
        assert mode_policy.display_model_id("volcengine/gpt-4") == "gpt-4"

    def test_display_unqualified_unchanged(self, mode_policy):
        assert mode_policy.display_model_id("gpt-4") == "gpt-4"

    def test_display_uses_last_separator(self, mode_policy):
        assert mode_policy.display_model_id("a/b/c") == "c"

    def test_display_leading_separator_unchanged(self, mode_policy):
        assert mode_policy.display_model_id("/gpt-4") == "/gpt-4"

    def test_display_trailing_separator_unchanged(self, mode_policy):
        assert mode_policy.display_model_id("volcengine/") == "volcengine/"

    def test_display_inverts_qualify(self, mode_policy):
        assert mode_policy.display_model_id(mode_policy.qualify_model_id("seed-1.6")) == "seed-1.6"

    def test_from_settings(self, test_settings):
        test_settings.default_provider_namespace = "zen"
        policy = ModePolicy.from_settings(test_settings)
        assert policy.qualify_model_id("m") == "zen/m"
