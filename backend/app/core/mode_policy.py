############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# mode_policy.py: Line-mode system prompt policy and model id naming
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Line-mode persona policy and provider-qualified model ids."""

from typing import Optional

from backend.app.core.conversation_schemas import LineMode
from backend.app.settings import ECONOMY_SYSTEM_PROMPT_PREFIX, Settings

NAMESPACE_SEPARATOR = "/"


class ModePolicy:
    """Decides system prompt augmentation and model id qualification.

    Both the provider namespace and the economy persona prefix are fixed at
    construction so every call is deterministic.
    """

    def __init__(
        self,
        default_namespace: str = "volcengine",
        economy_prefix: str = ECONOMY_SYSTEM_PROMPT_PREFIX,
    ):
        self.default_namespace = default_namespace
        self.economy_prefix = economy_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModePolicy":
        return cls(
            default_namespace=settings.default_provider_namespace,
            economy_prefix=settings.economy_system_prompt_prefix,
        )

    def augment_system_prompt(self, user_prompt: Optional[str], mode: LineMode) -> str:
        """Apply the line-mode persona to a user-supplied system prompt.

        Economy mode prepends the general-assistant persona, separated from a
        non-blank user prompt by one blank line. Premium mode returns the
        prompt untouched (``None`` becomes ``""``).
        """
        prompt = user_prompt if isinstance(user_prompt, str) else ""
        if mode != LineMode.ECONOMY:
            return prompt
        if not prompt.strip():
            return self.economy_prefix
        return f"{self.economy_prefix}\n\n{prompt}"

    def qualify_model_id(self, model: str) -> str:
        """Prefix a bare model id with the default provider namespace."""
        if not model or NAMESPACE_SEPARATOR in model:
            return model
        return f"{self.default_namespace}{NAMESPACE_SEPARATOR}{model}"

    def display_model_id(self, model: str) -> str:
        """Strip the provider namespace for display."""
        idx = model.rfind(NAMESPACE_SEPARATOR) if model else -1
        if idx <= 0:
            return model
        stripped = model[idx + 1:]
        return stripped or model
