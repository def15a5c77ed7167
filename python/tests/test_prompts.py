"""Tests for the medium prompt registry and prompt builders."""

import pytest

from refyn.db.models import Message
from refyn.services.prompts import (
    DEFAULT_MEDIUM,
    MEDIUM_SYSTEM_PROMPTS,
    MediumPromptRegistry,
    build_analysis_prompt,
    build_chat_prompt,
    build_note_extraction_prompt,
    build_transcript,
    default_registry,
)

EXPECTED_MEDIA = {
    "photography",
    "painting",
    "drawing",
    "music",
    "film",
    "graphicDesign",
    "illustration",
    "dance",
    "creativeWriting",
}


class TestMediumPromptRegistry:
    def test_default_registry_covers_all_media(self):
        registry = default_registry()
        assert set(registry.media) == EXPECTED_MEDIA
        assert registry.default == DEFAULT_MEDIUM == "photography"

    def test_known_medium(self):
        registry = default_registry()
        assert registry.prompt_for("painting") == MEDIUM_SYSTEM_PROMPTS["painting"]
        assert "painting instructor" in registry.prompt_for("painting")

    @pytest.mark.parametrize("media_type", [None, "", "sculpture", "Photography"])
    def test_unknown_medium_uses_default(self, media_type):
        registry = default_registry()
        assert registry.prompt_for(media_type) == MEDIUM_SYSTEM_PROMPTS["photography"]

    def test_contains(self):
        registry = default_registry()
        assert "music" in registry
        assert "sculpture" not in registry

    def test_registry_is_read_only(self):
        registry = default_registry()
        with pytest.raises(TypeError):
            MEDIUM_SYSTEM_PROMPTS["photography"] = "hijacked"  # type: ignore[index]
        assert "photography tutor" in registry.prompt_for("photography")

    def test_default_must_exist(self):
        with pytest.raises(ValueError):
            MediumPromptRegistry({"music": "m"}, default="photography")


class TestBuilders:
    def test_analysis_prompt_layout(self):
        prompt = build_analysis_prompt("SYSTEM", "Dawn landscapes", "photography")
        assert prompt == (
            "SYSTEM\n\nUser Context: Dawn landscapes\n\n"
            "Please analyze the uploaded files and provide detailed creative feedback based on "
            "your expertise in photography."
        )

    def test_transcript_labels_and_order(self):
        messages = [
            Message(role="ai", content="First critique"),
            Message(role="user", content="What about color?"),
        ]
        assert build_transcript(messages) == "AI: First critique\n\nUser: What about color?"

    def test_chat_prompt(self):
        messages = [
            Message(role="ai", content="Nice framing."),
            Message(role="user", content="Crop tighter?"),
        ]
        prompt = build_chat_prompt(messages, "Crop tighter?")
        assert prompt.startswith("Previous conversation about uploaded creative files:\n\n")
        assert "AI: Nice framing.\n\nUser: Crop tighter?" in prompt
        assert "User's new question: Crop tighter?" in prompt
        assert prompt.endswith("Reference specific details from the uploaded files where relevant.")

    def test_note_extraction_prompt_embeds_response_and_limit(self):
        prompt = build_note_extraction_prompt("Use leading lines.", max_notes=3)
        assert '"Use leading lines."' in prompt
        assert "up to 3 extracted notes" in prompt
        assert '{"items": []}' in prompt
