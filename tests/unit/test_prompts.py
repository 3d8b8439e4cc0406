"""Unit tests for prompt templates."""

import pytest

from src.core.models import ChatTurn
from src.infrastructure.prompts import (
    PROMPT_TEMPLATES,
    SYSTEM_PROMPT,
    build_messages,
    build_system_prompt,
    get_prompt_template,
)


class TestPromptTemplates:
    """Tests for the prompt registry."""

    @pytest.mark.parametrize(
        "plugin,function",
        [
            ("General", "Rephrase"),
            ("General", "Intent"),
            ("General", "Azure"),
            ("General", "Information"),
            ("Storage", "Intent"),
            ("Storage", "GeneralInformation"),
            ("Storage", "StorageAccounts"),
            ("Storage", "StorageAccount"),
            ("Storage", "EntityRecognition"),
        ],
    )
    def test_every_function_has_a_template(self, plugin, function):
        """Test every function used by the routers has a template."""
        assert get_prompt_template(plugin, function)

    def test_unknown_function(self):
        """Test unknown functions raise KeyError."""
        with pytest.raises(KeyError):
            get_prompt_template("Compute", "VirtualMachines")

    def test_intent_prompts_list_labels(self):
        """Test classification prompts name every label the routers handle."""
        general = PROMPT_TEMPLATES[("General", "Intent")]
        for label in ("Azure", "Storage", "Information", "Ability", "MultipleIntents", "Unclear", "Other"):
            assert label in general

        storage = PROMPT_TEMPLATES[("Storage", "Intent")]
        for label in ("GeneralInformation", "StorageAccounts", "StorageAccount"):
            assert label in storage

    def test_entity_recognition_asks_for_json(self):
        """Test entity recognition asks for the JSON keys the parser reads."""
        template = PROMPT_TEMPLATES[("Storage", "EntityRecognition")]

        assert "JSON" in template
        assert "storage_account" in template


class TestBuildSystemPrompt:
    """Tests for build_system_prompt()."""

    def test_without_arguments(self):
        """Test the prompt without rules or context."""
        prompt = build_system_prompt("General", "Azure")

        assert prompt.startswith(SYSTEM_PROMPT)
        assert "## Task" in prompt
        assert "## Rules" not in prompt
        assert "## Context" not in prompt

    def test_with_rules_and_context(self):
        """Test rules and context sections."""
        prompt = build_system_prompt(
            "Storage",
            "StorageAccounts",
            {"grounding_rules": ["Be honest.", "Be concise."], "context": "name: xyz"},
        )

        assert "## Rules\n\n- Be honest.\n- Be concise." in prompt
        assert prompt.endswith("## Context\n\nname: xyz")


class TestBuildMessages:
    """Tests for build_messages()."""

    def test_history_becomes_message_pairs(self):
        """Test history turns become user/assistant pairs before the question."""
        history = [
            ChatTurn(question="q1", answer="a1"),
            ChatTurn(question="q2", answer="a2"),
        ]

        messages = build_messages("q3", "General", "Azure", {"chat_history": history})

        assert [m["role"] for m in messages] == [
            "system",
            "user",
            "assistant",
            "user",
            "assistant",
            "user",
        ]
        assert messages[-1]["content"] == "q3"

    def test_no_arguments(self):
        """Test a bare question."""
        messages = build_messages("What is Azure?", "General", "Azure")

        assert len(messages) == 2
        assert messages[1] == {"role": "user", "content": "What is Azure?"}
