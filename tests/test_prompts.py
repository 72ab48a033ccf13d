"""Tests for the prompts module."""

import pytest

from claw.features.models import Story
from claw.lib.prompts import (
    load_prompt,
    render_prompt,
    build_section,
    build_story_prompt,
    build_retry_section,
    clear_cache,
    PromptError,
    PROMPTS_DIR,
)


class TestLoadPrompt:
    """Tests for load_prompt function."""

    def test_load_existing_prompt(self):
        """Should load an existing prompt template."""
        clear_cache()
        content = load_prompt("story")
        assert "CLAW_STATUS: COMPLETE" in content
        assert "{story_title}" in content

    def test_html_comments_stripped(self):
        """Should strip HTML comments from loaded prompts."""
        clear_cache()
        content = load_prompt("story")
        assert "<!--" not in content
        assert "-->" not in content
        assert content.startswith("# Feature:")

    def test_load_nonexistent_prompt_raises(self):
        clear_cache()
        with pytest.raises(PromptError) as exc_info:
            load_prompt("nonexistent_prompt_xyz")
        assert "not found" in str(exc_info.value)
        assert "nonexistent_prompt_xyz" in str(exc_info.value)

    def test_caching_works(self):
        clear_cache()
        assert load_prompt("retry") is load_prompt("retry")

    def test_clear_cache(self):
        clear_cache()
        load_prompt("retry")
        clear_cache()
        assert load_prompt.cache_info().currsize == 0


class TestRenderPrompt:
    """Tests for render_prompt function."""

    def test_render_with_variables(self):
        result = render_prompt("retry", iteration=2, error="3 tests failed")
        assert "Iteration: 2" in result
        assert "Error: 3 tests failed" in result

    def test_render_missing_variable_raises(self):
        with pytest.raises(PromptError) as exc_info:
            render_prompt("retry", iteration=2)
        assert "Missing required variable" in str(exc_info.value)
        assert "error" in str(exc_info.value)


class TestBuildSection:
    """Tests for build_section function."""

    def test_with_content(self):
        assert build_section("Some text", "## Notes") == "## Notes\n\nSome text\n"

    def test_with_none_and_empty_msg(self):
        assert build_section(None, "## Notes", "(none)") == "## Notes\n\n(none)\n"

    def test_with_none_and_no_empty_msg(self):
        assert build_section(None, "## Notes") == ""

    def test_with_empty_string_content(self):
        assert build_section("", "## Notes") == ""


class TestStoryPrompts:
    """Tests for story and retry prompt builders."""

    def test_story_prompt(self):
        story = Story(id="2", title="Login endpoint", scope=["POST /login", "JWT cookie"], repos=["api"])
        prompt = build_story_prompt(story, "Auth")

        assert "# Feature: Auth" in prompt
        assert "## Story 2: Login endpoint" in prompt
        assert "- POST /login\n- JWT cookie" in prompt
        assert "### Repositories\n\napi" in prompt
        assert "Operator Notes" not in prompt

    def test_story_prompt_defaults(self):
        prompt = build_story_prompt(Story(id="1", title="Bare"), "Auth")
        assert "- (no scope lines)" in prompt
        assert "(current repository)" in prompt

    def test_story_prompt_with_context(self):
        prompt = build_story_prompt(Story(id="1", title="Bare"), "Auth", "Question: A?\nAnswer: B")
        assert "## Operator Notes\n\nQuestion: A?\nAnswer: B" in prompt

    def test_retry_section_without_error(self):
        assert "Error: unknown error" in build_retry_section(1, None)


class TestPromptsDir:
    """Tests for prompts directory configuration."""

    def test_prompts_dir_exists(self):
        assert PROMPTS_DIR.is_dir()

    def test_all_expected_prompts_exist(self):
        for filename in ["story.md", "retry.md", "ask.md"]:
            assert (PROMPTS_DIR / filename).exists(), f"Missing prompt: {filename}"

    def test_prompts_have_documentation_header(self):
        """All prompts should have HTML comment documentation (in raw file)."""
        for prompt_file in PROMPTS_DIR.glob("*.md"):
            content = prompt_file.read_text()
            assert content.startswith("<!--"), f"{prompt_file.name} missing doc header"
            assert "Variables:" in content, f"{prompt_file.name} missing Variables docs"
