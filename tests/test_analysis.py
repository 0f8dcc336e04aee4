import json

from toolfinder.analysis import WorkflowAnalyzer
from toolfinder.catalog_store import CatalogStore
from toolfinder.config import Category, WorkflowInput
from toolfinder.errors import LLMServiceError

from conftest import FakeLLM, analysis_json

TASKS = "I edit short videos for YouTube and need captions for every upload."


def _input(**kw):
    return WorkflowInput(tasks=kw.pop("tasks", TASKS), **kw)


def test_parses_camel_case_object(prompts):
    llm = FakeLLM(analysis=analysis_json())
    result = WorkflowAnalyzer(llm, prompts).analyze(_input(role="Creator"))
    assert result.primary_tasks == ["edit videos", "generate captions"]
    assert result.inferred_needs == ["transcription"]
    assert result.role_context == "Solo video creator"
    assert result.technical_requirements == ["export to YouTube"]
    assert result.search_query == "video editing captions"
    assert result.degraded is False


def test_tolerates_code_fences(prompts):
    llm = FakeLLM(analysis="```json\n" + analysis_json("caption tools") + "\n```")
    assert WorkflowAnalyzer(llm, prompts).analyze(_input()).search_query == "caption tools"


def test_blank_search_query_replaced_by_tasks(prompts):
    llm = FakeLLM(analysis=analysis_json(search_query="  "))
    result = WorkflowAnalyzer(llm, prompts).analyze(_input())
    assert result.search_query == TASKS
    assert result.degraded is False


def _assert_fallback(result, role=None):
    assert result.search_query == TASKS
    assert result.primary_tasks == []
    assert result.inferred_needs == []
    assert result.technical_requirements == []
    assert result.role_context == (role or "")
    assert result.degraded is True


def test_unparseable_output_degrades(prompts):
    llm = FakeLLM(analysis="Sure! Here is what I think about your workflow...")
    _assert_fallback(WorkflowAnalyzer(llm, prompts).analyze(_input(role="Editor")), role="Editor")


def test_wrong_json_shape_degrades(prompts):
    llm = FakeLLM(analysis=json.dumps(["not", "an", "object"]))
    _assert_fallback(WorkflowAnalyzer(llm, prompts).analyze(_input()))


def test_schema_mismatch_degrades(prompts):
    llm = FakeLLM(analysis=json.dumps({"primaryTasks": "should be a list", "searchQuery": 5}))
    _assert_fallback(WorkflowAnalyzer(llm, prompts).analyze(_input()))


def test_provider_failure_degrades(prompts):
    llm = FakeLLM(analysis=LLMServiceError("timeout"))
    _assert_fallback(WorkflowAnalyzer(llm, prompts).analyze(_input()))


def test_prompt_defaults_for_role_and_categories(prompts):
    llm = FakeLLM(analysis=analysis_json())
    WorkflowAnalyzer(llm, prompts).analyze(_input())
    (prompt,) = llm.calls_for("analysis")
    assert TASKS in prompt
    assert "User role: Not specified" in prompt
    assert "Preferred categories: None" in prompt


def test_prompt_resolves_category_names(prompts, store):
    llm = FakeLLM(analysis=analysis_json())
    WorkflowAnalyzer(llm, prompts, catalog=store).analyze(_input(category_ids=["cat-video", "cat-audio"]))
    (prompt,) = llm.calls_for("analysis")
    assert "Preferred categories: Video, Audio" in prompt


def test_prompt_resolves_categories_no_tool_uses(prompts, seed_tools):
    catalog = CatalogStore(seed_tools, categories=[Category(id="cat-research", name="Research", slug="research")])
    llm = FakeLLM(analysis=analysis_json())
    WorkflowAnalyzer(llm, prompts, catalog=catalog).analyze(_input(category_ids=["cat-research"]))
    (prompt,) = llm.calls_for("analysis")
    assert "Preferred categories: Research" in prompt
