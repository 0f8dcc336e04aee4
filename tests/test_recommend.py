import json

import pytest

from toolfinder.analysis import WorkflowAnalyzer
from toolfinder.config import ToolStatus, WorkflowInput
from toolfinder.errors import EmbeddingServiceError, InputValidationError, LLMServiceError
from toolfinder.explain import ExplanationGenerator
from toolfinder.recommend import RecommendationOrchestrator
from toolfinder.rerank import Reranker
from toolfinder.retrieval import VectorSearchEngine

from conftest import FakeEmbedder, FakeLLM, analysis_json, echo_rerank

VIDEO_TASKS = "video editing and caption generation"


def build(store, prompts, llm, embedder=None, **kw):
    embedder = embedder or FakeEmbedder()
    return RecommendationOrchestrator(
        analyzer=WorkflowAnalyzer(llm, prompts, catalog=store),
        embedder=embedder,
        search_engine=VectorSearchEngine(store, embedding_model="fake-keywords"),
        reranker=Reranker(llm, prompts),
        explainer=ExplanationGenerator(llm, prompts),
        **kw,
    )


def _explain_by_name(prompt):
    name = prompt.split("why ", 1)[1].split(" fits", 1)[0]
    return f"{name} helps with your videos."


def test_video_caption_workflow_end_to_end(store, prompts):
    llm = FakeLLM(analysis=analysis_json(), rerank=echo_rerank, explain=_explain_by_name)
    recs = build(store, prompts, llm).recommend(WorkflowInput(tasks=VIDEO_TASKS))
    assert 0 < len(recs) <= 5
    assert recs[0].tool_id == "descript"
    assert recs[1].tool_id == "runway-ml"
    for r in recs:
        assert r.tool.status == ToolStatus.APPROVED
        assert r.tool_id == r.tool.id
        assert isinstance(r.explanation, str) and r.explanation
        assert isinstance(r.relevance_score, float)
    assert recs[0].explanation == "Descript helps with your videos."
    assert len(llm.calls_for("explain")) == len(recs)


def test_rerank_order_decides_final_order(store, prompts):
    def reverse(prompt):
        data = json.loads(echo_rerank(prompt))
        for i, item in enumerate(reversed(data)):
            item["relevanceScore"] = 1.0 - i * 0.01
        return json.dumps(data)

    llm = FakeLLM(analysis=analysis_json(), rerank=reverse, explain="fits")
    recs = build(store, prompts, llm, result_limit=2).recommend(WorkflowInput(tasks=VIDEO_TASKS))
    assert len(recs) == 2
    assert "descript" not in [r.tool_id for r in recs]
    assert recs[0].relevance_score > recs[1].relevance_score


def test_one_failing_explanation_does_not_affect_others(store, prompts):
    def flaky(prompt):
        if "why Runway ML fits" in prompt:
            raise LLMServiceError("rate limited")
        if "why ChatGPT fits" in prompt:
            raise RuntimeError("unexpected bug")
        return _explain_by_name(prompt)

    llm = FakeLLM(analysis=analysis_json(), rerank=echo_rerank, explain=flaky)
    recs = build(store, prompts, llm).recommend(WorkflowInput(tasks=VIDEO_TASKS))
    assert len(recs) == 5
    by_id = {r.tool_id: r.explanation for r in recs}
    assert by_id["runway-ml"] == ""
    assert by_id["chatgpt"] == ""
    others = [text for tool_id, text in by_id.items() if tool_id not in {"runway-ml", "chatgpt"}]
    assert len(others) == 3 and all(text.endswith("helps with your videos.") for text in others)


def test_all_llm_stages_down_still_recommends(store, prompts):
    down = LLMServiceError("provider down")
    llm = FakeLLM(analysis=down, rerank=down, explain=down)
    recs = build(store, prompts, llm).recommend(WorkflowInput(tasks=VIDEO_TASKS))
    assert [r.relevance_score for r in recs] == [1.0, 0.9, 0.8, 0.7, 0.6]
    assert recs[0].tool_id == "descript"
    assert all(r.explanation == "" for r in recs)
    assert all(r.reasoning == "Ranked by semantic similarity" for r in recs)


def test_embedding_failure_propagates(store, prompts):
    llm = FakeLLM(analysis=analysis_json())
    orch = build(store, prompts, llm, embedder=FakeEmbedder(fail=True))
    with pytest.raises(EmbeddingServiceError):
        orch.recommend(WorkflowInput(tasks=VIDEO_TASKS))
    assert llm.calls_for("rerank") == []


def test_no_candidates_returns_empty_without_rerank(store, prompts):
    llm = FakeLLM(analysis=analysis_json(), rerank=echo_rerank, explain="x")
    recs = build(store, prompts, llm).recommend(WorkflowInput(tasks=VIDEO_TASKS, category_ids=["cat-missing"]))
    assert recs == []
    assert llm.calls_for("rerank") == [] and llm.calls_for("explain") == []


def test_category_hints_restrict_candidates(store, prompts):
    llm = FakeLLM(analysis=analysis_json(), rerank=echo_rerank, explain="x")
    recs = build(store, prompts, llm).recommend(WorkflowInput(tasks=VIDEO_TASKS, category_ids=["cat-development"]))
    assert [r.tool_id for r in recs] == ["github-copilot"]


@pytest.mark.parametrize("tasks", ["", "too short", "x" * 5001, None])
def test_recommend_text_rejects_bad_input_before_any_call(store, prompts, tasks):
    llm = FakeLLM(analysis=analysis_json())
    embedder = FakeEmbedder()
    with pytest.raises(InputValidationError):
        build(store, prompts, llm, embedder=embedder).recommend_text(tasks)
    assert llm.prompts == [] and embedder.calls == []


def test_recommend_text_rejects_long_role(store, prompts):
    llm = FakeLLM()
    with pytest.raises(InputValidationError):
        build(store, prompts, llm).recommend_text(VIDEO_TASKS, role="r" * 201)


def test_recommend_text_trims_and_runs(store, prompts):
    llm = FakeLLM(analysis=analysis_json(), rerank=echo_rerank, explain="x")
    recs = build(store, prompts, llm).recommend_text("   " + VIDEO_TASKS + "   ", role="  ")
    assert recs
    (prompt,) = llm.calls_for("analysis")
    assert "User role: Not specified" in prompt


def test_search_skips_llm(store, prompts):
    llm = FakeLLM()
    hits = build(store, prompts, llm).search("video captions", top_k=2)
    assert [c.tool.id for c in hits] == ["descript", "runway-ml"]
    assert llm.prompts == []


def test_search_rejects_blank_query(store, prompts):
    with pytest.raises(InputValidationError):
        build(store, prompts, FakeLLM()).search("   ")
