import json

import pandas as pd
import pytest

from toolfinder import cli
from toolfinder.analysis import WorkflowAnalyzer
from toolfinder.catalog_build import load_catalog_snapshot
from toolfinder.explain import ExplanationGenerator
from toolfinder.recommend import RecommendationOrchestrator
from toolfinder.rerank import Reranker
from toolfinder.retrieval import VectorSearchEngine

from conftest import SEED_PATH, FakeEmbedder, FakeLLM, analysis_json, echo_rerank


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)


@pytest.fixture
def orchestrator(store, prompts, monkeypatch):
    llm = FakeLLM(analysis=analysis_json(), rerank=echo_rerank, explain="Because it captions.")
    orch = RecommendationOrchestrator(
        analyzer=WorkflowAnalyzer(llm, prompts, catalog=store),
        embedder=FakeEmbedder(),
        search_engine=VectorSearchEngine(store),
        reranker=Reranker(llm, prompts),
        explainer=ExplanationGenerator(llm, prompts),
    )
    monkeypatch.setattr(cli, "_load_orchestrator", lambda snapshot: orch)
    return orch


def test_import_writes_embedded_snapshot(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "create_embedder", lambda: FakeEmbedder())
    out = tmp_path / "snap.parquet"
    assert cli.main(["--snapshot", str(out), "import", "--raw", str(SEED_PATH)]) == 0
    tools = load_catalog_snapshot(out)
    assert len(tools) == 7 and all(t.embedding for t in tools)


def test_recommend_prints_json(orchestrator, capsys):
    assert cli.main(["recommend", "video editing and caption generation"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["recommendations"][0]["tool_id"] == "descript"


def test_recommend_input_error_exit_code(orchestrator, capsys):
    assert cli.main(["recommend", "short"]) == 1
    assert "[ERROR]" in capsys.readouterr().out


def test_search_filters(orchestrator, capsys):
    assert cli.main(["search", "code", "--pricing", "PAID", "--enterprise", "yes"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert [t["tool"]["id"] for t in payload["tools"]] == ["github-copilot"]


def test_batch_dedups_and_fans_out(orchestrator, tmp_path):
    inp = tmp_path / "workflows.csv"
    pd.DataFrame(
        {
            "Tasks": ["video editing and caption generation", "tiny", "video editing and caption generation"],
            "Role": ["Creator", None, "Creator"],
        }
    ).to_csv(inp, index=False)
    out = tmp_path / "out" / "recs.csv"
    assert cli.main(["batch", "--in", str(inp), "--out", str(out)]) == 0

    df = pd.read_csv(out)
    assert list(df.columns) == cli.BATCH_COLUMNS
    assert len(df) == 10  # 5 per valid row, none for the too-short one
    assert df.iloc[0]["Tool_id"] == "descript"
    assert df.iloc[0]["Rank"] == 1
    assert set(df["Why_this_fits"]) == {"Because it captions."}
    # identical workflows analysed once
    assert len(orchestrator.analyzer.llm.calls_for("analysis")) == 1


def test_load_workflows_requires_tasks_column(tmp_path):
    path = tmp_path / "bad.csv"
    pd.DataFrame({"Query": ["x"]}).to_csv(path, index=False)
    with pytest.raises(ValueError):
        cli.load_workflows(path)
