# toolfinder/cli.py
"""
Command-line runner for the toolfinder recommender.
Works on a catalog snapshot without starting FastAPI.

Commands:
- import       raw catalog (JSON/CSV/Excel) -> embedded Parquet snapshot
- build-index  re-embed stale (or all) tools in a snapshot
- recommend    one workflow description -> JSON recommendations
- search       semantic search with filters -> JSON hits
- batch        CSV/Excel of workflows -> flat CSV of recommendations
                (identical workflows run once and fan out)
"""

from __future__ import annotations
import argparse
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .catalog_build import build_catalog_snapshot
from .catalog_store import CatalogStore
from .config import (
    CATALOG_SNAPSHOT_PATH,
    SEARCH_DEFAULT_LIMIT,
    SEED_CATALOG_PATH,
    PricingModel,
    SearchFilters,
    ToolStatus,
    configure_logging,
)
from .embed_index import build_all_indices, create_embedder
from .errors import ToolfinderError
from .mapping import map_candidates_to_response, map_recommendations_to_response
from .normalize import basic_clean
from .recommend import RecommendationOrchestrator, create_orchestrator

BATCH_COLUMNS = ["Tasks", "Role", "Rank", "Tool_id", "Tool", "Relevance_score", "Why_this_fits"]


def _load_orchestrator(snapshot: Path) -> RecommendationOrchestrator:
    catalog = CatalogStore.from_snapshot(snapshot)
    return create_orchestrator(catalog)


def load_workflows(path: Path) -> List[Tuple[str, Optional[str]]]:
    """Read ``(tasks, role)`` pairs from a CSV or Excel file with a Tasks column."""
    ext = path.suffix.lower()
    df = pd.read_excel(path) if ext in {".xlsx", ".xls"} else pd.read_csv(path)
    cols = {str(c).lower(): c for c in df.columns}
    tcol = cols.get("tasks") or cols.get("workflow")
    if not tcol:
        raise ValueError(f"Expected column 'Tasks' in {path}. Found: {list(df.columns)}")
    rcol = cols.get("role")
    rows: List[Tuple[str, Optional[str]]] = []
    for rec in df.to_dict(orient="records"):
        tasks = basic_clean("" if pd.isna(rec[tcol]) else str(rec[tcol]))
        role = None
        if rcol and not pd.isna(rec[rcol]):
            role = basic_clean(str(rec[rcol])) or None
        rows.append((tasks, role))
    return rows


def _dedup_preserve_order(seq: Sequence[Tuple[str, Optional[str]]]) -> List[Tuple[str, Optional[str]]]:
    seen = set()
    out: List[Tuple[str, Optional[str]]] = []
    for s in seq:
        if s not in seen:
            seen.add(s)
            out.append(s)
    return out


def write_batch_csv(preds: Dict[Tuple[str, Optional[str]], List[dict]], order, out_path: Path) -> int:
    """One row per (workflow, recommended tool), in input order."""
    rows: List[dict] = []
    for key in order:
        tasks, role = key
        for rank, rec in enumerate(preds.get(key, []), 1):
            rows.append({"Tasks": tasks, "Role": role or "", "Rank": rank, **rec})
    df = pd.DataFrame(rows, columns=BATCH_COLUMNS)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=False)
    return len(rows)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_import(args) -> int:
    embedder = None if args.no_embed else create_embedder()
    out = build_catalog_snapshot(
        raw_path=Path(args.raw),
        output_path=Path(args.snapshot),
        embedder=embedder,
        default_status=ToolStatus(args.status),
    )
    print(f"Wrote catalog snapshot to {out}")
    return 0


def cmd_build_index(args) -> int:
    n = build_all_indices(create_embedder(), Path(args.snapshot), full=args.full)
    print(f"Embedded {n} tools")
    return 0


def cmd_recommend(args) -> int:
    orchestrator = _load_orchestrator(Path(args.snapshot))
    recs = orchestrator.recommend_text(args.tasks, role=args.role, category_ids=args.category)
    print(map_recommendations_to_response(recs).model_dump_json(indent=2))
    return 0


def cmd_search(args) -> int:
    orchestrator = _load_orchestrator(Path(args.snapshot))
    filters = SearchFilters(
        status=ToolStatus.APPROVED,
        category_ids=args.category or [],
        tag_ids=args.tag or [],
        pricing_models=[PricingModel(p) for p in (args.pricing or [])],
        api_available=args.api,
        enterprise_ready=args.enterprise,
    )
    hits = orchestrator.search(args.query, filters=filters, top_k=args.limit)
    print(map_candidates_to_response(hits).model_dump_json(indent=2))
    return 0


def cmd_batch(args) -> int:
    orchestrator = _load_orchestrator(Path(args.snapshot))
    workflows = load_workflows(Path(args.inp))
    print(f"Loaded {len(workflows)} workflows from {args.inp}")

    # De-duplicate identical workflows to avoid re-running the same text
    unique = _dedup_preserve_order(workflows)
    print(f"Unique workflows to evaluate: {len(unique)}")

    preds: Dict[Tuple[str, Optional[str]], List[dict]] = {}
    for i, (tasks, role) in enumerate(unique, 1):
        try:
            recs = orchestrator.recommend_text(tasks, role=role)
            preds[(tasks, role)] = [
                {
                    "Tool_id": r.tool_id,
                    "Tool": r.tool.name,
                    "Relevance_score": r.relevance_score,
                    "Why_this_fits": r.explanation,
                }
                for r in recs
            ]
        except ToolfinderError as e:
            print(f"[WARN] {i}/{len(unique)} failed: {e}")
            preds[(tasks, role)] = []
        if i % 10 == 0 or i == len(unique):
            print(f"Processed {i}/{len(unique)} unique workflows")

    total_rows = write_batch_csv(preds, workflows, Path(args.out))
    print(f"Wrote {total_rows} rows to {args.out}")
    return 0


def _flag(value: str) -> bool:
    v = value.strip().lower()
    if v in {"true", "yes", "1"}:
        return True
    if v in {"false", "no", "0"}:
        return False
    raise argparse.ArgumentTypeError(f"expected true/false, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="toolfinder")
    ap.add_argument("--snapshot", default=str(CATALOG_SNAPSHOT_PATH), help="catalog snapshot (parquet)")
    ap.add_argument("--log-level", default=None)
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="build a snapshot from a raw catalog file")
    p.add_argument("--raw", default=str(SEED_CATALOG_PATH))
    p.add_argument("--status", default=ToolStatus.PENDING.value, choices=[s.value for s in ToolStatus],
                   help="status for rows that carry none")
    p.add_argument("--no-embed", action="store_true", help="write without embeddings")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("build-index", help="embed stale tools in the snapshot")
    p.add_argument("--full", action="store_true", help="re-embed every tool")
    p.set_defaults(func=cmd_build_index)

    p = sub.add_parser("recommend", help="recommend tools for one workflow")
    p.add_argument("tasks")
    p.add_argument("--role", default=None)
    p.add_argument("--category", action="append", help="category id (repeatable)")
    p.set_defaults(func=cmd_recommend)

    p = sub.add_parser("search", help="semantic search over approved tools")
    p.add_argument("query")
    p.add_argument("--category", action="append")
    p.add_argument("--tag", action="append")
    p.add_argument("--pricing", action="append", choices=[m.value for m in PricingModel])
    p.add_argument("--api", type=_flag, default=None)
    p.add_argument("--enterprise", type=_flag, default=None)
    p.add_argument("--limit", type=int, default=SEARCH_DEFAULT_LIMIT)
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("batch", help="recommend for every row of a CSV/Excel file")
    p.add_argument("--in", dest="inp", required=True)
    p.add_argument("--out", dest="out", default="artifacts/recommendations.csv")
    p.set_defaults(func=cmd_batch)
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        return args.func(args)
    except ToolfinderError as e:
        print(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
