from __future__ import annotations

"""
Canonical text and catalog snapshot construction.

This module renders the canonical text that is the unit of semantic
indexing for a tool, pairs it with a fresh embedding, and converts raw
catalog files (JSON, CSV or Excel) into validated ``Tool`` records that
are persisted as a Parquet snapshot.  The snapshot can later be loaded
by :class:`~toolfinder.catalog_store.CatalogStore`.
"""

import json
import os
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from .config import (
    CATALOG_RAW_DIR,
    CATALOG_SNAPSHOT_PATH,
    TOOL_DESCRIPTION_MAX_CHARS,
    TOOL_DESCRIPTION_MIN_CHARS,
    TOOL_NAME_MAX_CHARS,
    TOOL_SHORT_DESCRIPTION_MAX_CHARS,
    Category,
    PricingModel,
    Tag,
    Tool,
    ToolStatus,
)
from .normalize import basic_clean, clean_list, slugify


# ---------------------------
# Canonical text
# ---------------------------

def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_canonical_text(tool: Tool) -> str:
    """
    Render the canonical text for ``tool``.

    One labeled line per semantic field in a fixed order, list values
    joined with ``", "`` and taken verbatim.  Pure: identical fields
    always give byte-identical output.
    """
    lines = [
        ("Tool", tool.name),
        ("Description", tool.description),
        ("Categories", ", ".join(c.name for c in tool.categories)),
        ("Tags", ", ".join(t.name for t in tool.tags)),
        ("Strengths", ", ".join(tool.strengths)),
        ("Limitations", ", ".join(tool.limitations)),
        ("Use Cases", ", ".join(tool.use_case_personas)),
        ("Integrations", ", ".join(tool.integrations)),
        ("Pricing", tool.pricing_model.value),
        ("API Available", _flag(tool.api_available)),
        ("Enterprise Ready", _flag(tool.enterprise_ready)),
    ]
    return "\n".join(f"{label}: {value}" for label, value in lines)


def is_canonical_current(tool: Tool) -> bool:
    """True when the stored canonical text matches the tool's fields."""
    return bool(tool.canonical_text) and tool.canonical_text == build_canonical_text(tool)


def index_tool(tool: Tool, embedder) -> Tool:
    """
    Return a copy of ``tool`` with canonical text and embedding rebuilt together.

    The embedding call happens before anything is assigned, so a provider
    failure leaves the caller holding the untouched original.
    """
    text = build_canonical_text(tool)
    vector = embedder.embed(text)
    return tool.model_copy(
        update={
            "canonical_text": text,
            "embedding": [float(v) for v in vector],
            "embedding_model": embedder.model_id,
        }
    )


def index_tools(tools: Sequence[Tool], embedder) -> List[Tool]:
    """Batch form of :func:`index_tool`; output order follows input order."""
    if not tools:
        return []
    texts = [build_canonical_text(t) for t in tools]
    logger.info("Embedding canonical text for {} tools", len(texts))
    vectors = embedder.embed_many(texts)
    return [
        t.model_copy(
            update={
                "canonical_text": text,
                "embedding": [float(v) for v in vec],
                "embedding_model": embedder.model_id,
            }
        )
        for t, text, vec in zip(tools, texts, vectors)
    ]


# ---------------------------
# Column detection / standardisation
# ---------------------------

# Raw exports come from spreadsheets and the seed file, so several
# spellings are accepted per field.
COLUMN_CANDIDATES: Dict[str, List[str]] = {
    "id": ["id", "ID", "tool_id", "toolId"],
    "name": ["name", "Name", "Tool", "Tool Name", "tool_name"],
    "slug": ["slug", "Slug"],
    "description": ["description", "Description", "Long Description", "Overview"],
    "short_description": ["short_description", "shortDescription", "Short Description", "Summary"],
    "website": ["website", "Website", "URL", "url", "Link"],
    "strengths": ["strengths", "Strengths"],
    "limitations": ["limitations", "Limitations"],
    "use_case_personas": ["use_case_personas", "useCasePersonas", "Use Cases", "use_cases", "Personas"],
    "integrations": ["integrations", "Integrations"],
    "pricing_raw": ["pricing_model", "pricingModel", "Pricing", "Pricing Model", "pricing"],
    "api_raw": ["api_available", "apiAvailable", "API Available", "API"],
    "enterprise_raw": ["enterprise_ready", "enterpriseReady", "Enterprise Ready", "Enterprise"],
    "categories_raw": ["categories", "categorySlugs", "Categories", "Category"],
    "tags_raw": ["tags", "tagSlugs", "Tags", "Tag"],
    "status_raw": ["status", "Status"],
}

LIST_FIELDS = ["strengths", "limitations", "use_case_personas", "integrations"]


def _standardise_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename columns from a raw catalog to the canonical internal schema."""
    col_map: Dict[str, str] = {}
    lower_to_original = {str(c).lower(): c for c in df.columns}

    for canon, candidates in COLUMN_CANDIDATES.items():
        for candidate in candidates:
            if candidate in df.columns:
                col_map[candidate] = canon
                break
            cand_lower = candidate.lower()
            if cand_lower in lower_to_original:
                col_map[lower_to_original[cand_lower]] = canon
                break

    logger.info("Standardising columns with map: {}", col_map)
    df_std = df.rename(columns=col_map)

    required = ["name", "description", "pricing_raw"]
    missing = [c for c in required if c not in df_std.columns]
    if missing:
        logger.warning("Raw catalog is missing required columns: {}", missing)
    return df_std


# ---------------------------
# Field parsing helpers
# ---------------------------

def _is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return False


def _text(value) -> str:
    if _is_missing(value):
        return ""
    return str(value).strip()


def parse_list_field(value) -> List[str]:
    """
    Parse a raw list-valued cell into a list of strings.

    Handles real sequences (JSON, numpy arrays from Parquet) and
    spreadsheet strings separated by ``;``, ``|`` or newlines.  Commas
    are kept because entries such as "Slack, Teams integration" use them.
    """
    if _is_missing(value):
        return []
    if isinstance(value, np.ndarray):
        value = value.tolist()
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value).strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            decoded = json.loads(text)
            if isinstance(decoded, list):
                return [str(v).strip() for v in decoded if str(v).strip()]
        except ValueError:
            pass
    parts = re.split(r"[;|\n]+", text)
    return [p.strip() for p in parts if p.strip()]


def parse_flag(value) -> bool:
    """Normalise a flag cell to ``bool``; unknown strings count as False."""
    if _is_missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in {"yes", "y", "true", "1", "available", "supported"}
    return bool(value)


def parse_pricing(value) -> Optional[PricingModel]:
    if _is_missing(value):
        return None
    key = re.sub(r"[\s-]+", "_", str(value).strip().upper())
    try:
        return PricingModel(key)
    except ValueError:
        return None


def parse_status(value, default: ToolStatus) -> ToolStatus:
    if _is_missing(value) or not str(value).strip():
        return default
    try:
        return ToolStatus(str(value).strip().upper())
    except ValueError:
        return default


def _resolve_refs(raw, lookup: Dict[str, Tuple[str, str, str]]) -> List[Tuple[str, str, str]]:
    """
    Resolve category/tag references (ids, slugs or names) to
    ``(id, name, slug)`` triples.  Unknown names become new entries keyed
    by their slug.
    """
    out: List[Tuple[str, str, str]] = []
    for ref in parse_list_field(raw):
        hit = lookup.get(ref.lower()) or lookup.get(slugify(ref))
        if hit is None:
            slug = slugify(ref)
            hit = (slug, ref, slug)
            lookup[slug] = hit
        if hit not in out:
            out.append(hit)
    return out


def _ref_lookup(entries: Iterable[dict]) -> Dict[str, Tuple[str, str, str]]:
    lookup: Dict[str, Tuple[str, str, str]] = {}
    for e in entries:
        slug = str(e.get("slug") or slugify(e["name"]))
        ref = (str(e.get("id") or slug), str(e["name"]), slug)
        for key in (ref[0].lower(), ref[1].lower(), slug):
            lookup[key] = ref
    return lookup


def reference_table(entries: Iterable[dict], model):
    """Distinct ``Category``/``Tag`` records of a raw reference table, in file order."""
    refs = dict.fromkeys(_ref_lookup(entries).values())
    return [model(id=i, name=n, slug=s) for i, n, s in refs]


def validate_tool_fields(
    name: str,
    description: str,
    short_description: str,
    strengths: List[str],
    use_case_personas: List[str],
    pricing: Optional[PricingModel],
) -> List[str]:
    """Return the list of constraint violations for a candidate tool row."""
    problems: List[str] = []
    if not name or len(name) > TOOL_NAME_MAX_CHARS:
        problems.append("name must be 1-{} characters".format(TOOL_NAME_MAX_CHARS))
    if not (TOOL_DESCRIPTION_MIN_CHARS <= len(description) <= TOOL_DESCRIPTION_MAX_CHARS):
        problems.append(
            "description must be {}-{} characters".format(
                TOOL_DESCRIPTION_MIN_CHARS, TOOL_DESCRIPTION_MAX_CHARS
            )
        )
    if len(short_description) > TOOL_SHORT_DESCRIPTION_MAX_CHARS:
        problems.append("short description too long")
    if not strengths:
        problems.append("at least one strength is required")
    if not use_case_personas:
        problems.append("at least one use case is required")
    if pricing is None:
        problems.append("unknown pricing model")
    return problems


# ---------------------------
# Catalog normalisation
# ---------------------------

def normalise_catalog_df(
    df_raw: pd.DataFrame,
    categories: Sequence[dict] = (),
    tags: Sequence[dict] = (),
    default_status: ToolStatus = ToolStatus.PENDING,
) -> List[Tool]:
    """
    Main normalisation pipeline for a raw tool catalog.

    Text fields are cleaned (HTML stripped, whitespace collapsed), list
    fields parsed, categories and tags resolved against the supplied
    tables, and every row validated.  Invalid rows are logged and
    skipped.  Returned tools carry no canonical text or embedding yet.
    """
    logger.info("Normalising catalog dataframe with {} raw rows", len(df_raw))
    df = _standardise_columns(df_raw.copy())
    category_lookup = _ref_lookup(categories)
    tag_lookup = _ref_lookup(tags)

    tools: List[Tool] = []
    seen_ids = set()
    for idx, row in enumerate(df.to_dict(orient="records")):
        name = basic_clean(_text(row.get("name")))
        description = basic_clean(_text(row.get("description")))
        short_description = basic_clean(_text(row.get("short_description")))
        lists = {f: clean_list(parse_list_field(row.get(f))) for f in LIST_FIELDS}
        pricing = parse_pricing(row.get("pricing_raw"))

        problems = validate_tool_fields(
            name,
            description,
            short_description,
            lists["strengths"],
            lists["use_case_personas"],
            pricing,
        )
        if problems:
            logger.warning("Skipping catalog row {} ({!r}): {}", idx, name, "; ".join(problems))
            continue

        slug = _text(row.get("slug")) or slugify(name)
        tool_id = _text(row.get("id")) or slug
        if tool_id in seen_ids:
            logger.warning("Skipping duplicate tool id {}", tool_id)
            continue
        seen_ids.add(tool_id)

        website = _text(row.get("website"))
        tools.append(
            Tool(
                id=tool_id,
                name=name,
                slug=slug,
                description=description,
                short_description=short_description,
                website=website or None,
                pricing_model=pricing,
                api_available=parse_flag(row.get("api_raw")),
                enterprise_ready=parse_flag(row.get("enterprise_raw")),
                categories=[
                    Category(id=i, name=n, slug=s)
                    for i, n, s in _resolve_refs(row.get("categories_raw"), category_lookup)
                ],
                tags=[Tag(id=i, name=n, slug=s) for i, n, s in _resolve_refs(row.get("tags_raw"), tag_lookup)],
                status=parse_status(row.get("status_raw"), default_status),
                **lists,
            )
        )

    logger.info("Catalog normalisation complete. Final rows: {}", len(tools))
    return tools


# ---------------------------
# DataFrame <-> Tool conversion
# ---------------------------

SNAPSHOT_COLUMNS = [
    "id", "name", "slug", "description", "short_description", "website",
    "strengths", "limitations", "use_case_personas", "integrations",
    "pricing_model", "api_available", "enterprise_ready",
    "categories", "tags",
    "status", "canonical_text", "embedding", "embedding_model",
]


def tools_to_frame(tools: Sequence[Tool]) -> pd.DataFrame:
    """
    Flatten tools into the snapshot schema.  Category and tag references
    are stored as JSON strings so ids, names and slugs stay aligned.
    """
    rows = []
    for t in tools:
        rows.append(
            {
                "id": t.id,
                "name": t.name,
                "slug": t.slug,
                "description": t.description,
                "short_description": t.short_description,
                "website": t.website or "",
                "strengths": list(t.strengths),
                "limitations": list(t.limitations),
                "use_case_personas": list(t.use_case_personas),
                "integrations": list(t.integrations),
                "pricing_model": t.pricing_model.value,
                "api_available": bool(t.api_available),
                "enterprise_ready": bool(t.enterprise_ready),
                "categories": json.dumps([c.model_dump() for c in t.categories]),
                "tags": json.dumps([g.model_dump() for g in t.tags]),
                "status": t.status.value,
                "canonical_text": t.canonical_text,
                "embedding": list(t.embedding) if t.embedding is not None else None,
                "embedding_model": t.embedding_model or "",
            }
        )
    return pd.DataFrame(rows, columns=SNAPSHOT_COLUMNS)


def _as_str_list(value) -> List[str]:
    # Entries are kept verbatim (even blank ones) so canonical text
    # rendered after a round trip matches the stored one.
    if _is_missing(value):
        return []
    if isinstance(value, np.ndarray):
        value = value.tolist()
    return [str(v) for v in value]


def _as_float_list(value) -> Optional[List[float]]:
    if _is_missing(value):
        return None
    if isinstance(value, np.ndarray):
        value = value.tolist()
    if not isinstance(value, (list, tuple)) or not value:
        return None
    return [float(v) for v in value]


def tools_from_frame(df: pd.DataFrame) -> List[Tool]:
    """Inverse of :func:`tools_to_frame`; Parquet list columns may arrive as arrays."""
    tools: List[Tool] = []
    for row in df.to_dict(orient="records"):
        tools.append(
            Tool(
                id=str(row["id"]),
                name=str(row["name"]),
                slug=_text(row.get("slug")),
                description=str(row["description"]),
                short_description=_text(row.get("short_description")),
                website=_text(row.get("website")) or None,
                strengths=_as_str_list(row.get("strengths")),
                limitations=_as_str_list(row.get("limitations")),
                use_case_personas=_as_str_list(row.get("use_case_personas")),
                integrations=_as_str_list(row.get("integrations")),
                pricing_model=PricingModel(str(row["pricing_model"])),
                api_available=bool(row.get("api_available")),
                enterprise_ready=bool(row.get("enterprise_ready")),
                categories=[Category(**c) for c in json.loads(row.get("categories") or "[]")],
                tags=[Tag(**g) for g in json.loads(row.get("tags") or "[]")],
                status=ToolStatus(str(row["status"])),
                canonical_text="" if _is_missing(row.get("canonical_text")) else str(row["canonical_text"]),
                embedding=_as_float_list(row.get("embedding")),
                embedding_model=_text(row.get("embedding_model")) or None,
            )
        )
    return tools


# ---------------------------
# IO helpers
# ---------------------------

def load_raw_catalog(path: Optional[Path] = None) -> Tuple[pd.DataFrame, List[dict], List[dict]]:
    """
    Load a raw catalog file.

    Returns ``(tools_df, categories, tags)``.  JSON files may carry
    ``categories`` and ``tags`` tables next to ``tools``; spreadsheets
    only carry tool rows.  If no path is provided, the first file found
    under ``data/catalog_raw`` is used.
    """
    if path is None:
        candidates = sorted(
            p for p in CATALOG_RAW_DIR.glob("*") if p.suffix.lower() in {".json", ".csv", ".xlsx", ".xls"}
        )
        if not candidates:
            raise FileNotFoundError(
                f"No catalog files found under {CATALOG_RAW_DIR}. "
                f"Place a JSON, CSV or Excel catalog there and re-run."
            )
        path = candidates[0]

    logger.info("Loading raw catalog from {}", path)
    ext = path.suffix.lower()
    categories: List[dict] = []
    tags: List[dict] = []
    if ext == ".json":
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        if isinstance(raw, dict):
            categories = list(raw.get("categories", []))
            tags = list(raw.get("tags", []))
            df = pd.DataFrame(raw.get("tools", []))
        else:
            df = pd.DataFrame(raw)
    elif ext in {".xlsx", ".xls"}:
        df = pd.read_excel(path)
    else:
        df = pd.read_csv(path)
    logger.info("Loaded {} rows from raw catalog", len(df))
    return df, categories, tags


def _write_parquet_atomic(df: pd.DataFrame, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = output_path.with_name(output_path.name + ".tmp")
    df.to_parquet(tmp_path, index=False)
    os.replace(tmp_path, output_path)


def reference_tables_path(snapshot_path: Path) -> Path:
    """Category and tag tables are stored beside the snapshot they belong to."""
    snapshot_path = Path(snapshot_path)
    return snapshot_path.with_name(snapshot_path.stem + ".refs.parquet")


def write_reference_tables(
    categories: Sequence[Category],
    tags: Sequence[Tag],
    snapshot_path: Path = CATALOG_SNAPSHOT_PATH,
) -> Path:
    rows = [{"kind": "category", **c.model_dump()} for c in categories]
    rows += [{"kind": "tag", **t.model_dump()} for t in tags]
    path = reference_tables_path(snapshot_path)
    _write_parquet_atomic(pd.DataFrame(rows, columns=["kind", "id", "name", "slug"]), path)
    logger.info("Reference tables written to {} ({} categories, {} tags)", path, len(categories), len(tags))
    return path


def load_reference_tables(snapshot_path: Path = CATALOG_SNAPSHOT_PATH) -> Tuple[List[Category], List[Tag]]:
    """Categories and tags saved with a snapshot; empty when none were saved."""
    path = reference_tables_path(snapshot_path)
    if not path.exists():
        return [], []
    categories: List[Category] = []
    tags: List[Tag] = []
    for row in pd.read_parquet(path).to_dict(orient="records"):
        ref = {"id": str(row["id"]), "name": str(row["name"]), "slug": _text(row.get("slug"))}
        if row["kind"] == "category":
            categories.append(Category(**ref))
        else:
            tags.append(Tag(**ref))
    return categories, tags


def write_catalog_snapshot(
    tools: Sequence[Tool],
    output_path: Path = CATALOG_SNAPSHOT_PATH,
    categories: Optional[Sequence[Category]] = None,
    tags: Optional[Sequence[Tag]] = None,
) -> Path:
    """
    Write tools to a Parquet snapshot, plus the reference tables when given.

    Files are written next to their destination and moved into place, so
    readers never observe a half-written snapshot.
    """
    df = tools_to_frame(tools)
    _write_parquet_atomic(df, output_path)
    logger.info("Catalog snapshot written to {} with {} tools", output_path, len(df))
    if categories is not None or tags is not None:
        write_reference_tables(categories or [], tags or [], output_path)
    return output_path


def load_catalog_snapshot(path: Path = CATALOG_SNAPSHOT_PATH) -> List[Tool]:
    logger.info("Loading catalog snapshot from {}", path)
    df = pd.read_parquet(path)
    tools = tools_from_frame(df)
    logger.info("Loaded catalog snapshot with {} tools", len(tools))
    return tools


def build_catalog_snapshot(
    raw_path: Optional[Path] = None,
    output_path: Path = CATALOG_SNAPSHOT_PATH,
    embedder=None,
    default_status: ToolStatus = ToolStatus.PENDING,
) -> Path:
    """
    End-to-end: load raw catalog → normalise → (optionally) index → write snapshot.

    Without an ``embedder`` the snapshot holds tools that are not yet
    queryable; run the reindex step before serving searches from it.
    """
    df_raw, categories, tags = load_raw_catalog(raw_path)
    tools = normalise_catalog_df(df_raw, categories, tags, default_status=default_status)
    if embedder is not None:
        tools = index_tools(tools, embedder)
    return write_catalog_snapshot(
        tools,
        output_path,
        categories=reference_table(categories, Category),
        tags=reference_table(tags, Tag),
    )
