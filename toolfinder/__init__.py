"""
Top-level package for the toolfinder software-tool recommender.

This package contains modules for importing a raw tool catalog into a
normalized, embedded snapshot, filtered vector search over approved
tools, LLM-backed workflow analysis, reranking and explanations, and a
small HTTP API and command-line runner around the pipeline.  There are
no side-effects on import: logging sinks are configured by the API and
CLI entry points.
"""
