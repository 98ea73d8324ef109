"""DealScope multi-document analysis pipeline.

Stage architecture for startup due-diligence scoring:
  Compression Guard     — keeps payloads under the extraction size limit
  Extraction Gateway    — per-document extraction with retries + strict re-ask
  Result Validator      — sanitizes and type-checks raw extraction output
  Consolidation Engine  — merges documents into one provenance-tracked profile
  Scoring Engine        — versioned rubric, weighted score, decision band
  Pipeline Orchestrator — bounded fan-out, barrier, report assembly (no LLM)
"""
