"""Ledger Autopilot autonomous processing engine.

Multi-agent pipeline for scanned financial documents:
  Agent 1 - Classifier:     LLM-based document type detection
  Agent 2 - Extractors:     Family-specific sub-agents (invoice/bill/receipt/expense),
                            run as a fast + expert Perception Ensemble
  Consensus Engine:         Field-by-field reconciliation of both candidates (programmatic)
  Agent 3 - Auditor:        Math, IBAN/OGM checksums, VAT rates, business registry
  Agent 4 - Retry:          Feedback-driven self-correction (bounded)
  Agent 5 - Judgment:       Auto-approve / review / reject (rules, optional LLM)
  Coordinator:              Pipeline controller (no LLM)
"""
