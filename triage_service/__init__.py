# Triage Service Package
"""
Symptom Triage Service

This package provides a rule-based symptom triage chat:
- Dataset-backed symptom extraction and disease scoring
- Multi-turn follow-up dialogue with a reliability gate
- Remote language-model fallback (question generation + diagnosis)
- Session persistence (Redis or in-memory)
"""

__version__ = "1.0.0"
