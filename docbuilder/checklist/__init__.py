"""Checklist assessment.

Modules:
    models      - checklist / item / field-prompt records and the two variants
    prompts     - per-variant system and user prompts
    parsing     - ordered fallback cascade turning model text into a Verdict
    assessment  - sequential per-item assessment loop with per-item persistence
    items       - item-level edit operations on stored checklists
"""
