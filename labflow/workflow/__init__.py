"""Workflow state machine, cross-entity rules and progress evaluation."""
