"""Autonomous ticket-to-pull-request agent for Linear and GitHub.

This package implements the orchestration engine behind the agent:
- Linear and GitHub webhook ingress with signature verification
- Per-issue lifecycle state machine with PostgreSQL persistence
- Bounded work queue and per-PR lock table
- Plan-document checklist protocol
- Planning, clarification, implementation, self-review and
  PR-comment phases driven by the Cursor agent CLI
"""
