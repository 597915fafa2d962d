"""
Intake Module
=============

Bounded context for conversational helpdesk intake.

Responsibilities:
- Run one conversation per chat through gathering, tip feedback and draft confirmation
- Answer from the knowledge base, fast-track rules or model quick fixes
- Spot duplicates, outages and already-open tickets
- Draft, confirm and create tickets
"""
