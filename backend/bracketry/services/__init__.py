"""
Services Layer

Bracket business logic that:
- Talks to storage only through a BracketRepository
- Returns domain outputs (models, dataclasses, dicts)
- Does NOT depend on HTTP request/response objects
- Does NOT commit; callers own the transaction (see repository.unit_of_work)
"""
