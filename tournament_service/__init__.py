"""
Tournament Service - persistence and lifecycle owner for tournaments.

Responsibilities:
- Tournament, participant and match stub records
- Tournament and participant state machines
- Derived fields (participant counts, prize totals, match counts)
- Change events on Redis pub/sub
"""
