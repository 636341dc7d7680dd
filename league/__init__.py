"""
League Service - tournament bracket lifecycle for a recreational sports league

Responsibilities:
- Tournament registry (create, publish, list)
- Team registration ledger with capacity and eligibility rules
- Single-elimination bracket generation, score reporting and advancement
- Attendance enforcement and finalization
- Deduplicated activity feed with redis fan-out
- Periodic schedule notices
"""
