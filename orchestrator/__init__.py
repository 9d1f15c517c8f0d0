"""
Orchestrator - Scheduled automation for the tournament service

Responsibilities:
- Generate one automated tournament per game type each period
- Advance tournament statuses as deadlines pass
- Probe dependency health
- Hold the automation principal's bearer credential
"""
