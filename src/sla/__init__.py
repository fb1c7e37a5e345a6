"""
SLA Engine Module
=================

Bounded Context for SLA consumption tracking and escalation.

Responsibilities:
- Pin SLA targets and business calendars onto tickets at creation
- Track consumption of the resolution window in calendar or business hours
- Pause/resume/resolve the SLA clock
- Classify tickets (healthy, warning, critical, breached, paused, resolved)
- Walk the per-scope escalation ladder and emit one alert per level
- Sweep open tickets periodically within a time budget
"""

__version__ = "1.0.0"
