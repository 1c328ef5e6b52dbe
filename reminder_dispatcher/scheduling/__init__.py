"""
Reminder scheduling core: clock, tick scanner, escalation engine and
notification formatter.
"""
