"""
Periodic jobs run in-process by the task scheduler.
"""
