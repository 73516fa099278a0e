"""
MedFlow Scheduler

Appointment scheduling core for a medical-practice calendar: event geometry,
conflict detection, slot suggestions, day/week/month navigation and an async
adapter to the booking collection.
"""

__version__ = "1.0.0"
