"""StudyWell reminder backend.

Materializes recurring study reminders as durable occurrences and
dispatches them through Firebase Cloud Messaging.
"""

__version__ = "0.1.0"
