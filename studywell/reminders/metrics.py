from prometheus_client import Counter


preference_changes_total = Counter(
    "reminder_preference_changes_total",
    "Total preference change events processed",
    ["change_type"],
)

occurrences_generated_total = Counter(
    "reminder_occurrences_generated_total",
    "Total occurrences written by regeneration",
)

occurrences_skipped_total = Counter(
    "reminder_occurrences_skipped_total",
    "Total resolved instants dropped because they were not in the future",
)

dispatch_sweeps_total = Counter(
    "reminder_dispatch_sweeps_total",
    "Total dispatch poller sweeps",
)

reminders_dispatch_success_total = Counter(
    "reminders_dispatch_success_total",
    "Total successful push dispatches",
)

reminders_dispatch_failed_total = Counter(
    "reminders_dispatch_failed_total",
    "Total dispatches failed permanently (invalid address)",
)

reminders_dispatch_retried_total = Counter(
    "reminders_dispatch_retried_total",
    "Total dispatches left pending after a transient failure",
)

occurrences_purged_total = Counter(
    "reminder_occurrences_purged_total",
    "Total terminal occurrences removed by the retention sweeper",
    ["state"],
)
