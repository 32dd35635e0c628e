TASK_STATUSES = ("Backlog", "In Progress", "Blocked", "Done")

STATUS_BACKLOG, STATUS_IN_PROGRESS, STATUS_BLOCKED, STATUS_DONE = TASK_STATUSES


def is_task_status(value) -> bool:
    return isinstance(value, str) and value in TASK_STATUSES


def task_status_index(value: str) -> int:
    """Board column order; unknown statuses sort last."""
    try:
        return TASK_STATUSES.index(value)
    except ValueError:
        return len(TASK_STATUSES)
