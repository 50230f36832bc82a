"""Calendar-driven chat status and meeting reminders."""
