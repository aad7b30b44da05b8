"""Process exit codes for the cardboard CLI."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
STORAGE_ERROR = 3
CONFLICT = 4
