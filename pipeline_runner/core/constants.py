"""
Constants
Centralised storage for run states, event kinds and outcome labels.
"""
EVENT_PUSH = "push"
EVENT_PULL_REQUEST = "pull_request"
EVENT_KINDS = (EVENT_PUSH, EVENT_PULL_REQUEST)

FAILURE_KIND_STEP = "step"
FAILURE_KIND_ENVIRONMENT = "environment"

ARROW = "\u2192"
REDACTED = "***"

# CLI exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_NO_RUN = 2
EXIT_CANCELLED = 130

# Working-copy copy filter
WORKSPACE_IGNORE = (".git", "target", "workspace", "logs", "results", "__pycache__")
