"""Fixed values shared across workflow-claw modules."""

EDGE_NEXT = "next"
EDGE_SUPPORT = "support"
EDGE_CALLBACK = "callback"
EDGE_FAILURE = "failure"

RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_NEEDS_INPUT = "needs_input"

STATUS_FAIL = "fail"
STATUS_NEEDS_INPUT = "needs_input"

MEMORY_STEP_NAME = "memory-generator"
RULE_SELECT_SUFFIX = "-rule-select"

DEFAULT_FALLBACK_BINS = [
    "/usr/local/bin",
    "/opt/homebrew/bin",
    "/opt/homebrew/sbin",
    "/usr/bin",
    "/bin",
    "/usr/sbin",
    "/sbin",
]

PARSE_FAILURE_SUMMARY = "Failed to parse JSON output"
MISSING_EXIT_CODE = 127

MAX_SCAN_FILE_BYTES = 200_000
MAX_SCAN_TOTAL_BYTES = 2_000_000
RULE_CONTEXT_CHARS = 1200
