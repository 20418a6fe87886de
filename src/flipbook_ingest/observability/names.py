# src/flipbook_ingest/observability/names.py

"""Standard metric names for flipbook-ingest.

Use these constants instead of hardcoded strings.

Note: All duration metrics are in milliseconds by convention.
"""

# ============================================================================
# Parse Metrics
# ============================================================================

# Duration
PARSE_DURATION = "parse_duration"

# Counters (labelled with format / error kind)
PARSE_REQUESTS_TOTAL = "parse_requests_total"
PARSE_ERRORS_TOTAL = "parse_errors_total"

# Counters (accumulate over time)
PARSE_CHAPTERS_CREATED = "parse_chapters_created"
PARSE_WARNINGS_TOTAL = "parse_warnings_total"

# Gauges
PARSE_DECODED_BYTES = "parse_decoded_bytes"
