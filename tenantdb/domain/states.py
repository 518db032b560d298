from __future__ import annotations


# Internal provisioning_status values.
QUEUED = "queued"
CREATING_INSTANCE = "creating_instance"
CREATING = "creating"
INITIALIZING_SCHEMA = "initializing_schema"
COMPLETED = "completed"
SCHEMA_INITIALIZED = "schema_initialized"
SCHEMA_NOT_FOUND = "schema_not_found"
SCHEMA_FAILED = "schema_failed"
FAILED = "failed"
DELETING = "deleting"
DELETE_FAILED = "delete_failed"
MONITORING_FAILED = "monitoring_failed"

# Non-terminal values; a record parked here with no scheduled poll is stuck.
IN_PROGRESS_STATES = frozenset({QUEUED, CREATING_INSTANCE, CREATING, INITIALIZING_SCHEMA, DELETING})

# Provider-reported instance states.
PROVIDER_AVAILABLE = "available"
PROVIDER_CREATING = "creating"
PROVIDER_DELETING = "deleting"
PROVIDER_FAILED = "failed"
# Returned by reconcile when the provider could not be read.
PROVIDER_ERROR = "error"

# Provider states that are expected to move on without intervention.
PROVIDER_PENDING_STATES = frozenset(
    {
        PROVIDER_CREATING,
        "backing-up",
        "configuring-enhanced-monitoring",
        "configuring-log-exports",
        "modifying",
    }
)
