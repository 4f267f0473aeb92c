"""Turn data model and the state machine that builds it."""
