"""taildir — reliable, checkpointed tailing of groups of growing log files."""
