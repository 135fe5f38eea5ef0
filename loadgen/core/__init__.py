"""Engine internals: stages, dispatch, virtual users, metrics, thresholds."""
