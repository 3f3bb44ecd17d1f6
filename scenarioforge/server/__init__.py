"""HTTP boundary for the scenario engine."""
