"""BridgeScore test suite."""
