"""Hardware emulators for testing maestro without a console."""
