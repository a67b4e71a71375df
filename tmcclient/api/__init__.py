"""Client side of the TMC server protocol."""
