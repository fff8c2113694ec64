"""Client side of power-repl: connection, line editing and history."""
