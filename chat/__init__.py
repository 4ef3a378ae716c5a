"""Chat host side: messages, lifecycle signals, sessions, completions client."""
