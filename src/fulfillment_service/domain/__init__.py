"""Pure domain rules shared by the services."""
