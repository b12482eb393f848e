"""Pure domain records and the injectable clock."""
