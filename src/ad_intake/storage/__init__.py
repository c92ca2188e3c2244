"""SQLite storage primitives shared by the intake pipeline."""
