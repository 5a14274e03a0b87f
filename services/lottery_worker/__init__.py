"""Background worker completing elections and running automatic lottery draws."""
