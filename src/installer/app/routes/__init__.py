"""HTTP routes for the installer."""
