"""Provisioned-database access: schema migrations and admin bootstrap."""
