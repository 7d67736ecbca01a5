"""Business logic services used by HTTP routers.

Services are small classes that take a database `Session`, coordinate
repositories and raise `thrive.errors` exceptions on rule violations.
"""
