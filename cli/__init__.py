"""Command line client for the agronomic alert service.

The Typer application is ``cli.app.app``; the package does not re-export it so
``cli.app`` always names the module that tests patch.
"""
