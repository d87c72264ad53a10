"""Route modules, mounted by :func:`filerelay.api.app.create_app`."""
