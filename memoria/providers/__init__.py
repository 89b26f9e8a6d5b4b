"""Concrete adapters for the interfaces in :mod:`memoria.interfaces`."""
