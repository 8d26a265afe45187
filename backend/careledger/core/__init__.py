"""Configurazione, database, sicurezza ed eccezioni applicative."""
