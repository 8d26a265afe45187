"""
Care Ledger (Gestionale Assistenza Domiciliare)

Backend per ledger fatture, extra time, richieste di modifica
delle visite e notifiche.
"""

__version__ = "1.0.0"
